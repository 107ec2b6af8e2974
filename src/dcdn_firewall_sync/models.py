"""Data models for source IPs, address books and sync task records.

Pydantic models describe data exchanged with Alibaba Cloud; the sync task
record is a plain dataclass mutated in place by the pass that owns it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


class IPType(str, Enum):
    """IP family tag of an address group."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"
    BOTH = "both"


class SyncStatus(str, Enum):
    """Status of a sync pass."""

    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class SourceIPRecord(BaseModel):
    """One DCDN L2 node IP or CIDR block.

    Attributes:
        ip: IP address or CIDR range
        location: Node location
        isp: Network operator
        status: Node status
        last_updated: When the record was fetched
    """

    model_config = ConfigDict(frozen=True)

    ip: str = Field(description="IP address or CIDR range")
    location: str = "Global"
    isp: str = "Alibaba Cloud"
    status: str = "Active"
    last_updated: datetime = Field(default_factory=utcnow)


class AddressBook(BaseModel):
    """A Cloud Firewall address book.

    Attributes:
        group_id: Address book UUID (identity once created)
        group_name: Address book name
        description: Optional description
        entries: IP addresses or CIDR ranges in the book
        update_time: When the book was read
    """

    group_id: str
    group_name: str
    description: str = ""
    entries: list[str] = Field(default_factory=list)
    update_time: datetime | None = None


class AddressBookPage(BaseModel):
    """One page of a DescribeAddressBook listing."""

    books: list[AddressBook] = Field(default_factory=list)
    page: int = 1
    page_size: int = 50
    total_count: int = 0

    @property
    def has_more(self) -> bool:
        """Whether further pages exist after this one."""
        return self.page * self.page_size < self.total_count


@dataclass
class GroupSyncResult:
    """Outcome of syncing one address group within a pass.

    Attributes:
        group_name: Address book name
        ips_count: Number of IPs pushed (or that would have been pushed)
        error: Error message if the sync failed
    """

    group_name: str
    ips_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncTask:
    """Record of one synchronization pass.

    Created at the start of a pass, mutated while it runs and finalized at
    the end. Never persisted; its final state is surfaced through logs.
    """

    task_id: str
    status: SyncStatus = SyncStatus.RUNNING
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    source_ips: list[str] = field(default_factory=list)
    added_ips: list[str] = field(default_factory=list)
    error_msg: str = ""
    group_results: list[GroupSyncResult] = field(default_factory=list)

    @classmethod
    def begin(cls, start_time: datetime | None = None) -> SyncTask:
        """Create a running task stamped with its start time."""
        start = start_time or utcnow()
        return cls(task_id=f"sync_{int(start.timestamp())}", start_time=start)

    def fail(self, message: str) -> None:
        """Mark the pass as failed (fetch failure path)."""
        self.status = SyncStatus.FAILED
        self.error_msg = message

    def record_group_error(self, message: str) -> None:
        """Record a group-level error, keeping only the first message."""
        if not self.error_msg:
            self.error_msg = message

    def dedupe_added_ips(self) -> None:
        """Remove duplicate added IPs, keeping order of first occurrence."""
        self.added_ips = list(dict.fromkeys(self.added_ips))

    def finalize(self, end_time: datetime | None = None) -> None:
        """Resolve the final status and stamp the end time."""
        self.end_time = end_time or utcnow()
        if self.status == SyncStatus.RUNNING:
            self.status = (
                SyncStatus.COMPLETED_WITH_ERRORS
                if self.error_msg
                else SyncStatus.COMPLETED
            )

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()
