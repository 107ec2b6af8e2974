"""One synchronization pass: fetch, normalize, filter and push.

The executor depends only on the ``SourceIPProvider`` and
``AddressBookSyncer`` capabilities, so it runs unchanged against the real
Alibaba Cloud clients or in-memory fakes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from dcdn_firewall_sync.config import Config, parse_duration
from dcdn_firewall_sync.exceptions import AliyunAPIError, GroupSyncError
from dcdn_firewall_sync.filters import filter_group, filter_ipv4
from dcdn_firewall_sync.firewall import AddressBookSyncer
from dcdn_firewall_sync.models import GroupSyncResult, IPType, SyncTask
from dcdn_firewall_sync.sources import SourceIPProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEADLINE_EXCEEDED = "pass deadline exceeded"

# Backoff between retries: 1s, 2s, 4s, ... capped at 30s
BACKOFF_MULTIPLIER = 1
BACKOFF_MAX = 30


class SyncExecutor:
    """Runs synchronization passes.

    Example:
        ```python
        executor = SyncExecutor(config, provider, syncer)
        task = executor.execute()
        print(task.status, len(task.added_ips))
        ```
    """

    def __init__(
        self,
        config: Config,
        source_provider: SourceIPProvider,
        syncer: AddressBookSyncer,
        *,
        timeout: timedelta | None = None,
        retry_wait: wait_base | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Root configuration (address groups and retry count).
            source_provider: Where the source IPs come from.
            syncer: Where address books are written.
            timeout: Deadline for one whole pass. Defaults to the parsed
                ``scheduler.timeout``; zero or negative disables it.
            retry_wait: Wait strategy between retries (for testing).
            clock: Monotonic clock in seconds (for testing).

        Raises:
            ValueError: If ``scheduler.timeout`` cannot be parsed.
        """
        self.config = config
        self.source_provider = source_provider
        self.syncer = syncer
        self.timeout = timeout if timeout is not None else parse_duration(config.scheduler.timeout)
        self.max_retries = config.scheduler.max_retries
        self.retry_wait = retry_wait or wait_exponential(
            multiplier=BACKOFF_MULTIPLIER, max=BACKOFF_MAX
        )
        self._clock = clock

    def _call_with_retry(self, deadline: float | None, fn: Callable[..., T], *args: Any) -> T:
        """Call ``fn``, retrying Alibaba Cloud API errors up to ``max_retries`` times.

        No retry is started whose backoff would end at or past ``deadline``.
        """
        retrying = Retrying(
            stop=self._stop_condition(deadline),
            wait=self.retry_wait,
            retry=retry_if_exception_type(AliyunAPIError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(fn, *args)

    def _stop_condition(self, deadline: float | None) -> stop_base:
        attempts = stop_after_attempt(self.max_retries + 1)
        if deadline is None:
            return attempts

        def out_of_time(retry_state: RetryCallState) -> bool:
            return self._clock() + self.retry_wait(retry_state) >= deadline

        return attempts | out_of_time

    def _deadline(self) -> float | None:
        seconds = self.timeout.total_seconds()
        if seconds <= 0:
            return None
        return self._clock() + seconds

    def _expired(self, deadline: float | None) -> bool:
        return deadline is not None and self._clock() >= deadline

    def execute(self) -> SyncTask:
        """Run one pass and return its task record.

        Never raises for remote failures: a fetch failure yields a ``failed``
        task, group failures yield ``completed_with_errors``.

        Returns:
            The finalized task record.
        """
        task = SyncTask.begin()
        deadline = self._deadline()
        logger.info("=== Sync pass %s started ===", task.task_id)

        try:
            self._run(task, deadline)
        except Exception as e:
            logger.exception("Sync pass %s aborted", task.task_id)
            task.fail(f"Sync pass aborted: {e}")
            raise
        finally:
            task.finalize()
            self._log_summary(task)

        return task

    def _run(self, task: SyncTask, deadline: float | None) -> None:
        # Step 1: fetch
        logger.info("Step 1: fetching source IPs")
        try:
            records = self._call_with_retry(deadline, self.source_provider.fetch)
        except Exception as e:
            logger.error("Failed to fetch source IPs: %s", e)
            task.fail(f"Failed to fetch source IPs: {e}")
            return

        task.source_ips = [record.ip for record in records]
        logger.info("Fetched %d source IPs", len(records))

        if self._expired(deadline):
            logger.error("Fetch finished after the pass deadline")
            task.fail(f"Failed to fetch source IPs: {DEADLINE_EXCEEDED}")
            return

        # Step 2: normalize
        logger.info("Step 2: normalizing to IPv4")
        ipv4_records = filter_ipv4(records)
        logger.info("IPv4 entries: %d", len(ipv4_records))

        # Step 3: per-group filter and push
        logger.info("Step 3: syncing address books")
        for group in self.config.sync.address_groups:
            name = group.group_name

            if self._expired(deadline):
                logger.error("Skipping address book %s: %s", name, DEADLINE_EXCEEDED)
                task.record_group_error(
                    f"Failed to sync address book '{name}': {DEADLINE_EXCEEDED}"
                )
                task.group_results.append(GroupSyncResult(name, error=DEADLINE_EXCEEDED))
                continue

            if group.ip_type == IPType.IPV6:
                logger.warning(
                    "Address book %s is tagged ipv6 but only IPv4 addresses are synced", name
                )

            ips = [record.ip for record in filter_group(ipv4_records, group)]
            logger.info("Address book %s: %d IPs after filtering", name, len(ips))

            try:
                self._call_with_retry(deadline, self.syncer.sync_address_book, name, ips)
            except Exception as e:
                message = _group_error_message(name, e)
                logger.error("%s", message)
                task.record_group_error(message)
                task.group_results.append(GroupSyncResult(name, len(ips), error=str(e)))
                continue

            task.added_ips.extend(ips)
            task.group_results.append(GroupSyncResult(name, len(ips)))
            logger.info("Address book %s synced", name)

        # Step 4: dedupe
        task.dedupe_added_ips()

    def _log_summary(self, task: SyncTask) -> None:
        logger.info(
            "=== Sync pass %s finished in %.1fs, status: %s ===",
            task.task_id,
            task.duration_seconds,
            task.status.value,
        )
        if task.group_results:
            ok = sum(1 for result in task.group_results if result.ok)
            logger.info("Address books: %d synced, %d failed", ok, len(task.group_results) - ok)
        if task.error_msg:
            logger.warning("Sync pass error: %s", task.error_msg)
        else:
            logger.info("Synced %d unique IPs", len(task.added_ips))


def _group_error_message(group_name: str, error: Exception) -> str:
    if isinstance(error, GroupSyncError):
        return str(error)
    return f"Failed to sync address book '{group_name}': {error}"


def execute_sync_pass(
    config: Config,
    source_provider: SourceIPProvider,
    syncer: AddressBookSyncer,
) -> SyncTask:
    """Run one pass with default settings.

    Args:
        config: Root configuration.
        source_provider: Where the source IPs come from.
        syncer: Where address books are written.

    Returns:
        The finalized task record.
    """
    return SyncExecutor(config, source_provider, syncer).execute()
