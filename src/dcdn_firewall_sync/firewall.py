"""Cloud Firewall address book syncer.

``AddressBookSyncer`` implements the create-or-fully-replace logic on top of
three primitives (list, create, replace); ``CloudFirewallClient`` provides
those primitives with the official Cloud Firewall SDK.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from alibabacloud_cloudfw20171207 import models as cloudfw_models
from alibabacloud_cloudfw20171207.client import Client as CloudfwClient

from dcdn_firewall_sync.aliyun import (
    PROGRAMMING_ERRORS,
    build_openapi_config,
    firewall_endpoint,
    runtime_options,
    translate_error,
)
from dcdn_firewall_sync.config import FirewallConfig, SyncConfig
from dcdn_firewall_sync.exceptions import AliyunAPIError, ConfigError, GroupSyncError
from dcdn_firewall_sync.filters import normalize_ip
from dcdn_firewall_sync.models import AddressBook, AddressBookPage, utcnow

logger = logging.getLogger(__name__)

GROUP_TYPE_IP = "ip"
DEFAULT_PAGE_SIZE = 50
LANG = "zh"


class AddressBookSyncer(ABC):
    """Capability: keep named address books equal to a given IP list.

    Subclasses implement the three remote primitives; lookup by name and
    the create-or-replace flow are shared.
    """

    def __init__(self, sync_config: SyncConfig, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        """Initialize the syncer.

        Args:
            sync_config: Address group configuration (for descriptions).
            page_size: Page size used when scanning address books.
        """
        self.sync_config = sync_config
        self.page_size = page_size

    @abstractmethod
    def list_address_books(
        self,
        page_size: int,
        page: int,
        group_type: str = GROUP_TYPE_IP,
    ) -> AddressBookPage:
        """List one page of address books."""

    @abstractmethod
    def create_address_book(self, name: str, description: str, ips: list[str]) -> str:
        """Create an address book; returns its group ID."""

    @abstractmethod
    def replace_address_book(
        self,
        group_id: str,
        name: str,
        description: str,
        ips: list[str],
    ) -> None:
        """Fully replace an address book's address list."""

    def get_by_name(self, group_name: str) -> AddressBook | None:
        """Find an address book by exact name.

        Scans every page and returns the first exact match; never fuzzy.

        Args:
            group_name: Address book name.

        Returns:
            The address book, or None if none exists.

        Raises:
            AliyunAPIError: If the listing fails.
        """
        page = 1
        while True:
            result = self.list_address_books(self.page_size, page, GROUP_TYPE_IP)
            for book in result.books:
                if book.group_name == group_name:
                    logger.debug("Found address book '%s' (%s)", group_name, book.group_id)
                    return book
            if not result.books or not result.has_more:
                return None
            page += 1

    def sync_address_book(self, group_name: str, ips: list[str]) -> None:
        """Create or fully replace an address book with the given IPs.

        Each IP is re-validated; anything that is not an IPv4 address or
        IPv4 CIDR block is skipped.

        Args:
            group_name: Address book name.
            ips: IP addresses or CIDR blocks.

        Raises:
            ConfigError: If the group is not configured.
            GroupSyncError: If the lookup, create or replace call fails.
        """
        group = self.sync_config.get_group(group_name)
        if group is None:
            msg = f"No configuration found for address group '{group_name}'"
            raise ConfigError(msg)

        addresses = []
        for ip in ips:
            normalized = normalize_ip(ip)
            if not normalized.valid or not normalized.is_ipv4:
                logger.debug("Skipping invalid or non-IPv4 address for %s: %s", group_name, ip)
                continue
            addresses.append(normalized.canonical)

        logger.debug("Address book %s: %d valid IPv4 entries", group_name, len(addresses))

        try:
            existing = self.get_by_name(group_name)
            if existing is None:
                group_id = self.create_address_book(group_name, group.description, addresses)
                logger.info(
                    "Created address book '%s' (%s) with %d IPs",
                    group_name,
                    group_id,
                    len(addresses),
                )
            else:
                self.replace_address_book(
                    existing.group_id, group_name, group.description, addresses
                )
                logger.info(
                    "Replaced address book '%s' (%s) with %d IPs",
                    group_name,
                    existing.group_id,
                    len(addresses),
                )
        except AliyunAPIError as e:
            msg = f"Failed to sync address book '{group_name}': {e.message}"
            raise GroupSyncError(
                msg,
                group_name=group_name,
                operation=e.operation,
                code=e.code,
                request_id=e.request_id,
            ) from e


class CloudFirewallClient(AddressBookSyncer):
    """Address book syncer backed by the Cloud Firewall API.

    Example:
        ```python
        client = CloudFirewallClient(config.firewall, config.sync)
        client.sync_address_book("dcdn-source-ips-v4", ["1.2.3.4", "5.6.7.0/24"])
        ```
    """

    def __init__(
        self,
        config: FirewallConfig,
        sync_config: SyncConfig,
        client: CloudfwClient | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        """Initialize the Cloud Firewall client.

        Args:
            config: Firewall config section (credentials and region).
            sync_config: Address group configuration.
            client: Optional SDK client. If not provided, creates one lazily.
            page_size: Page size for DescribeAddressBook.
        """
        super().__init__(sync_config, page_size)
        self.config = config
        self._client = client

    @property
    def client(self) -> CloudfwClient:
        """Get or create the Cloud Firewall SDK client."""
        if self._client is None:
            self._client = CloudfwClient(
                build_openapi_config(
                    self.config, "firewall", firewall_endpoint(self.config.region)
                )
            )
            logger.info("Initialized Cloud Firewall client for region %s", self.config.region)
        return self._client

    def list_address_books(
        self,
        page_size: int,
        page: int,
        group_type: str = GROUP_TYPE_IP,
    ) -> AddressBookPage:
        request = cloudfw_models.DescribeAddressBookRequest(
            page_size=str(page_size),
            current_page=str(page),
            group_type=group_type,
            lang=LANG,
        )
        try:
            response = self.client.describe_address_book_with_options(
                request, runtime_options()
            )
        except PROGRAMMING_ERRORS:
            raise
        except Exception as e:
            raise translate_error(e, "DescribeAddressBook") from e

        body = response.body if response is not None else None
        if body is None:
            msg = "DescribeAddressBook returned an empty response body"
            raise AliyunAPIError(msg, operation="DescribeAddressBook")

        now = utcnow()
        books = [
            AddressBook(
                group_id=acl.group_uuid or "",
                group_name=acl.group_name or "",
                description=acl.description or "",
                entries=[addr for addr in (acl.address_list or []) if addr],
                update_time=now,
            )
            for acl in (body.acls or [])
            if acl is not None
        ]
        total = int(body.total_count or 0)
        logger.debug("Listed %d address books on page %d (total %d)", len(books), page, total)
        return AddressBookPage(books=books, page=page, page_size=page_size, total_count=total)

    def create_address_book(self, name: str, description: str, ips: list[str]) -> str:
        request = cloudfw_models.AddAddressBookRequest(
            group_name=name,
            description=description,
            address_list=",".join(ips),
            auto_add_tag_ecs="false",
            tag_relation="and",
            group_type=GROUP_TYPE_IP,
            lang=LANG,
        )
        try:
            response = self.client.add_address_book_with_options(request, runtime_options())
        except PROGRAMMING_ERRORS:
            raise
        except Exception as e:
            raise translate_error(e, "AddAddressBook") from e

        body = response.body if response is not None else None
        return (body.group_uuid or "") if body is not None else ""

    def replace_address_book(
        self,
        group_id: str,
        name: str,
        description: str,
        ips: list[str],
    ) -> None:
        request = cloudfw_models.ModifyAddressBookRequest(
            group_uuid=group_id,
            group_name=name,
            description=description,
            address_list=",".join(ips),
        )
        try:
            self.client.modify_address_book_with_options(request, runtime_options())
        except PROGRAMMING_ERRORS:
            raise
        except Exception as e:
            raise translate_error(e, "ModifyAddressBook") from e
