"""Source IP providers.

Providers retrieve the edge-node IP list the firewall groups mirror: the
DCDN L2 node API in production, or a static list / plain-text URL.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx
from alibabacloud_dcdn20180115.client import Client as DcdnClient

from dcdn_firewall_sync.aliyun import (
    DCDN_ENDPOINT,
    PROGRAMMING_ERRORS,
    build_openapi_config,
    runtime_options,
    translate_error,
)
from dcdn_firewall_sync.config import Config, DCDNConfig, SourceConfig, SourceType
from dcdn_firewall_sync.exceptions import FetchError
from dcdn_firewall_sync.models import SourceIPRecord, utcnow

logger = logging.getLogger(__name__)


class SourceIPProvider(ABC):
    """Capability: fetch the full source IP list."""

    @abstractmethod
    def fetch(self) -> list[SourceIPRecord]:
        """Fetch source IP records.

        Returns:
            Records as reported by the source (not yet normalized).

        Raises:
            FetchError: If the list cannot be retrieved.
        """


class DCDNSourceIPProvider(SourceIPProvider):
    """Fetches DCDN L2 node IPs via DescribeDcdnL2Ips.

    Example:
        ```python
        provider = DCDNSourceIPProvider(config.dcdn)
        records = provider.fetch()
        ```
    """

    def __init__(self, config: DCDNConfig, client: DcdnClient | None = None) -> None:
        """Initialize the provider.

        Args:
            config: DCDN config section (credentials and region).
            client: Optional SDK client. If not provided, creates one lazily.
        """
        self.config = config
        self._client = client

    @property
    def client(self) -> DcdnClient:
        """Get or create the DCDN SDK client."""
        if self._client is None:
            self._client = DcdnClient(
                build_openapi_config(self.config, "dcdn", DCDN_ENDPOINT)
            )
        return self._client

    def fetch(self) -> list[SourceIPRecord]:
        try:
            response = self.client.describe_dcdn_l2ips_with_options(runtime_options())
        except PROGRAMMING_ERRORS:
            raise
        except Exception as e:
            raise translate_error(e, "DescribeDcdnL2Ips", FetchError) from e

        if response is None or response.body is None:
            msg = "DescribeDcdnL2Ips returned an empty response body"
            raise FetchError(msg, operation="DescribeDcdnL2Ips")

        fetched_at = utcnow()
        records = [
            SourceIPRecord(ip=vip, last_updated=fetched_at)
            for vip in (response.body.vips or [])
            if vip
        ]
        logger.info("Fetched %d L2 node IPs from DCDN", len(records))
        return records


class StaticSourceIPProvider(SourceIPProvider):
    """Returns IPs listed in the configuration."""

    def __init__(self, ips: list[str]) -> None:
        self.ips = list(ips)

    def fetch(self) -> list[SourceIPRecord]:
        fetched_at = utcnow()
        return [
            SourceIPRecord(ip=ip.strip(), location="Static", isp="", last_updated=fetched_at)
            for ip in self.ips
            if ip.strip()
        ]


class URLSourceIPProvider(SourceIPProvider):
    """Fetches a plain-text IP list, one entry per line, ``#`` comments ignored."""

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        """Initialize the URL provider.

        Args:
            url: URL returning the IP list.
            timeout: HTTP request timeout in seconds.
        """
        self.url = url
        self.timeout = timeout

    def fetch(self) -> list[SourceIPRecord]:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Failed to fetch IP list from {self.url}: {e}"
            raise FetchError(msg, operation="GET") from e

        return self._parse_text(response.text)

    def _parse_text(self, text: str) -> list[SourceIPRecord]:
        fetched_at = utcnow()
        records = []
        for line in text.splitlines():
            line = line.split("#", 1)[0].strip()
            if line:
                records.append(
                    SourceIPRecord(ip=line, location="URL", isp="", last_updated=fetched_at)
                )
        logger.info("Fetched %d IPs from %s", len(records), self.url)
        return records


def get_source_provider(config: Config) -> SourceIPProvider:
    """Get the source provider selected by the configuration.

    Args:
        config: Root configuration.

    Returns:
        Provider instance.

    Raises:
        ValueError: If the source type is not supported.
    """
    source: SourceConfig = config.source

    if source.type == SourceType.DCDN:
        return DCDNSourceIPProvider(config.dcdn)
    if source.type == SourceType.STATIC:
        return StaticSourceIPProvider(source.ips)
    if source.type == SourceType.URL:
        return URLSourceIPProvider(source.url or "", timeout=source.request_timeout)

    msg = f"Unsupported source type: {source.type}"
    raise ValueError(msg)
