"""IP normalization and address group filtering.

The same ``normalize_ip`` is used by the sync executor when narrowing the
source list to IPv4 and by the address book syncer right before pushing,
so both agree exactly on the strings sent to Cloud Firewall.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable
from typing import NamedTuple

from dcdn_firewall_sync.config import AddressGroupSpec
from dcdn_firewall_sync.models import SourceIPRecord

logger = logging.getLogger(__name__)


class NormalizedIP(NamedTuple):
    """Result of normalizing one IP or CIDR string.

    Attributes:
        canonical: Canonical form (empty when invalid or not IPv4)
        is_ipv4: Whether the value is an IPv4 address or IPv4 block
        valid: Whether the value parsed at all
    """

    canonical: str
    is_ipv4: bool
    valid: bool


_INVALID = NormalizedIP("", False, False)


def match_pattern(text: str, pattern: str) -> bool:
    """Match text against a single-``*`` wildcard pattern.

    ``*`` matches everything, ``*suffix`` is a suffix match, ``prefix*`` is
    a prefix match, anything else must be equal. An ``*`` in the middle of
    a pattern is literal text.

    Args:
        text: IP string to test.
        pattern: Wildcard pattern.

    Returns:
        True if the text matches.
    """
    if pattern == "*":
        return True
    if not pattern:
        return not text
    if pattern.startswith("*"):
        return text.endswith(pattern[1:])
    if pattern.endswith("*"):
        return text.startswith(pattern[:-1])
    return text == pattern


def _normalize_network(raw: str) -> NormalizedIP:
    address, _, prefix = raw.partition("/")
    # Only decimal prefix lengths; no netmask notation.
    if not prefix.isdigit() or not prefix.isascii():
        return _INVALID
    try:
        network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    except ValueError:
        return _INVALID

    if isinstance(network, ipaddress.IPv4Network):
        return NormalizedIP(str(network), True, True)

    mapped = network.network_address.ipv4_mapped
    if mapped is not None and network.prefixlen >= 96:
        v4 = ipaddress.IPv4Network(f"{mapped}/{network.prefixlen - 96}", strict=False)
        return NormalizedIP(str(v4), True, True)
    return NormalizedIP("", False, True)


def _normalize_address(raw: str) -> NormalizedIP:
    try:
        address = ipaddress.ip_address(raw)
    except ValueError:
        return _INVALID

    if isinstance(address, ipaddress.IPv4Address):
        return NormalizedIP(str(address), True, True)
    if address.ipv4_mapped is not None:
        return NormalizedIP(str(address.ipv4_mapped), True, True)
    return NormalizedIP("", False, True)


def normalize_ip(raw: str) -> NormalizedIP:
    """Validate and canonicalize an IP address or CIDR block.

    Args:
        raw: IP address (``1.2.3.4``) or CIDR (``10.0.0.1/24``).

    Returns:
        NormalizedIP; CIDR blocks canonicalize to ``network/prefixlen``.

    Example:
        >>> normalize_ip("10.0.0.1/24")
        NormalizedIP(canonical='10.0.0.0/24', is_ipv4=True, valid=True)
    """
    if "/" in raw:
        return _normalize_network(raw)
    return _normalize_address(raw)


def filter_ipv4(records: Iterable[SourceIPRecord]) -> list[SourceIPRecord]:
    """Keep only IPv4 addresses and IPv4 CIDR blocks.

    Kept records carry the canonical IP string; everything else is dropped
    with a debug trace.

    Args:
        records: Source IP records as fetched.

    Returns:
        IPv4-only records in input order.
    """
    result: list[SourceIPRecord] = []
    for record in records:
        normalized = normalize_ip(record.ip)
        if not normalized.valid:
            logger.debug("Skipping unparseable source IP: %s", record.ip)
            continue
        if not normalized.is_ipv4:
            logger.debug("Skipping non-IPv4 source IP: %s", record.ip)
            continue
        if normalized.canonical != record.ip:
            record = record.model_copy(update={"ip": normalized.canonical})
        result.append(record)
    return result


def filter_group(
    records: list[SourceIPRecord],
    group: AddressGroupSpec,
) -> list[SourceIPRecord]:
    """Apply a group's include/exclude patterns.

    Exclusion always wins. An empty include list includes everything.
    Output keeps input order.

    Args:
        records: Normalized source records.
        group: Address group configuration.

    Returns:
        Records that belong in the group.
    """
    if not group.include_patterns and not group.exclude_patterns:
        return records

    filtered = []
    for record in records:
        if any(match_pattern(record.ip, p) for p in group.exclude_patterns):
            continue
        if group.include_patterns and not any(
            match_pattern(record.ip, p) for p in group.include_patterns
        ):
            continue
        filtered.append(record)
    return filtered
