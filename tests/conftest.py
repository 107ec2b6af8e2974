"""Pytest configuration for dcdn-firewall-sync tests."""

import os
from unittest.mock import patch

import pytest
from tenacity import wait_none

from dcdn_firewall_sync.config import Config
from dcdn_firewall_sync.exceptions import AliyunAPIError
from dcdn_firewall_sync.firewall import AddressBookSyncer
from dcdn_firewall_sync.models import AddressBook, AddressBookPage, SourceIPRecord
from dcdn_firewall_sync.settings import reset_settings
from dcdn_firewall_sync.sources import SourceIPProvider

# Test constants
TEST_ACCESS_KEY_ID = "LTAI-test-key-id"
TEST_ACCESS_KEY_SECRET = "test-key-secret"
TEST_GROUP_ID = "group-uuid-12345"

ENV_VARS = (
    "ALIBABA_CLOUD_ACCESS_KEY_ID",
    "ALIBABA_CLOUD_ACCESS_KEY_SECRET",
    "DCDN_ALIBABA_CLOUD_ACCESS_KEY_ID",
    "DCDN_ALIBABA_CLOUD_ACCESS_KEY_SECRET",
    "FIREWALL_ALIBABA_CLOUD_ACCESS_KEY_ID",
    "FIREWALL_ALIBABA_CLOUD_ACCESS_KEY_SECRET",
)


class FakeSourceProvider(SourceIPProvider):
    """Source provider returning a fixed list, or failing N times first."""

    def __init__(self, ips=None, failures=0, error=None):
        self.ips = list(ips or [])
        self.failures = failures
        self.error = error or AliyunAPIError("connection reset", operation="DescribeDcdnL2Ips")
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return [SourceIPRecord(ip=ip) for ip in self.ips]


class InMemorySyncer(AddressBookSyncer):
    """Address book syncer that keeps books in a dict."""

    def __init__(self, sync_config, page_size=50, fail_groups=None):
        super().__init__(sync_config, page_size)
        self.books: dict[str, AddressBook] = {}
        self.fail_groups = dict(fail_groups or {})
        self.created: list[str] = []
        self.replaced: list[str] = []
        self.list_calls = 0
        self._next_id = 1

    def list_address_books(self, page_size, page, group_type="ip"):
        self.list_calls += 1
        books = list(self.books.values())
        start = (page - 1) * page_size
        return AddressBookPage(
            books=books[start : start + page_size],
            page=page,
            page_size=page_size,
            total_count=len(books),
        )

    def _check(self, name):
        remaining = self.fail_groups.get(name, 0)
        if remaining:
            if remaining > 0:
                self.fail_groups[name] = remaining - 1
            raise AliyunAPIError("InternalError", operation="ModifyAddressBook", code="500")

    def create_address_book(self, name, description, ips):
        self._check(name)
        group_id = f"group-{self._next_id}"
        self._next_id += 1
        self.books[group_id] = AddressBook(
            group_id=group_id, group_name=name, description=description, entries=list(ips)
        )
        self.created.append(name)
        return group_id

    def replace_address_book(self, group_id, name, description, ips):
        self._check(name)
        self.books[group_id] = AddressBook(
            group_id=group_id, group_name=name, description=description, entries=list(ips)
        )
        self.replaced.append(name)

    def entries(self, name):
        for book in self.books.values():
            if book.group_name == name:
                return book.entries
        return None


def make_config(groups=None, **scheduler):
    """Build a Config with the given address groups and scheduler settings."""
    if groups is None:
        groups = [{"group_name": "dcdn-source-ips-v4", "include_patterns": ["*"]}]
    return Config.model_validate(
        {"sync": {"address_groups": groups}, "scheduler": scheduler}
    )


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings singleton after each test."""
    yield
    reset_settings()


@pytest.fixture
def clean_env():
    """Remove Alibaba Cloud credential variables from the environment."""
    env = {k: v for k, v in os.environ.items() if k not in ENV_VARS}
    with patch.dict(os.environ, env, clear=True):
        yield


@pytest.fixture
def mock_env_vars(clean_env):
    """Set generic credential environment variables."""
    with patch.dict(
        os.environ,
        {
            "ALIBABA_CLOUD_ACCESS_KEY_ID": TEST_ACCESS_KEY_ID,
            "ALIBABA_CLOUD_ACCESS_KEY_SECRET": TEST_ACCESS_KEY_SECRET,
        },
    ):
        yield


@pytest.fixture
def no_wait():
    """Tenacity wait strategy that does not sleep."""
    return wait_none()


@pytest.fixture
def two_group_config():
    """Config with a public group and a 10.* group."""
    return make_config(
        [
            {
                "group_name": "public",
                "description": "Public edge IPs",
                "ip_type": "ipv4",
                "include_patterns": ["*"],
                "exclude_patterns": ["10.*"],
            },
            {
                "group_name": "ten",
                "description": "Private edge IPs",
                "ip_type": "ipv4",
                "include_patterns": ["10.*"],
            },
        ]
    )


@pytest.fixture
def sample_config_file(tmp_path):
    """Write a minimal valid config file and return its path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "scheduler:\n"
        "  interval: 1h\n"
        "sync:\n"
        "  address_groups:\n"
        "    - group_name: dcdn-source-ips-v4\n"
        "      description: DCDN IPv4\n"
        "      ip_type: ipv4\n"
        "      include_patterns: ['*']\n",
        encoding="utf-8",
    )
    return path
