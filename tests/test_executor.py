"""Tests for the sync executor."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from alibabacloud_dcdn20180115.client import Client as DcdnClient
from tenacity import wait_fixed, wait_none

from dcdn_firewall_sync.config import DCDNConfig
from dcdn_firewall_sync.exceptions import FetchError
from dcdn_firewall_sync.executor import DEADLINE_EXCEEDED, SyncExecutor
from dcdn_firewall_sync.models import SyncStatus
from dcdn_firewall_sync.sources import DCDNSourceIPProvider

from conftest import FakeSourceProvider, InMemorySyncer, make_config


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def build(config, provider, syncer=None, **kwargs):
    syncer = syncer or InMemorySyncer(config.sync)
    kwargs.setdefault("retry_wait", wait_none())
    return SyncExecutor(config, provider, syncer, **kwargs), syncer


@pytest.fixture
def scenario_config():
    return make_config(
        [
            {
                "group_name": "v4-all",
                "include_patterns": ["*"],
                "exclude_patterns": ["10.*", "192.168.*"],
            },
            {"group_name": "v4-strict", "include_patterns": ["203.0.*"]},
        ]
    )


class TestExecuteScenarios:
    """End-to-end pass behavior against fakes."""

    def test_two_groups(self, scenario_config):
        """Test that each group receives its filtered IPs."""
        provider = FakeSourceProvider(["203.0.113.5", "10.1.1.1", "8.8.4.4"])
        executor, syncer = build(scenario_config, provider)

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED
        assert syncer.entries("v4-all") == ["203.0.113.5", "8.8.4.4"]
        assert syncer.entries("v4-strict") == ["203.0.113.5"]
        assert task.source_ips == ["203.0.113.5", "10.1.1.1", "8.8.4.4"]
        assert task.added_ips == ["203.0.113.5", "8.8.4.4"]
        assert task.error_msg == ""
        assert task.end_time is not None
        assert [r.group_name for r in task.group_results] == ["v4-all", "v4-strict"]

    def test_fetch_failure(self, scenario_config):
        """Test that a fetch failure fails the pass with no group calls."""
        provider = FakeSourceProvider(
            failures=99, error=FetchError("boom", operation="DescribeDcdnL2Ips")
        )
        executor, syncer = build(scenario_config, provider)

        task = executor.execute()

        assert task.status == SyncStatus.FAILED
        assert "boom" in task.error_msg
        assert syncer.list_calls == 0
        assert syncer.books == {}
        assert task.group_results == []

    def test_partial_failure(self, scenario_config):
        """Test that one failing group does not block the next."""
        provider = FakeSourceProvider(["203.0.113.5", "8.8.4.4"])
        syncer = InMemorySyncer(scenario_config.sync, fail_groups={"v4-all": -1})
        executor, _ = build(scenario_config, provider, syncer)

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED_WITH_ERRORS
        assert "v4-all" in task.error_msg
        assert task.added_ips == ["203.0.113.5"]
        assert syncer.entries("v4-strict") == ["203.0.113.5"]
        assert [r.ok for r in task.group_results] == [False, True]

    def test_first_error_kept(self):
        """Test that only the first group error message is kept."""
        config = make_config([{"group_name": "a"}, {"group_name": "b"}], max_retries=0)
        syncer = InMemorySyncer(config.sync, fail_groups={"a": -1, "b": -1})
        executor, _ = build(config, FakeSourceProvider(["1.1.1.1"]), syncer)

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED_WITH_ERRORS
        assert "'a'" in task.error_msg
        assert "'b'" not in task.error_msg

    def test_api_error_message(self):
        """Test that group errors carry the API operation."""
        config = make_config([{"group_name": "a"}], max_retries=0)
        syncer = InMemorySyncer(config.sync, fail_groups={"a": -1})
        executor, _ = build(config, FakeSourceProvider(["1.1.1.1"]), syncer)

        task = executor.execute()

        assert "ModifyAddressBook" in task.error_msg

    def test_idempotent(self, scenario_config):
        """Test that two passes over the same input yield the same books."""
        provider = FakeSourceProvider(["203.0.113.5", "10.1.1.1", "8.8.4.4"])
        executor, syncer = build(scenario_config, provider)

        executor.execute()
        first = {b.group_name: b.entries for b in syncer.books.values()}
        executor.execute()
        second = {b.group_name: b.entries for b in syncer.books.values()}

        assert first == second
        assert syncer.created == ["v4-all", "v4-strict"]
        assert syncer.replaced == ["v4-all", "v4-strict"]

    def test_added_ips_deduplicated(self):
        """Test de-duplication across groups."""
        config = make_config([{"group_name": "a"}, {"group_name": "b"}])
        executor, _ = build(config, FakeSourceProvider(["1.1.1.1", "2.2.2.2"]))

        task = executor.execute()

        assert task.added_ips == ["1.1.1.1", "2.2.2.2"]

    def test_non_ipv4_dropped(self):
        """Test that IPv6 and garbage never reach the syncer."""
        config = make_config([{"group_name": "a"}])
        provider = FakeSourceProvider(["1.1.1.1", "::1", "junk", "10.0.0.1/24"])
        executor, syncer = build(config, provider)

        task = executor.execute()

        assert syncer.entries("a") == ["1.1.1.1", "10.0.0.0/24"]
        assert task.source_ips == ["1.1.1.1", "::1", "junk", "10.0.0.1/24"]

    def test_patterns_match_canonical_form(self):
        """Test that patterns see the canonical CIDR string."""
        config = make_config([{"group_name": "a", "include_patterns": ["*.0/24"]}])
        executor, syncer = build(config, FakeSourceProvider(["10.0.0.7/24", "1.1.1.1"]))

        executor.execute()

        assert syncer.entries("a") == ["10.0.0.0/24"]

    def test_ipv6_group_gets_ipv4(self, caplog):
        """Test that an ipv6-tagged group is warned about and gets IPv4 data."""
        config = make_config([{"group_name": "v6", "ip_type": "ipv6"}])
        executor, syncer = build(config, FakeSourceProvider(["1.1.1.1", "2001:db8::1"]))

        with caplog.at_level("WARNING"):
            task = executor.execute()

        assert task.status == SyncStatus.COMPLETED
        assert syncer.entries("v6") == ["1.1.1.1"]
        assert "tagged ipv6" in caplog.text


class TestRetries:
    """Tests for bounded retry around the network call sites."""

    def test_transient_fetch_failure_retried(self):
        """Test that a fetch is retried up to max_retries times."""
        config = make_config(max_retries=2)
        provider = FakeSourceProvider(["1.1.1.1"], failures=2)
        executor, _ = build(config, provider)

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED
        assert provider.calls == 3

    def test_fetch_retries_exhausted(self):
        """Test that the pass fails once retries run out."""
        config = make_config(max_retries=2)
        provider = FakeSourceProvider(["1.1.1.1"], failures=3)
        executor, _ = build(config, provider)

        task = executor.execute()

        assert task.status == SyncStatus.FAILED
        assert provider.calls == 3

    def test_zero_retries(self):
        """Test that max_retries=0 makes a single attempt."""
        config = make_config(max_retries=0)
        provider = FakeSourceProvider(["1.1.1.1"], failures=1)
        executor, _ = build(config, provider)

        assert executor.execute().status == SyncStatus.FAILED
        assert provider.calls == 1

    def test_non_api_errors_not_retried(self):
        """Test that unexpected fetch errors are not retried."""
        config = make_config(max_retries=3)
        provider = FakeSourceProvider(["1.1.1.1"], failures=5, error=RuntimeError("bug"))
        executor, _ = build(config, provider)

        task = executor.execute()

        assert task.status == SyncStatus.FAILED
        assert provider.calls == 1

    def test_group_sync_retried(self):
        """Test that a transient group failure succeeds on retry."""
        config = make_config([{"group_name": "a"}], max_retries=1)
        syncer = InMemorySyncer(config.sync, fail_groups={"a": 1})
        executor, _ = build(config, FakeSourceProvider(["1.1.1.1"]), syncer)

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED
        assert syncer.entries("a") == ["1.1.1.1"]

    def test_config_error_not_retried(self):
        """Test that a group missing from the syncer config is recorded once."""
        config = make_config([{"group_name": "a"}], max_retries=3)
        other = make_config([{"group_name": "b"}])
        syncer = InMemorySyncer(other.sync)
        executor, _ = build(config, FakeSourceProvider(["1.1.1.1"]), syncer)

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED_WITH_ERRORS
        assert "No configuration" in task.error_msg
        assert syncer.list_calls == 0

    def test_sdk_mismatch_not_retried(self):
        """Test that a TypeError from the DCDN client fails the pass on the first attempt."""
        config = make_config(max_retries=3)
        client = MagicMock(spec=DcdnClient)
        client.describe_dcdn_l2ips_with_options.side_effect = TypeError("unexpected keyword")
        executor, _ = build(config, DCDNSourceIPProvider(DCDNConfig(), client=client))

        task = executor.execute()

        assert task.status == SyncStatus.FAILED
        assert "unexpected keyword" in task.error_msg
        assert client.describe_dcdn_l2ips_with_options.call_count == 1


class TestDeadline:
    """Tests for the whole-pass timeout."""

    def test_remaining_groups_skipped(self):
        """Test that groups not started before the deadline are errors."""
        config = make_config([{"group_name": "a"}, {"group_name": "b"}])
        clock = FakeClock()

        class SlowSyncer(InMemorySyncer):
            def create_address_book(self, name, description, ips):
                clock.now += 120
                return super().create_address_book(name, description, ips)

        syncer = SlowSyncer(config.sync)
        executor, _ = build(
            config,
            FakeSourceProvider(["1.1.1.1"]),
            syncer,
            timeout=timedelta(seconds=60),
            clock=clock,
        )

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED_WITH_ERRORS
        assert syncer.created == ["a"]
        assert DEADLINE_EXCEEDED in task.error_msg
        assert task.group_results[1].error == DEADLINE_EXCEEDED
        assert task.added_ips == ["1.1.1.1"]

    def test_slow_fetch_fails_pass(self):
        """Test that a fetch finishing after the deadline fails the pass."""
        config = make_config()
        clock = FakeClock()

        class SlowProvider(FakeSourceProvider):
            def fetch(self):
                clock.now += 600
                return super().fetch()

        executor, syncer = build(
            config,
            SlowProvider(["1.1.1.1"]),
            timeout=timedelta(minutes=5),
            clock=clock,
        )

        task = executor.execute()

        assert task.status == SyncStatus.FAILED
        assert DEADLINE_EXCEEDED in task.error_msg
        assert syncer.books == {}

    def test_retries_stop_at_deadline(self):
        """Test that fetch retries end once the pass deadline is reached."""
        config = make_config(max_retries=10)
        clock = FakeClock()

        class SlowFailingProvider(FakeSourceProvider):
            def fetch(self):
                clock.now += 40
                return super().fetch()

        provider = SlowFailingProvider(["1.1.1.1"], failures=10)
        executor, _ = build(
            config,
            provider,
            timeout=timedelta(seconds=100),
            clock=clock,
        )

        task = executor.execute()

        assert task.status == SyncStatus.FAILED
        assert provider.calls == 3

    def test_backoff_past_deadline_not_started(self):
        """Test that no retry is scheduled when its backoff would outlast the deadline."""
        config = make_config([{"group_name": "a"}], max_retries=3)
        syncer = InMemorySyncer(config.sync, fail_groups={"a": -1})
        executor, _ = build(
            config,
            FakeSourceProvider(["1.1.1.1"]),
            syncer,
            timeout=timedelta(seconds=20),
            retry_wait=wait_fixed(30),
            clock=FakeClock(),
        )

        task = executor.execute()

        assert task.status == SyncStatus.COMPLETED_WITH_ERRORS
        assert syncer.list_calls == 1

    def test_zero_timeout_disables_deadline(self):
        """Test that a zero timeout never expires."""
        config = make_config(timeout="0")
        executor, syncer = build(config, FakeSourceProvider(["1.1.1.1"]))

        assert executor.execute().status == SyncStatus.COMPLETED

    def test_timeout_from_config(self):
        """Test that the configured timeout is parsed."""
        executor, _ = build(make_config(timeout="45m"), FakeSourceProvider([]))

        assert executor.timeout == timedelta(minutes=45)

