"""Aliyun DCDN to Cloud Firewall address book synchronization.

Fetches the DCDN L2 (back-to-origin) node IP list, narrows it to IPv4,
filters it per configured address group and writes each group to a Cloud
Firewall address book with create-or-fully-replace semantics.

Example:
    ```python
    from dcdn_firewall_sync import Scheduler, load_config

    config = load_config("configs/config.yaml")
    scheduler = Scheduler.from_config(config)
    task = scheduler.run_once()
    print(task.status, len(task.added_ips))
    ```
"""

__version__ = "1.0.0"

from dcdn_firewall_sync.config import (  # noqa: E402
    AddressGroupSpec,
    Config,
    generate_sample_config,
    load_config,
)
from dcdn_firewall_sync.exceptions import (  # noqa: E402
    AliyunAPIError,
    ConfigError,
    FetchError,
    GroupSyncError,
    SetupError,
    SyncBaseError,
)
from dcdn_firewall_sync.executor import SyncExecutor, execute_sync_pass  # noqa: E402
from dcdn_firewall_sync.filters import (  # noqa: E402
    filter_group,
    filter_ipv4,
    match_pattern,
    normalize_ip,
)
from dcdn_firewall_sync.firewall import AddressBookSyncer, CloudFirewallClient  # noqa: E402
from dcdn_firewall_sync.models import (  # noqa: E402
    AddressBook,
    SourceIPRecord,
    SyncStatus,
    SyncTask,
)
from dcdn_firewall_sync.scheduler import (  # noqa: E402
    Scheduler,
    SchedulerState,
    SchedulerStatus,
)
from dcdn_firewall_sync.settings import reset_settings  # noqa: E402
from dcdn_firewall_sync.sources import (  # noqa: E402
    DCDNSourceIPProvider,
    SourceIPProvider,
    get_source_provider,
)

__all__ = [
    "AddressBook",
    "AddressBookSyncer",
    "AddressGroupSpec",
    "AliyunAPIError",
    "CloudFirewallClient",
    "Config",
    "ConfigError",
    "DCDNSourceIPProvider",
    "FetchError",
    "GroupSyncError",
    "Scheduler",
    "SchedulerState",
    "SchedulerStatus",
    "SetupError",
    "SourceIPProvider",
    "SourceIPRecord",
    "SyncBaseError",
    "SyncExecutor",
    "SyncStatus",
    "SyncTask",
    "execute_sync_pass",
    "filter_group",
    "filter_ipv4",
    "generate_sample_config",
    "get_source_provider",
    "load_config",
    "match_pattern",
    "normalize_ip",
    "reset_settings",
]
