"""Configuration models for DCDN to Cloud Firewall synchronization.

Defines the schema of the YAML configuration file, loads it once at startup
and generates a commented sample file on request.
"""

from __future__ import annotations

import re
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from dcdn_firewall_sync.exceptions import ConfigError
from dcdn_firewall_sync.models import IPType

DEFAULT_CONFIG_PATH = Path("configs/config.yaml")
DEFAULT_REGION = "ap-southeast-1"  # Singapore

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string such as ``168h`` or ``1h30m``.

    Args:
        value: Duration string.

    Returns:
        The parsed duration.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    text = value.strip()
    if text == "0":
        return timedelta(0)

    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if not text:
        msg = f"invalid duration: {value!r}"
        raise ValueError(msg)

    seconds = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            msg = f"invalid duration: {value!r}"
            raise ValueError(msg)
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    return timedelta(seconds=sign * seconds)


class SourceType(str, Enum):
    """Where the source IP list comes from."""

    DCDN = "dcdn"  # DescribeDcdnL2Ips
    STATIC = "static"  # Hardcoded IP list
    URL = "url"  # Plain-text list over HTTP(S)


class AliyunConfig(BaseModel):
    """Alibaba Cloud client settings.

    Attributes:
        access_key_id: Optional AccessKey ID (prefer environment variables)
        access_key_secret: Optional AccessKey secret
        region: Region ID
        endpoint: Optional endpoint override
    """

    access_key_id: str | None = None
    access_key_secret: str | None = None
    region: str = DEFAULT_REGION
    endpoint: str | None = None

    @field_validator("region", mode="before")
    @classmethod
    def default_region(cls, v: Any) -> Any:
        """Treat an empty region as the default region."""
        return v or DEFAULT_REGION


class DCDNConfig(AliyunConfig):
    """Credentials and region for the DCDN (source IP) client."""


class FirewallConfig(AliyunConfig):
    """Credentials and region for the Cloud Firewall (address book) client."""


class SchedulerConfig(BaseModel):
    """Scheduling settings.

    Attributes:
        cron: Cron expression with optional seconds field; wins over interval
        interval: Fixed interval used when no cron expression is set
        run_on_start: Run one pass immediately on startup
        timeout: Deadline for one whole pass
        max_retries: Retries around each network call site
    """

    cron: str = ""
    interval: str = "168h"
    run_on_start: bool = False
    timeout: str = "30m"
    max_retries: int = Field(default=3, ge=0)

    @field_validator("cron", mode="before")
    @classmethod
    def strip_cron(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("interval", mode="before")
    @classmethod
    def default_interval(cls, v: Any) -> Any:
        return v or "168h"

    @field_validator("timeout", mode="before")
    @classmethod
    def default_timeout(cls, v: Any) -> Any:
        return v or "30m"

    @field_validator("max_retries", mode="before")
    @classmethod
    def default_max_retries(cls, v: Any) -> Any:
        return 3 if v is None else v

    @property
    def uses_cron(self) -> bool:
        """Whether the cron expression takes priority over the interval."""
        return bool(self.cron)


class AddressGroupSpec(BaseModel):
    """Configuration for one firewall address group.

    Attributes:
        group_name: Address book name (unique key)
        description: Description used when creating/replacing the book
        ip_type: IP family tag (only IPv4 is ever pushed)
        include_patterns: Wildcard patterns an IP must match (empty = all)
        exclude_patterns: Wildcard patterns that always drop an IP
    """

    group_name: str = Field(min_length=1, description="Address book name")
    description: str = Field(default="", description="Address book description")
    ip_type: IPType = Field(default=IPType.BOTH, description="IP family tag")
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("ip_type", mode="before")
    @classmethod
    def default_ip_type(cls, v: Any) -> Any:
        return v or IPType.BOTH

    @field_validator("include_patterns", "exclude_patterns", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v


class SyncConfig(BaseModel):
    """Address groups to keep in sync, processed in file order."""

    address_groups: list[AddressGroupSpec] = Field(default_factory=list)

    @field_validator("address_groups")
    @classmethod
    def validate_groups(cls, v: list[AddressGroupSpec]) -> list[AddressGroupSpec]:
        """Require at least one group and unique group names."""
        if not v:
            msg = "sync.address_groups must not be empty"
            raise ValueError(msg)
        seen: set[str] = set()
        for group in v:
            if group.group_name in seen:
                msg = f"duplicate address group name: {group.group_name}"
                raise ValueError(msg)
            seen.add(group.group_name)
        return v

    def get_group(self, group_name: str) -> AddressGroupSpec | None:
        """Look up a group by exact name."""
        for group in self.address_groups:
            if group.group_name == group_name:
                return group
        return None


class SourceConfig(BaseModel):
    """Source IP provider selection.

    Attributes:
        type: Provider type (dcdn, static or url)
        url: URL of a plain-text IP list (url type)
        ips: Static IP list (static type)
        request_timeout: HTTP timeout in seconds (url type)
    """

    type: SourceType = SourceType.DCDN
    url: str | None = None
    ips: list[str] = Field(default_factory=list)
    request_timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def validate_url(self) -> SourceConfig:
        if self.type == SourceType.URL and not self.url:
            msg = "source.url is required for url source type"
            raise ValueError(msg)
        return self


class LoggingConfig(BaseModel):
    """Logging settings.

    Attributes:
        level: debug, info, warn or error
        format: text or json
        file_path: Optional log file (in addition to stderr)
    """

    level: str = "info"
    format: str = "text"
    file_path: str | None = None

    @field_validator("level", mode="before")
    @classmethod
    def validate_level(cls, v: Any) -> str:
        level = (v or "info").lower()
        if level not in {"debug", "info", "warn", "warning", "error"}:
            msg = f"Invalid log level: {v}. Must be one of: debug, info, warn, error"
            raise ValueError(msg)
        return level

    @field_validator("format", mode="before")
    @classmethod
    def validate_format(cls, v: Any) -> str:
        fmt = (v or "text").lower()
        if fmt not in {"text", "json"}:
            msg = f"Invalid log format: {v}. Must be one of: text, json"
            raise ValueError(msg)
        return fmt


class Config(BaseModel):
    """Root configuration."""

    dcdn: DCDNConfig = Field(default_factory=DCDNConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    sync: SyncConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)

    @field_validator("dcdn", "firewall", "scheduler", "logging", "source", mode="before")
    @classmethod
    def none_to_section(cls, v: Any) -> Any:
        return {} if v is None else v


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Parsed configuration with defaults applied.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigError: If the file cannot be read, parsed or is invalid.
    """
    path = Path(path)
    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    try:
        with path.open(encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except yaml.YAMLError as e:
        msg = f"Failed to parse config file: {e}"
        raise ConfigError(msg, path=str(path)) from e
    except (OSError, UnicodeDecodeError) as e:
        msg = f"Failed to read config file: {e}"
        raise ConfigError(msg, path=str(path)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = "Config file must contain a mapping at the top level"
        raise ConfigError(msg, path=str(path))

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        msg = f"Invalid configuration: {'; '.join(errors)}"
        raise ConfigError(msg, path=str(path), details={"errors": errors}) from e


SAMPLE_CONFIG = """\
# Aliyun DCDN Firewall Sync Configuration

# DCDN client: reads the L2 node IP list (a read-only RAM user is enough)
dcdn:
  # Optional: keys in the file (prefer environment variables)
  # access_key_id: "DCDN_USER_ACCESS_KEY_ID"
  # access_key_secret: "DCDN_USER_ACCESS_KEY_SECRET"
  #
  # Credential lookup order:
  #   1. access_key_id / access_key_secret above
  #   2. DCDN_ALIBABA_CLOUD_ACCESS_KEY_ID / DCDN_ALIBABA_CLOUD_ACCESS_KEY_SECRET
  #   3. ALIBABA_CLOUD_ACCESS_KEY_ID / ALIBABA_CLOUD_ACCESS_KEY_SECRET
  #   4. default credential chain (~/.alibabacloud/credentials, RAM role, ...)
  region: "ap-southeast-1"

# Cloud Firewall client: updates address books (needs firewall write access)
firewall:
  # access_key_id: "FIREWALL_USER_ACCESS_KEY_ID"
  # access_key_secret: "FIREWALL_USER_ACCESS_KEY_SECRET"
  #
  # Service-specific variables:
  #   FIREWALL_ALIBABA_CLOUD_ACCESS_KEY_ID / FIREWALL_ALIBABA_CLOUD_ACCESS_KEY_SECRET
  region: "ap-southeast-1"

scheduler:
  # Cron expression with seconds field; takes priority over interval
  cron: "0 0 2 * * 0,3"   # 02:00 every Sunday and Wednesday
  # Fallback fixed interval (used when cron is empty)
  interval: "168h"        # once a week
  run_on_start: true      # run one pass immediately on startup
  timeout: "30m"          # deadline for one whole pass
  max_retries: 3          # retries around each API call

sync:
  address_groups:
    - group_name: "dcdn-source-ips-v4"
      description: "DCDN source IPv4 addresses"
      ip_type: "ipv4"
      include_patterns:
        - "*"             # everything
      exclude_patterns:
        - "127.*"         # loopback
        - "192.168.*"     # private
        - "10.*"          # private
        - "172.16.*"      # private

logging:
  level: "info"           # debug, info, warn, error
  format: "text"          # text, json
  file_path: "logs/sync.log"
"""


def generate_sample_config(path: str | Path = DEFAULT_CONFIG_PATH) -> Path:
    """Write a commented sample configuration file.

    Args:
        path: Destination path; parent directories are created.

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    return path
