"""Environment-based Alibaba Cloud credential settings.

Credentials are resolved per client, independently for the DCDN and the
Cloud Firewall client, so the two integrations can run under different
least-privilege RAM users. Lookup order:

1. ``access_key_id`` / ``access_key_secret`` in the config file
2. service-specific variables (``DCDN_ALIBABA_CLOUD_ACCESS_KEY_ID`` ...)
3. generic ``ALIBABA_CLOUD_ACCESS_KEY_ID`` / ``ALIBABA_CLOUD_ACCESS_KEY_SECRET``
4. the SDK default credential chain
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from dcdn_firewall_sync.config import AliyunConfig

logger = logging.getLogger(__name__)


class CredentialSource(str, Enum):
    """Where a resolved credential came from."""

    CONFIG = "config"
    SERVICE_ENV = "service_env"
    GENERIC_ENV = "generic_env"
    DEFAULT_CHAIN = "default_chain"


class AliyunEnvSettings(BaseSettings):
    """AccessKey pairs read from environment variables or a .env file.

    Attributes:
        access_key_id: Generic AccessKey ID
        access_key_secret: Generic AccessKey secret
        dcdn_access_key_id: AccessKey ID for the DCDN client only
        dcdn_access_key_secret: AccessKey secret for the DCDN client only
        firewall_access_key_id: AccessKey ID for the firewall client only
        firewall_access_key_secret: AccessKey secret for the firewall client only
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    access_key_id: str | None = Field(
        default=None,
        alias="ALIBABA_CLOUD_ACCESS_KEY_ID",
        description="Generic AccessKey ID",
    )
    access_key_secret: SecretStr | None = Field(
        default=None,
        alias="ALIBABA_CLOUD_ACCESS_KEY_SECRET",
        description="Generic AccessKey secret",
    )
    dcdn_access_key_id: str | None = Field(
        default=None,
        alias="DCDN_ALIBABA_CLOUD_ACCESS_KEY_ID",
        description="AccessKey ID for the DCDN client",
    )
    dcdn_access_key_secret: SecretStr | None = Field(
        default=None,
        alias="DCDN_ALIBABA_CLOUD_ACCESS_KEY_SECRET",
        description="AccessKey secret for the DCDN client",
    )
    firewall_access_key_id: str | None = Field(
        default=None,
        alias="FIREWALL_ALIBABA_CLOUD_ACCESS_KEY_ID",
        description="AccessKey ID for the Cloud Firewall client",
    )
    firewall_access_key_secret: SecretStr | None = Field(
        default=None,
        alias="FIREWALL_ALIBABA_CLOUD_ACCESS_KEY_SECRET",
        description="AccessKey secret for the Cloud Firewall client",
    )

    def service_pair(self, service: str) -> tuple[str | None, SecretStr | None]:
        """Return the service-specific AccessKey pair.

        Args:
            service: "dcdn" or "firewall".

        Returns:
            (access_key_id, access_key_secret), either may be None.

        Raises:
            ValueError: If the service name is unknown.
        """
        if service == "dcdn":
            return self.dcdn_access_key_id, self.dcdn_access_key_secret
        if service == "firewall":
            return self.firewall_access_key_id, self.firewall_access_key_secret
        msg = f"Unknown service: {service}"
        raise ValueError(msg)


@dataclass(frozen=True)
class ResolvedCredential:
    """An AccessKey pair (or the default chain marker) and its origin."""

    source: CredentialSource
    access_key_id: str | None = None
    access_key_secret: SecretStr | None = None

    def get_secret_value(self) -> str | None:
        if self.access_key_secret is None:
            return None
        return self.access_key_secret.get_secret_value()


def _complete(key_id: str | None, secret: SecretStr | str | None) -> bool:
    if isinstance(secret, SecretStr):
        secret = secret.get_secret_value()
    return bool(key_id) and bool(secret)


_settings_instance: AliyunEnvSettings | None = None


def get_env_settings() -> AliyunEnvSettings:
    """Get environment settings (singleton, reads from environment).

    Returns:
        AliyunEnvSettings instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = AliyunEnvSettings()
    return _settings_instance


def reset_settings() -> None:
    """Reset singleton (for testing)."""
    global _settings_instance
    _settings_instance = None


def resolve_credential(
    config: AliyunConfig,
    service: str,
    env: AliyunEnvSettings | None = None,
) -> ResolvedCredential:
    """Resolve the AccessKey pair for one client.

    Args:
        config: The client's config section.
        service: "dcdn" or "firewall".
        env: Environment settings; defaults to the process environment.

    Returns:
        The first complete pair in lookup order, or a DEFAULT_CHAIN marker.
    """
    env = env or get_env_settings()

    if _complete(config.access_key_id, config.access_key_secret):
        logger.debug("Using %s credentials from config file", service)
        return ResolvedCredential(
            source=CredentialSource.CONFIG,
            access_key_id=config.access_key_id,
            access_key_secret=SecretStr(config.access_key_secret or ""),
        )

    key_id, secret = env.service_pair(service)
    if _complete(key_id, secret):
        logger.debug("Using %s credentials from %s_* environment", service, service.upper())
        return ResolvedCredential(
            source=CredentialSource.SERVICE_ENV,
            access_key_id=key_id,
            access_key_secret=secret,
        )

    if _complete(env.access_key_id, env.access_key_secret):
        logger.debug("Using %s credentials from ALIBABA_CLOUD_* environment", service)
        return ResolvedCredential(
            source=CredentialSource.GENERIC_ENV,
            access_key_id=env.access_key_id,
            access_key_secret=env.access_key_secret,
        )

    logger.debug("Using default credential chain for %s", service)
    return ResolvedCredential(source=CredentialSource.DEFAULT_CHAIN)
