"""Shared plumbing for Alibaba Cloud SDK clients.

Builds credentials and OpenAPI configs for the DCDN and Cloud Firewall
clients and converts SDK exceptions into project exceptions.
"""

from __future__ import annotations

import logging
from typing import Any

from alibabacloud_credentials.client import Client as CredentialClient
from alibabacloud_credentials.models import Config as CredentialConfig
from alibabacloud_tea_openapi import models as open_api_models
from alibabacloud_tea_util import models as util_models

from dcdn_firewall_sync.config import AliyunConfig
from dcdn_firewall_sync.exceptions import AliyunAPIError
from dcdn_firewall_sync.settings import (
    AliyunEnvSettings,
    CredentialSource,
    resolve_credential,
)

logger = logging.getLogger(__name__)

DCDN_ENDPOINT = "dcdn.aliyuncs.com"

# Per-request socket timeouts in milliseconds
CONNECT_TIMEOUT_MS = 10_000
READ_TIMEOUT_MS = 30_000

# Local bugs, passed through untranslated and never retried
PROGRAMMING_ERRORS = (AttributeError, TypeError, NameError)


def firewall_endpoint(region: str) -> str:
    """Return the Cloud Firewall endpoint for a region."""
    if region == "cn-hangzhou":
        return "cloudfw.aliyuncs.com"
    return f"cloudfw.{region}.aliyuncs.com"


def build_credential(
    config: AliyunConfig,
    service: str,
    env: AliyunEnvSettings | None = None,
) -> CredentialClient:
    """Create a credential client for one service.

    Args:
        config: The service's config section.
        service: "dcdn" or "firewall".
        env: Environment settings override (for testing).

    Returns:
        Credential client for the SDK.
    """
    resolved = resolve_credential(config, service, env)
    logger.info("Using %s credentials for %s client", resolved.source.value, service)

    if resolved.source == CredentialSource.DEFAULT_CHAIN:
        return CredentialClient()

    return CredentialClient(
        CredentialConfig(
            type="access_key",
            access_key_id=resolved.access_key_id,
            access_key_secret=resolved.get_secret_value(),
        )
    )


def build_openapi_config(
    config: AliyunConfig,
    service: str,
    default_endpoint: str,
    env: AliyunEnvSettings | None = None,
) -> open_api_models.Config:
    """Create an OpenAPI client config with credentials, region and endpoint.

    Args:
        config: The service's config section.
        service: "dcdn" or "firewall".
        default_endpoint: Endpoint used when the config sets none.
        env: Environment settings override (for testing).

    Returns:
        OpenAPI config for an SDK client constructor.
    """
    return open_api_models.Config(
        credential=build_credential(config, service, env),
        region_id=config.region,
        endpoint=config.endpoint or default_endpoint,
    )


def runtime_options() -> util_models.RuntimeOptions:
    """Runtime options applied to every API call."""
    return util_models.RuntimeOptions(
        connect_timeout=CONNECT_TIMEOUT_MS,
        read_timeout=READ_TIMEOUT_MS,
    )


def translate_error(
    error: Exception,
    operation: str,
    exc_type: type[AliyunAPIError] = AliyunAPIError,
    **kwargs: Any,
) -> AliyunAPIError:
    """Convert an SDK exception into a project exception.

    SDK errors expose ``code``, ``message`` and a ``data`` dict holding the
    request ID; anything else (connection errors) is wrapped by message.

    Args:
        error: Exception raised by the SDK.
        operation: API operation name for context.
        exc_type: Project exception class to build.
        **kwargs: Extra arguments for the exception class.

    Returns:
        The translated exception (the caller raises it ``from error``).
    """
    if isinstance(error, AliyunAPIError):
        return exc_type(error.message, operation=operation, code=error.code, **kwargs)

    code = getattr(error, "code", None)
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    data = getattr(error, "data", None)
    request_id = data.get("RequestId") if isinstance(data, dict) else None

    return exc_type(
        f"{operation} failed: {message}",
        operation=operation,
        code=str(code) if code else None,
        request_id=request_id,
        **kwargs,
    )
