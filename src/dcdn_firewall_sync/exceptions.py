"""Exception hierarchy for DCDN to Cloud Firewall synchronization.

Exception Hierarchy:
    SyncBaseError (base for all project exceptions)
    ├── ConfigError (missing/malformed configuration, fatal at startup)
    ├── SetupError (bad cron expression or duration, fatal at scheduler start)
    └── AliyunAPIError (Alibaba Cloud API call failed)
        ├── FetchError (source IP retrieval failed, fatal to one pass)
        └── GroupSyncError (one address book create/replace failed)

A malformed IP or CIDR seen during normalization is not an error: it is
dropped and logged at debug level.
"""

from __future__ import annotations

from typing import Any


class SyncBaseError(Exception):
    """Base exception for all sync errors.

    Attributes:
        message: Human-readable error message.
        details: Additional context about the error.
        error_code: Machine-readable error code.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Additional context as key-value pairs.
            error_code: Machine-readable error code.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for structured logging.

        Returns:
            Dictionary with error details suitable for JSON serialization.
        """
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.error_code:
            result["code"] = self.error_code
        if self.details:
            result["details"] = self.details
        return result


class ConfigError(SyncBaseError):
    """Configuration file is missing, unreadable or invalid.

    Attributes:
        path: Path of the configuration file (if known)
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(message, details=details, error_code="CONFIG_ERROR")
        self.path = path


class SetupError(SyncBaseError):
    """Scheduler could not be set up (bad cron expression or duration).

    Attributes:
        setting: Name of the offending scheduler setting
        value: The rejected value
    """

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        value: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if setting:
            details["setting"] = setting
        if value is not None:
            details["value"] = value
        super().__init__(message, details=details, error_code="SETUP_ERROR")
        self.setting = setting
        self.value = value


class AliyunAPIError(SyncBaseError):
    """An Alibaba Cloud API call failed.

    Attributes:
        operation: API operation that failed (e.g. "DescribeAddressBook")
        code: Alibaba Cloud error code (if available)
        request_id: Request ID returned by the API (if available)
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        code: str | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize the API error.

        Args:
            message: Error message
            operation: API operation that failed
            code: Alibaba Cloud error code
            request_id: Request ID for support tickets
            details: Additional context
            error_code: Machine-readable error code
        """
        details = details or {}
        if operation:
            details["operation"] = operation
        if code:
            details["code"] = code
        if request_id:
            details["request_id"] = request_id
        super().__init__(message, details=details, error_code=error_code or "API_ERROR")
        self.operation = operation
        self.code = code
        self.request_id = request_id

    def __str__(self) -> str:
        """Return string representation."""
        parts = [self.message]
        if self.operation:
            parts.append(f"(operation: {self.operation})")
        if self.code:
            parts.append(f"(code: {self.code})")
        return " ".join(parts)


class FetchError(AliyunAPIError):
    """Source IP list could not be retrieved.

    Fails the current pass only; the scheduler keeps running.
    """

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "FETCH_ERROR")
        super().__init__(message, **kwargs)


class GroupSyncError(AliyunAPIError):
    """Creating or replacing one address book failed.

    Attributes:
        group_name: Address book the failure belongs to
    """

    def __init__(
        self,
        message: str,
        *,
        group_name: str,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", "GROUP_SYNC_ERROR")
        details = kwargs.pop("details", None) or {}
        details["group_name"] = group_name
        super().__init__(message, details=details, **kwargs)
        self.group_name = group_name
