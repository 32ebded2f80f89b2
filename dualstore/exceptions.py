"""
Exception hierarchy for dual-store persistence.

Every failure raised by the package derives from DualStoreError so callers
can catch store-level problems in one place:
- EmptyResponse: a required query result was empty
- ProcedureError: a procedure query reported ``error: true``
- DriverError: a normalized graph driver failure
- CoordinationError: relational/graph transaction coordination failed
- ConfigurationError: the package was wired up incorrectly
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories."""
    QUERY = "query"
    PROCEDURE = "procedure"
    DRIVER = "driver"
    COORDINATION = "coordination"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class DualStoreError(Exception):
    """Base exception for dual-store errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class EmptyResponse(DualStoreError):
    """A query required at least one record but returned none."""

    def __init__(self, query: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {}) or {}
        if query:
            details["query"] = query

        super().__init__(
            message="EmptyResponse",
            category=ErrorCategory.QUERY,
            severity=ErrorSeverity.LOW,
            details=details,
            **kwargs,
        )


class ProcedureError(DualStoreError):
    """A procedure query returned ``error: true``; message is kept verbatim."""

    def __init__(self, message: str, query: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {}) or {}
        if query:
            details["query"] = query

        super().__init__(
            message=message,
            category=ErrorCategory.PROCEDURE,
            details=details,
            **kwargs,
        )


class DriverError(DualStoreError):
    """Low-level graph driver failure normalized to a ``code``/``message`` pair."""

    def __init__(
        self,
        code: str | None,
        message: str | None,
        query: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        details["code"] = code
        if query:
            details["query"] = query

        self.code = code
        self.driver_message = message
        self.query = query

        super().__init__(
            message=f"{code}: {message}",
            category=ErrorCategory.DRIVER,
            severity=ErrorSeverity.HIGH,
            details=details,
            **kwargs,
        )


class CoordinationError(DualStoreError):
    """
    Transaction coordination failed.

    Raised when a completion hook fails. The wrapped relational transaction
    is left unresolved and needs intervention at a higher level.
    """

    def __init__(self, message: str, event: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {}) or {}
        if event:
            details["event"] = event

        super().__init__(
            message=message,
            category=ErrorCategory.COORDINATION,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            details=details,
            **kwargs,
        )


class ConfigurationError(DualStoreError):
    """Configuration errors."""

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            details=details,
            **kwargs,
        )
