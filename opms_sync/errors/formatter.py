"""Sync error type, exception classification and display formatting.

This module provides:
- SyncError exception class carrying a registry code
- classify_exception() to map raised exceptions onto registry codes
- format_error() for CLI and log display
"""

from dataclasses import dataclass, field

from sqlalchemy.exc import DBAPIError, OperationalError

from opms_sync.errors.domain import NotFoundError, TransientError, ValidationError
from opms_sync.errors.registry import get_error


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass
class SyncError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action the operator should take to resolve.
        is_retryable: Whether the sync can be retried without operator action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str = ""
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: object) -> "SyncError":
        """Build an error from a registry code.

        Placeholders without a matching keyword stay in the message as
        written. The keyword ``details`` becomes the details field.
        """
        details = kwargs.pop("details", None)
        details = details if isinstance(details, dict) else {}

        error_def = get_error(code)
        if error_def is None:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Check the worker logs.",
                details=details,
            )
        return cls(
            code=error_def.code,
            message=error_def.message_template.format_map(_KeepMissing(kwargs)),
            remediation=error_def.remediation,
            is_retryable=error_def.is_retryable,
            details=details,
        )


def _is_connection_error(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(
        marker in text
        for marker in ("deadlock", "lock wait timeout", "database is locked", "connection")
    )


def classify_exception(exc: BaseException) -> SyncError:
    """Map an exception raised during a sync attempt onto a SyncError.

    Validation and not-found errors are permanent. Transient errors and
    database connection, lock or deadlock failures are retryable. Anything
    else is an unexpected, permanent failure.

    Args:
        exc: The exception to classify.

    Returns:
        SyncError with registry code and retryability.
    """
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, ValidationError):
        details = {"field": exc.field} if exc.field else {}
        return SyncError.from_code("E-2001", message=str(exc), details=details)
    if isinstance(exc, NotFoundError):
        return SyncError.from_code("E-1001", message=str(exc))
    if isinstance(exc, TransientError):
        return SyncError.from_code("E-3001", message=str(exc))
    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and _is_connection_error(exc)
    ):
        return SyncError.from_code("E-4002", message=str(exc.orig or exc))
    return SyncError.from_code("E-4001", message=f"{type(exc).__name__}: {exc}")


def format_error(error: SyncError, include_remediation: bool = True) -> str:
    """Format error for display to an operator.

    Args:
        error: The SyncError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string.
    """
    lines = [f"{error.code}: {error.message}"]
    if error.is_retryable:
        lines.append("  (will be retried)")
    if include_remediation and error.remediation:
        lines.append(f"  Remediation: {error.remediation}")
    return "\n".join(lines)
