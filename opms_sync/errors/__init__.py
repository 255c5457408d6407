"""Error handling framework for the sync engine.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions used to classify sync outcomes
- SyncError, exception classification and formatting

Error categories:
- E-1xxx: Catalog data errors
- E-2xxx: Validation errors
- E-3xxx: NetSuite errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
"""

from opms_sync.errors.domain import (
    ConflictError,
    DomainError,
    InvalidStateTransition,
    NotFoundError,
    TransientError,
    ValidationError,
)
from opms_sync.errors.formatter import SyncError, classify_exception, format_error
from opms_sync.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Domain
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "TransientError",
    "InvalidStateTransition",
    # Formatter
    "SyncError",
    "classify_exception",
    "format_error",
]
