"""E-XXXX error codes for the sync engine.

The first digit of a code is its category:

    E-1xxx  catalog data (OPMS items and products)
    E-2xxx  validation (webhook bodies, pricing fields, item payloads)
    E-3xxx  NetSuite
    E-4xxx  system (database, retries, workers)
    E-5xxx  authentication

``is_retryable`` drives the dispatcher: only retryable codes are
rescheduled with backoff, everything else fails the queue entry at once.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes, keyed by the code's first digit."""

    DATA = "data"
    VALIDATION = "validation"
    ERP = "erp"
    SYSTEM = "system"
    AUTH = "auth"


_CATEGORY_BY_DIGIT = {
    "1": ErrorCategory.DATA,
    "2": ErrorCategory.VALIDATION,
    "3": ErrorCategory.ERP,
    "4": ErrorCategory.SYSTEM,
    "5": ErrorCategory.AUTH,
}


@dataclass(frozen=True)
class ErrorCode:
    """Definition of an error code.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the operator should take to resolve.
        is_retryable: Whether the sync can be retried without operator action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {}


def _register(
    code: str, title: str, template: str, remediation: str, retryable: bool = False
) -> None:
    ERROR_REGISTRY[code] = ErrorCode(
        code=code,
        category=_CATEGORY_BY_DIGIT[code[2]],
        title=title,
        message_template=template,
        remediation=remediation,
        is_retryable=retryable,
    )


_RETRIED_AUTOMATICALLY = "The sync will be retried automatically."

_register(
    "E-1001", "Item Not Found", "{message}",
    "Create or un-archive the item in OPMS, then resend the update.",
)
_register(
    "E-1002", "Digital Item", "Item '{item_code}' is a digital item and is not synced.",
    "No action needed. Digital items are excluded from NetSuite sync.",
)

_register(
    "E-2001", "Invalid Field Value", "{message}",
    "Correct the value in NetSuite and resend the update.",
)
_register(
    "E-2002", "Missing Item Code", "Webhook payload has no itemData.itemid.",
    "Check the NetSuite workflow script that builds the webhook body.",
)
_register(
    "E-2003", "Unsupported Event Type", "Unsupported webhook event type '{event_type}'.",
    "Only item.pricing.updated events are accepted.",
)
_register(
    "E-2004", "Payload Validation Failed",
    "Payload for '{item_code}' failed validation: {errors}.",
    "Fix the OPMS source data for the listed fields.",
)

_register(
    "E-3001", "NetSuite Unavailable", "{message}", _RETRIED_AUTOMATICALLY, retryable=True
)
_register(
    "E-3002", "NetSuite Rejected Item", "NetSuite rejected the item: {message}",
    "Review the RESTlet error and the mapped field values.",
)

_register(
    "E-4001", "Unexpected Error", "Unexpected error: {message}",
    "Check the worker logs for the stack trace.",
)
_register(
    "E-4002", "Database Unavailable", "Database error: {message}",
    _RETRIED_AUTOMATICALLY, retryable=True,
)
_register(
    "E-4003", "Max Retries Exceeded", "Max retries exceeded: {message}",
    "Fix the underlying cause and trigger a manual sync.",
)
_register(
    "E-4004", "Stale Claim", "Worker '{worker}' did not finish within {seconds}s.",
    "The entry was returned to the queue. Check for crashed workers.",
    retryable=True,
)

_register(
    "E-5001", "Unauthorized Webhook", "Webhook bearer token missing or invalid.",
    "Check the shared secret configured in NetSuite and OPMS_SYNC_WEBHOOK_SECRET.",
)


def get_error(code: str) -> ErrorCode | None:
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """All registered codes in ``category``, in code order."""
    return sorted(
        (e for e in ERROR_REGISTRY.values() if e.category == category),
        key=lambda e: e.code,
    )
