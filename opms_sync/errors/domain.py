"""Typed domain exceptions for sync outcome classification and API mapping.

Service code raises these; the dispatcher and webhook boundary classify
them into retryable or permanent failures, and routes map them to HTTP
status codes.

Usage:
    # In service layer
    raise NotFoundError("Item", item_code)

    # In route handler
    try:
        entry = queue.get_entry(entry_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404, never retried."""

    def __init__(self, resource_type: str, identifier: str | int) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict. Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Malformed input rejected before any write. Maps to HTTP 400."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class TransientError(DomainError):
    """Connection loss, timeout or lock contention. Retryable."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidStateTransition(ConflictError):
    """Raised when attempting an invalid job or item state transition.

    Attributes:
        current_state: The current state value.
        attempted_state: The state that was attempted.
        allowed_transitions: Valid transition targets from the current state.
    """

    def __init__(
        self,
        current_state: str,
        attempted_state: str,
        allowed_transitions: list[str],
    ) -> None:
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.allowed_transitions = allowed_transitions
        allowed_str = ", ".join(allowed_transitions) or "none (terminal)"
        super().__init__(
            f"Cannot transition from '{current_state}' to '{attempted_state}'. "
            f"Allowed transitions: {allowed_str}"
        )
