"""Errors raised by the order model and the compensation engine.

Every domain error carries a stable ``error_code`` that callers map
to their own transport (HTTP status, CLI exit code, ...).
"""

from typing import Any


class DomainError(Exception):
    """A business rule refused the operation.

    The compensation engine turns these into failed results; anything that
    is not a ``DomainError`` propagates and rolls the transaction back.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Validation Errors (raised before any lock is taken)
# ============================================================================


class InvalidQuantityError(DomainError):
    """Quantity outside 1..remaining (or 1..cancellable) for the line."""

    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: int, reason: str = "Quantity must be positive") -> None:
        super().__init__(
            f"Invalid quantity {quantity}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


# ============================================================================
# State Conflict Errors
# ============================================================================


class InvalidStateError(DomainError):
    """Raised when the current state does not permit the requested operation."""

    error_code = "INVALID_STATE"


class InvalidReturnRequestError(InvalidStateError):
    """A return request that cannot be opened as sent.

    ``details["reason"]`` names the cause: INVALID_QUANTITY or
    INVALID_RETURN_REASON.
    """

    def __init__(self, message: str, reason: str, **details: Any) -> None:
        super().__init__(message, details={"reason": reason, **details})


class InvalidReturnReasonError(InvalidReturnRequestError):
    """Return reason code that is empty or not one of the known codes."""

    def __init__(self, reason_code: str, allowed: list[str]) -> None:
        super().__init__(
            f"Unknown return reason '{reason_code}'",
            "INVALID_RETURN_REASON",
            reason_code=reason_code,
            allowed=allowed,
        )


class InvalidReturnQuantityError(InvalidReturnRequestError):
    """Return quantity that is not a positive number of units."""

    def __init__(self, quantity: int) -> None:
        super().__init__(
            f"Invalid return quantity {quantity}: must be positive",
            "INVALID_QUANTITY",
            quantity=quantity,
        )


class InvalidStateTransitionError(InvalidStateError):
    """An order or item status change that the transition table forbids."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class CancelNotAllowedError(DomainError):
    """Raised when trying to cancel an order past the cancellable stage."""

    error_code = "CANCEL_FAIL"

    def __init__(self, order_id: int, current_status: str) -> None:
        """Initialize cancel not allowed error.

        Args:
            order_id: ID of the order.
            current_status: Current status of the order.
        """
        super().__init__(
            f"Order {order_id} cannot be cancelled in status '{current_status}'",
            details={"order_id": order_id, "current_status": current_status},
        )


class InvariantViolationError(DomainError):
    """Raised when an order item's quantity bookkeeping no longer adds up."""

    error_code = "INVARIANT_VIOLATION"


# ============================================================================
# Not Found Errors
# ============================================================================


class ResourceNotFoundError(DomainError):
    """Raised when a resource is absent or not owned by the caller.

    The message never distinguishes the two cases.
    """

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str) -> None:
        """Initialize resource not found error.

        Args:
            resource: Resource type name (e.g., "order", "order_item").
            resource_id: Identifier that was looked up.
        """
        super().__init__(
            f"{resource} {resource_id} not found",
            details={"resource": resource, "resource_id": resource_id},
        )


# ============================================================================
# Ledger Errors
# ============================================================================


class LedgerConflictError(DomainError):
    """Raised when a ledger adjustment would break a ledger's own invariant.

    For example, rolling back more sales than were ever recorded for a
    product. Always aborts the enclosing compensation.
    """

    error_code = "LEDGER_CONFLICT"


# ============================================================================
# Infrastructure Errors
# ============================================================================


class InfrastructureError(Exception):
    """Base class for failures of the storage layer rather than the business rules."""

    error_code: str = "INFRASTRUCTURE_ERROR"
    retryable: bool = False


class LockTimeoutError(InfrastructureError):
    """Raised when a row lock could not be acquired in time.

    Callers may retry the whole operation; guards are re-evaluated on retry.
    """

    error_code = "LOCK_TIMEOUT"
    retryable = True

    def __init__(self, resource: str, reason: str = "lock wait timed out") -> None:
        super().__init__(f"Could not lock {resource}: {reason}")
        self.resource = resource
        self.reason = reason
