"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class LedgerError(Exception):
    """Base exception for all ledger and payment errors."""

    pass


class InvalidArgumentError(LedgerError, ValueError):
    """Raised for malformed input: zero amounts, missing fields, out-of-range values."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid argument: {message}")


class InsufficientBalanceError(LedgerError):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Insufficient balance. Required: {required}, Available: {available}")


class OrderNotFoundError(LedgerError):
    """Raised when a capture or webhook references an unknown or already settled order."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class ResourceNotFoundError(LedgerError):
    """Raised when a referenced user, site, payment or commission does not exist."""

    def __init__(self, resource: str, resource_id: UUID | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class InvalidStateTransitionError(LedgerError):
    """Raised when a state machine transition is not allowed."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from {current} to {target}")


class PersistenceConflictError(LedgerError):
    """Raised when a unit of work keeps failing on concurrent updates."""

    def __init__(self, resource: str, attempts: int) -> None:
        self.resource = resource
        self.attempts = attempts
        super().__init__(f"Concurrent modification of {resource} after {attempts} attempts")


class GatewayError(LedgerError):
    """Raised when the payment gateway call fails (network, timeout, 4xx/5xx)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Payment gateway error: {message}")


class WebhookVerificationError(LedgerError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(LedgerError):
    """Raised when a bearer token is missing, malformed or expired."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(LedgerError):
    """Raised when user lacks required permissions."""

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")
