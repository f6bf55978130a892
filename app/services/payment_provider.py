"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

# Gateway capture/order states that end a checkout without payment
TERMINAL_DECLINE_STATUSES = frozenset({"DECLINED", "FAILED", "VOIDED"})
COMPLETED_STATUS = "COMPLETED"


@dataclass(frozen=True)
class OrderRequest:
    """
    Provider-agnostic checkout order request.

    request_id makes order creation idempotent at the gateway.
    """

    amount: Decimal
    currency: str
    description: str
    custom_id: str
    return_url: str
    cancel_url: str
    request_id: str


@dataclass(frozen=True)
class OrderResult:
    """Order created at the gateway, awaiting buyer approval."""

    order_id: str
    status: str
    approve_url: str | None


@dataclass(frozen=True)
class CaptureResult:
    """
    Order state after a capture attempt (or an order lookup).

    status is the capture status when a capture exists, otherwise the order status.
    """

    order_id: str
    status: str
    capture_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None

    @property
    def completed(self) -> bool:
        """True when money was captured."""
        return self.status == COMPLETED_STATUS

    @property
    def declined(self) -> bool:
        """True when the gateway will never complete this order."""
        return self.status in TERMINAL_DECLINE_STATUSES


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    Represents a verified notification from the payment provider.
    """

    event_id: str
    event_type: str
    resource_id: str | None
    order_id: str | None
    capture_id: str | None
    status: str | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any checkout gateway must implement this interface so the payment service
    stays provider-agnostic.
    """

    async def create_order(self, request: OrderRequest) -> OrderResult:
        """
        Create a checkout order.

        Raises:
            GatewayError: If the gateway call fails
        """
        ...

    async def capture_order(self, order_id: str) -> CaptureResult:
        """
        Capture an approved order. Safe to call more than once per order.

        Raises:
            GatewayError: If the gateway call fails
        """
        ...

    async def get_order(self, order_id: str) -> CaptureResult:
        """
        Look up an order's current state.

        Raises:
            GatewayError: If the gateway call fails
        """
        ...

    async def verify_webhook(self, headers: Mapping[str, str], payload: bytes) -> WebhookEvent:
        """
        Verify and parse a webhook delivery.

        Raises:
            WebhookVerificationError: If the payload is malformed or not authentic
            GatewayError: If the verification call itself fails
        """
        ...
