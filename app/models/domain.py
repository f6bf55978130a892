"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
Intents validate themselves on construction, so anything that reaches a service
has already passed the boundary checks.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from app.exceptions import InvalidArgumentError
from app.models.api import (
    CommissionStatus,
    LedgerKind,
    OrderType,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
    TransactionKind,
    WebhookOutcome,
)

USD = "USD"
EZ_CREDITS = "EZ_CREDITS"


@dataclass(frozen=True)
class AccountKey:
    """Identifies one balance account: a (user, ledger kind) pair."""

    user_id: UUID
    ledger_kind: LedgerKind


@dataclass(frozen=True)
class AdjustmentIntent:
    """A requested balance change before persistence - immutable intent."""

    account: AccountKey
    amount: int
    kind: TransactionKind
    description: str
    cost: Decimal | None = None
    cost_currency: str | None = None
    payment_id: UUID | None = None
    site_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate adjustment constraints."""
        if self.amount == 0:
            raise InvalidArgumentError("Amount cannot be zero")
        if not self.description or not self.description.strip():
            raise InvalidArgumentError("Description cannot be empty")
        if self.cost is not None and self.cost < 0:
            raise InvalidArgumentError(f"Cost cannot be negative: {self.cost}")
        if (self.cost is None) != (self.cost_currency is None):
            raise InvalidArgumentError("Cost and cost currency must be given together")


@dataclass(frozen=True)
class BalanceData:
    """Immutable balance snapshot."""

    user_id: UUID
    ledger_kind: LedgerKind
    balance: int
    lifetime: int


@dataclass(frozen=True)
class AdjustmentResult:
    """Outcome of one applied balance change."""

    transaction_id: int
    account_id: UUID
    amount: int
    balance: int
    lifetime: int


@dataclass(frozen=True)
class TransactionData:
    """Immutable ledger transaction after persistence."""

    transaction_id: int
    account_id: UUID
    user_id: UUID
    ledger_kind: LedgerKind
    kind: TransactionKind
    amount: int
    balance_after: int
    description: str
    cost: Decimal | None
    cost_currency: str | None
    payment_id: UUID | None
    site_id: UUID | None
    created_at: datetime


@dataclass(frozen=True)
class TransactionPage:
    """One page of transaction history, newest first."""

    transactions: list[TransactionData]
    total: int
    limit: int
    offset: int


@dataclass(frozen=True)
class AdminAdjustmentData:
    """A manual adjustment joined with the adjusted user."""

    transaction_id: int
    user_id: UUID
    user_name: str | None
    user_email: str | None
    amount: int
    balance_after: int
    description: str
    created_at: datetime


@dataclass(frozen=True)
class ReconciliationReport:
    """Result of replaying an account's transactions in order."""

    user_id: UUID
    ledger_kind: LedgerKind
    balance: int
    replayed_balance: int
    transaction_count: int
    mismatched_transaction_ids: list[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        """True when every snapshot and the final balance match the replay."""
        return not self.mismatched_transaction_ids and self.balance == self.replayed_balance


@dataclass(frozen=True)
class CheckoutCommand:
    """A validated order request (gateway checkout or pay-with-credits)."""

    user_id: UUID
    order_type: OrderType
    amount: Decimal
    plan: str | None = None
    credit_amount: int | None = None
    ledger_kind: LedgerKind = LedgerKind.RADIUM
    site_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate order constraints."""
        if self.amount <= 0:
            raise InvalidArgumentError(f"Amount must be positive: {self.amount}")
        if self.order_type == OrderType.SUBSCRIPTION and not self.plan:
            raise InvalidArgumentError("Plan type required for subscriptions")
        if self.order_type == OrderType.CREDITS and (
            self.credit_amount is None or self.credit_amount <= 0
        ):
            raise InvalidArgumentError("Credit amount required for credit purchases")

    @property
    def payment_type(self) -> PaymentType:
        """Payment type recorded for this order."""
        if self.order_type == OrderType.SUBSCRIPTION:
            return PaymentType.SUBSCRIPTION
        if self.ledger_kind == LedgerKind.CREDITS:
            return PaymentType.USER_CREDITS
        return PaymentType.RADIUM_CREDITS

    @property
    def description(self) -> str:
        """Human readable order description."""
        if self.order_type == OrderType.SUBSCRIPTION:
            return f"{self.plan} Subscription"
        label = "Radium Credits" if self.ledger_kind == LedgerKind.RADIUM else "EZ Credits"
        return f"{self.credit_amount} {label}"


@dataclass(frozen=True)
class ExchangeCommand:
    """Buy Radium credits with EZ credits."""

    user_id: UUID
    radium_amount: int
    credit_cost: int
    pack_name: str

    def __post_init__(self) -> None:
        """Validate exchange constraints."""
        if self.radium_amount <= 0 or self.credit_cost <= 0:
            raise InvalidArgumentError("Invalid request data")
        if not self.pack_name:
            raise InvalidArgumentError("Pack name cannot be empty")


@dataclass(frozen=True)
class PaymentMetadata:
    """Typed view over the payment metadata blob."""

    paypal_order_id: str | None = None
    paypal_capture_id: str | None = None
    paypal_status: str | None = None
    plan: str | None = None
    credit_amount: int | None = None
    ledger_kind: LedgerKind | None = None
    pack_name: str | None = None
    adjusted_by: str | None = None
    payment_method: str | None = None
    refund_shortfall: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PaymentMetadata":
        """Build from a stored JSON blob, ignoring unknown keys."""
        data = data or {}
        ledger_kind = data.get("ledger_kind")
        credit_amount = data.get("credit_amount")
        shortfall = data.get("refund_shortfall")
        return cls(
            paypal_order_id=data.get("paypal_order_id"),
            paypal_capture_id=data.get("paypal_capture_id"),
            paypal_status=data.get("paypal_status"),
            plan=data.get("plan"),
            credit_amount=int(credit_amount) if credit_amount is not None else None,
            ledger_kind=LedgerKind(ledger_kind) if ledger_kind else None,
            pack_name=data.get("pack_name"),
            adjusted_by=data.get("adjusted_by"),
            payment_method=data.get("payment_method"),
            refund_shortfall=int(shortfall) if shortfall is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON blob, dropping unset keys."""
        data: dict[str, Any] = {
            "paypal_order_id": self.paypal_order_id,
            "paypal_capture_id": self.paypal_capture_id,
            "paypal_status": self.paypal_status,
            "plan": self.plan,
            "credit_amount": self.credit_amount,
            "ledger_kind": self.ledger_kind.value if self.ledger_kind else None,
            "pack_name": self.pack_name,
            "adjusted_by": self.adjusted_by,
            "payment_method": self.payment_method,
            "refund_shortfall": self.refund_shortfall,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class PaymentData:
    """Immutable payment snapshot."""

    payment_id: UUID
    user_id: UUID
    site_id: UUID | None
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_type: PaymentType
    description: str
    metadata: PaymentMetadata
    paid_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class SubscriptionData:
    """Immutable site subscription snapshot."""

    subscription_id: UUID
    user_id: UUID
    site_id: UUID
    plan: str
    status: SubscriptionStatus
    amount: Decimal
    start_date: datetime
    end_date: datetime
    renewed: bool


@dataclass(frozen=True)
class OrderCreated:
    """A pending gateway checkout."""

    order_id: str
    status: str
    approve_url: str | None
    payment_id: UUID


@dataclass(frozen=True)
class CaptureOutcome:
    """Result of capturing a gateway order."""

    order_id: str
    status: PaymentStatus
    payment_id: UUID | None = None
    payment_type: PaymentType | None = None


@dataclass(frozen=True)
class WebhookResult:
    """How a webhook delivery was handled."""

    outcome: WebhookOutcome
    event_id: str
    event_type: str


@dataclass(frozen=True)
class CreditPaymentResult:
    """Outcome of paying with EZ credits."""

    payment_id: UUID
    credits_used: int
    credit_balance: int
    credits_added: int = 0
    radium_awarded: int = 0
    subscription_id: UUID | None = None


@dataclass(frozen=True)
class ExchangeResult:
    """Outcome of buying Radium credits with EZ credits."""

    payment_id: UUID
    credit_balance: int
    radium_balance: int
    radium_added: int


@dataclass(frozen=True)
class CommissionData:
    """Immutable affiliate commission snapshot."""

    commission_id: UUID
    referrer_id: UUID
    referred_user_id: UUID
    payment_id: UUID
    amount: Decimal
    percentage: Decimal
    payment_amount: Decimal
    status: CommissionStatus
    paid_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime


@dataclass(frozen=True)
class CommissionRateData:
    """A referrer's current commission rate."""

    user_id: UUID
    email: str | None
    name: str | None
    commission_rate: Decimal


@dataclass(frozen=True)
class CommissionStats:
    """Referrer earnings summary."""

    total_earned: Decimal
    pending_earnings: Decimal
    paid_earnings: Decimal
    total_referrals: int


@dataclass(frozen=True)
class NotificationMessage:
    """A user-facing alert handed to the notification dispatcher."""

    user_id: UUID
    type: str
    title: str
    message: str
    link: str | None = None


# ============================================================================
# Auth Models
# ============================================================================


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity decoded from a bearer token."""

    user_id: UUID
    email: str | None = None
    role: int | None = None

    @property
    def is_super_admin(self) -> bool:
        """Role 0 is the platform super admin."""
        return self.role == 0
