"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class LedgerKind(str, Enum):
    """Which balance a ledger operation targets."""

    CREDITS = "credits"  # EZ credits, the general-purpose payment currency
    RADIUM = "radium"


class TransactionKind(str, Enum):
    """Ledger transaction kind enumeration."""

    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    ADMIN_ADJUST = "admin_adjust"
    SUBSCRIPTION = "subscription"
    BONUS = "bonus"


class PaymentStatus(str, Enum):
    """Payment lifecycle states."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentType(str, Enum):
    """What a payment buys."""

    SUBSCRIPTION = "subscription"
    RADIUM_CREDITS = "radium_credits"
    USER_CREDITS = "user_credits"


class CommissionStatus(str, Enum):
    """Affiliate commission states."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, Enum):
    """Site subscription states."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SiteStatus(str, Enum):
    """Site states."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class OrderType(str, Enum):
    """Checkout order type as sent by clients."""

    SUBSCRIPTION = "subscription"
    CREDITS = "credits"


class WebhookOutcome(str, Enum):
    """Result of processing a gateway webhook."""

    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


# ============================================================================
# Ledger Models
# ============================================================================


class BalanceResponse(BaseModel):
    """GET /v1/ledger/{ledger_kind}/balance response."""

    ledger_kind: LedgerKind
    balance: int
    lifetime: int


class TransactionItem(BaseModel):
    """Single ledger transaction in list response."""

    transaction_id: int
    kind: TransactionKind
    amount: int
    balance_after: int
    description: str
    cost: Decimal | None = None
    cost_currency: str | None = None
    payment_id: UUID | None = None
    site_id: UUID | None = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/ledger/{ledger_kind}/transactions response."""

    transactions: list[TransactionItem]
    total: int
    limit: int
    offset: int


class AdjustBalanceRequest(BaseModel):
    """POST /admin/ledger/{ledger_kind}/adjust request body."""

    user_id: UUID
    amount: int = Field(..., description="Signed amount, positive credits, negative debits")
    description: str = Field(..., min_length=1, max_length=500)
    payment_method: str | None = Field(None, max_length=50)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: int) -> int:
        """Reject zero adjustments."""
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v


class AdjustBalanceResponse(BaseModel):
    """Admin adjustment response."""

    user_id: UUID
    ledger_kind: LedgerKind
    balance: int
    lifetime: int
    adjustment: int
    transaction_id: int


class AdminAdjustmentItem(BaseModel):
    """A recent manual adjustment."""

    transaction_id: int
    user_id: UUID
    user_name: str | None
    user_email: str | None
    amount: int
    balance_after: int
    description: str
    created_at: datetime


class AdminAdjustmentListResponse(BaseModel):
    """GET /admin/ledger/{ledger_kind}/adjustments response."""

    transactions: list[AdminAdjustmentItem]


class ReconciliationResponse(BaseModel):
    """Result of replaying an account's transactions."""

    user_id: UUID
    ledger_kind: LedgerKind
    balance: int
    replayed_balance: int
    transaction_count: int
    mismatched_transaction_ids: list[int]
    consistent: bool


# ============================================================================
# Payment Models
# ============================================================================


class CreateOrderRequest(BaseModel):
    """POST /v1/payments/orders request body."""

    type: OrderType
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    plan: str | None = Field(None, max_length=20)
    credit_amount: int | None = Field(None, gt=0)
    ledger_kind: LedgerKind = LedgerKind.RADIUM
    site_id: UUID | None = None

    @model_validator(mode="after")
    def validate_type_params(self) -> "CreateOrderRequest":
        """Subscription orders need a plan, credit orders a credit amount."""
        if self.type == OrderType.SUBSCRIPTION and not self.plan:
            raise ValueError("Plan type required for subscriptions")
        if self.type == OrderType.CREDITS and not self.credit_amount:
            raise ValueError("Credit amount required for credit purchases")
        return self


class CreateOrderResponse(BaseModel):
    """POST /v1/payments/orders response."""

    order_id: str
    status: str
    approve_url: str | None = None
    payment_id: UUID


class CaptureOrderResponse(BaseModel):
    """POST /v1/payments/orders/{order_id}/capture response."""

    order_id: str
    status: PaymentStatus
    payment_id: UUID | None = None
    payment_type: PaymentType | None = None


class PayWithCreditsRequest(BaseModel):
    """POST /v1/payments/pay-with-credits request body."""

    type: OrderType
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    plan: str | None = Field(None, max_length=20)
    credit_amount: int | None = Field(None, gt=0)
    site_id: UUID | None = None

    @model_validator(mode="after")
    def validate_type_params(self) -> "PayWithCreditsRequest":
        """Subscriptions need a plan and a site, credit packs a credit amount."""
        if self.type == OrderType.SUBSCRIPTION:
            if not self.plan:
                raise ValueError("Plan type required for subscription")
            if self.site_id is None:
                raise ValueError("Site ID required for subscription")
        if self.type == OrderType.CREDITS and not self.credit_amount:
            raise ValueError("Credit amount required for credit purchase")
        return self


class PayWithCreditsResponse(BaseModel):
    """POST /v1/payments/pay-with-credits response."""

    payment_id: UUID
    credits_used: int
    credit_balance: int
    credits_added: int = 0
    radium_awarded: int = 0
    subscription_id: UUID | None = None


class ExchangeCreditsRequest(BaseModel):
    """POST /v1/credits/exchange request body."""

    radium_amount: int = Field(..., gt=0)
    credit_cost: int = Field(..., gt=0)
    pack_name: str = Field(..., min_length=1, max_length=100)


class ExchangeCreditsResponse(BaseModel):
    """POST /v1/credits/exchange response."""

    payment_id: UUID
    credit_balance: int
    radium_balance: int
    radium_added: int


class WebhookAckResponse(BaseModel):
    """Webhook acknowledgement returned to the gateway."""

    received: bool = True
    outcome: WebhookOutcome
    event_id: str | None = None


# ============================================================================
# Referral Models
# ============================================================================


class CommissionStatsResponse(BaseModel):
    """GET /v1/referrals/stats response."""

    total_earned: Decimal
    pending_earnings: Decimal
    paid_earnings: Decimal
    total_referrals: int


class CommissionRateRequest(BaseModel):
    """PUT /admin/referrals/commission-rate request body."""

    user_id: UUID
    commission_rate: Decimal = Field(..., ge=0, le=100, max_digits=5, decimal_places=2)


class CommissionRateResponse(BaseModel):
    """Updated commission rate."""

    user_id: UUID
    email: str | None
    name: str | None
    commission_rate: Decimal


class CancelCommissionRequest(BaseModel):
    """POST /admin/commissions/{commission_id}/cancel request body."""

    reason: str = Field(..., min_length=1, max_length=500)


class CommissionResponse(BaseModel):
    """Commission state after an admin action."""

    commission_id: UUID
    referrer_id: UUID
    referred_user_id: UUID
    payment_id: UUID
    amount: Decimal
    percentage: Decimal
    status: CommissionStatus
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str
