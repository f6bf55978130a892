"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
The payment metadata blob is the one JSON column; gateway identifiers used for
lookups are duplicated into indexed columns.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.config import settings
from app.models.api import (
    CommissionStatus,
    LedgerKind,
    PaymentStatus,
    PaymentType,
    SiteStatus,
    SubscriptionStatus,
    TransactionKind,
)

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")
JSONBlob = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    """String-backed enum column storing enum values."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class User(Base):
    """
    ORM model for users table.

    Mirrors the fields of the platform user the ledger needs: referral linkage,
    commission rate and admin role.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # 0 = super admin
    role: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    referral_code: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    referred_by_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=lambda: settings.default_commission_rate
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100", name="ck_user_commission_rate"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class BalanceAccount(Base):
    """
    ORM model for balance_accounts table.

    One row per (user, ledger kind). Balance only changes through the ledger service.
    """

    __tablename__ = "balance_accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    ledger_kind: Mapped[LedgerKind] = mapped_column(_enum(LedgerKind, "ledger_kind"), nullable=False)

    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    lifetime: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_balance_non_negative"),
        CheckConstraint("lifetime >= 0", name="ck_lifetime_non_negative"),
        UniqueConstraint("user_id", "ledger_kind", name="uq_balance_account_user_kind"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<BalanceAccount(id={self.id}, user_id={self.user_id}, "
            f"kind={self.ledger_kind}, balance={self.balance})>"
        )


class LedgerTransaction(Base):
    """
    ORM model for ledger_transactions table.

    Immutable ledger of every balance change, credits and debits alike.
    """

    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)

    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("balance_accounts.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    ledger_kind: Mapped[LedgerKind] = mapped_column(_enum(LedgerKind, "ledger_kind"), nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        _enum(TransactionKind, "transaction_kind"), nullable=False
    )

    # Signed: positive = credit, negative = debit
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Purchase cost, in USD or EZ_CREDITS
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cost_currency: Mapped[str | None] = mapped_column(String(20), nullable=True)

    payment_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    site_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_transaction_amount_non_zero"),
        CheckConstraint("balance_after >= 0", name="ck_transaction_balance_non_negative"),
        Index("idx_ledger_transactions_account_created", "account_id", "created_at"),
        Index("idx_ledger_transactions_kind", "kind"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<LedgerTransaction(id={self.id}, account_id={self.account_id}, "
            f"amount={self.amount}, balance_after={self.balance_after})>"
        )


class Payment(Base):
    """
    ORM model for payments table.

    One row per gateway checkout, credit-paid purchase, exchange or manual adjustment.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    site_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False, default="USD")
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        _enum(PaymentType, "payment_type"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    gateway_capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Note: Database column is "metadata", Python uses "payment_metadata" to avoid SQLAlchemy conflicts
    payment_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONBlob, nullable=False, default=dict
    )

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        Index("idx_payments_status", "status"),
        Index("idx_payments_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Payment(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class AffiliateCommission(Base):
    """
    ORM model for affiliate_commissions table.

    At most one commission per payment; cancelled rather than deleted.
    """

    __tablename__ = "affiliate_commissions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    referrer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    referred_user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    subscription_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False, default="USD")

    status: Mapped[CommissionStatus] = mapped_column(
        _enum(CommissionStatus, "commission_status"),
        nullable=False,
        default=CommissionStatus.PENDING,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_commission_amount_non_negative"),
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100", name="ck_commission_percentage_range"
        ),
        Index("idx_affiliate_commissions_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<AffiliateCommission(id={self.id}, referrer_id={self.referrer_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Site(Base):
    """ORM model for sites table - a user's affiliate site that holds a subscription."""

    __tablename__ = "sites"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[SiteStatus] = mapped_column(
        _enum(SiteStatus, "site_status"), nullable=False, default=SiteStatus.PENDING
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_game_screenshots: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_bonus_code_feed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Site(id={self.id}, name={self.name}, status={self.status})>"


class Subscription(Base):
    """ORM model for subscriptions table - one subscription per site."""

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    site_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum(SubscriptionStatus, "subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    monthly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False, default="USD")

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_billing_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Subscription(id={self.id}, site_id={self.site_id}, plan={self.plan})>"


class Notification(Base):
    """ORM model for notifications table - user-facing alerts."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type})>"
