"""
Commission Service - affiliate commissions derived from referred users' payments.

NO DICTIONARIES - All operations use strongly typed domain models.
All money math uses Decimal; amounts are rounded half-up to cents.
"""

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import AffiliateCommission, User, utc_now
from app.db.unit_of_work import run_in_transaction
from app.exceptions import (
    InvalidArgumentError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from app.models.api import CommissionStatus
from app.models.domain import (
    USD,
    CommissionData,
    CommissionRateData,
    CommissionStats,
    NotificationMessage,
)
from app.observability.metrics import metrics

logger = get_logger(__name__)

CENT = Decimal("0.01")
_commissions = AffiliateCommission.__table__


def calculate_commission(payment_amount: Decimal, rate: Decimal) -> Decimal:
    """Commission for a payment at a percentage rate, rounded half-up to cents."""
    return (payment_amount * rate / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)


def commission_earned_message(commission: CommissionData) -> NotificationMessage:
    """Notification telling the referrer about a new commission."""
    return NotificationMessage(
        user_id=commission.referrer_id,
        type="affiliate_earning",
        title="New Commission Earned!",
        message=f"You earned ${commission.amount} commission from a referral!",
        link="/dashboard/affiliate",
    )


class CommissionService:
    """
    Affiliate commission lifecycle: PENDING -> PAID or PENDING -> CANCELLED.

    create_commission and cancel_pending_for_payment run inside the caller's
    unit of work. The admin operations commit on their own.
    """

    def __init__(self, session: AsyncSession, max_attempts: int | None = None) -> None:
        self.session = session
        self.max_attempts = max_attempts or settings.ledger_max_retries

    async def create_commission(
        self,
        payment_id: UUID,
        paying_user_id: UUID,
        payment_amount: Decimal,
        subscription_id: UUID | None = None,
    ) -> CommissionData | None:
        """
        Create the referrer's commission for a payment, if the payer was referred.

        At most one commission exists per payment; an existing one is returned
        unchanged. The referrer's current rate is snapshotted onto the row.
        """
        payer = await self.session.get(User, paying_user_id)
        if payer is None or payer.referred_by_id is None:
            return None

        existing = await self._find_by_payment(payment_id)
        if existing is not None:
            return self._commission_to_domain(existing)

        referrer = await self.session.get(User, payer.referred_by_id)
        if referrer is None:
            logger.warning(
                "commission_referrer_missing",
                payment_id=str(payment_id),
                referrer_id=str(payer.referred_by_id),
            )
            return None

        rate = Decimal(referrer.commission_rate)
        commission = AffiliateCommission(
            referrer_id=referrer.id,
            referred_user_id=payer.id,
            payment_id=payment_id,
            subscription_id=subscription_id,
            amount=calculate_commission(payment_amount, rate),
            percentage=rate,
            payment_amount=payment_amount,
            currency=USD,
            status=CommissionStatus.PENDING,
        )
        self.session.add(commission)
        await self.session.flush()

        metrics.record_commission(CommissionStatus.PENDING.value)
        logger.info(
            "commission_created",
            commission_id=str(commission.id),
            referrer_id=str(referrer.id),
            payment_id=str(payment_id),
            amount=str(commission.amount),
            percentage=str(rate),
        )
        return self._commission_to_domain(commission)

    async def cancel_pending_for_payment(self, payment_id: UUID, reason: str) -> int:
        """Cancel every pending commission of a payment. Returns how many changed."""
        result = await self.session.execute(
            select(AffiliateCommission.id).where(
                AffiliateCommission.payment_id == payment_id,
                AffiliateCommission.status == CommissionStatus.PENDING,
            )
        )
        cancelled = 0
        for commission_id in result.scalars().all():
            if await self._cancel(commission_id, reason, payment_id):
                cancelled += 1
        return cancelled

    async def cancel_commission(
        self, commission_id: UUID, reason: str, payment_id: UUID | None = None
    ) -> CommissionData:
        """
        Cancel a pending commission and commit.

        Paid or already cancelled commissions are left untouched.

        Raises:
            ResourceNotFoundError: Unknown commission
        """
        if not reason or not reason.strip():
            raise InvalidArgumentError("Cancellation reason cannot be empty")

        async def work() -> CommissionData:
            await self._cancel(commission_id, reason, payment_id)
            return self._commission_to_domain(await self._load(commission_id))

        return await run_in_transaction(
            self.session, work, operation="cancel_commission", max_attempts=self.max_attempts
        )

    async def mark_paid(self, commission_id: UUID) -> CommissionData:
        """
        Record that a pending commission was paid out.

        Raises:
            ResourceNotFoundError: Unknown commission
            InvalidStateTransitionError: Commission is not pending
        """

        async def work() -> CommissionData:
            result = await self.session.execute(
                update(_commissions)
                .where(
                    _commissions.c.id == commission_id,
                    _commissions.c.status == CommissionStatus.PENDING,
                )
                .values(status=CommissionStatus.PAID, paid_at=utc_now())
            )
            commission = await self._load(commission_id)
            if result.rowcount == 0:
                raise InvalidStateTransitionError(
                    "commission", commission.status.value, CommissionStatus.PAID.value
                )
            return self._commission_to_domain(commission)

        data = await run_in_transaction(
            self.session, work, operation="mark_commission_paid", max_attempts=self.max_attempts
        )
        metrics.record_commission(CommissionStatus.PAID.value)
        logger.info("commission_paid", commission_id=str(commission_id), amount=str(data.amount))
        return data

    async def get_stats(self, referrer_id: UUID) -> CommissionStats:
        """Earnings summary for a referrer."""
        result = await self.session.execute(
            select(AffiliateCommission.status, func.sum(AffiliateCommission.amount))
            .where(AffiliateCommission.referrer_id == referrer_id)
            .group_by(AffiliateCommission.status)
        )
        totals = {status: Decimal(total or 0) for status, total in result.all()}
        pending = totals.get(CommissionStatus.PENDING, Decimal("0")).quantize(CENT)
        paid = totals.get(CommissionStatus.PAID, Decimal("0")).quantize(CENT)

        referrals = await self.session.scalar(
            select(func.count()).select_from(User).where(User.referred_by_id == referrer_id)
        )

        return CommissionStats(
            total_earned=pending + paid,
            pending_earnings=pending,
            paid_earnings=paid,
            total_referrals=referrals or 0,
        )

    async def set_commission_rate(self, user_id: UUID, rate: Decimal) -> CommissionRateData:
        """
        Change a referrer's commission rate (0-100 percent).

        Existing commissions keep the rate snapshotted when they were created.

        Raises:
            InvalidArgumentError: Rate outside 0-100
            ResourceNotFoundError: Unknown user
        """
        if rate < 0 or rate > 100:
            raise InvalidArgumentError("Commission rate must be between 0 and 100")

        async def work() -> CommissionRateData:
            user = await self.session.get(User, user_id, with_for_update=True)
            if user is None:
                raise ResourceNotFoundError("User", user_id)
            user.commission_rate = rate.quantize(CENT)
            await self.session.flush()
            return CommissionRateData(
                user_id=user.id,
                email=user.email,
                name=user.name,
                commission_rate=user.commission_rate,
            )

        data = await run_in_transaction(
            self.session, work, operation="set_commission_rate", max_attempts=self.max_attempts
        )
        logger.info(
            "commission_rate_updated", user_id=str(user_id), commission_rate=str(data.commission_rate)
        )
        return data

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _cancel(self, commission_id: UUID, reason: str, payment_id: UUID | None) -> bool:
        """Compare-and-set PENDING -> CANCELLED. Returns whether the row changed."""
        commission = await self._load(commission_id)

        if payment_id is not None and commission.payment_id != payment_id:
            logger.warning(
                "commission_payment_mismatch",
                commission_id=str(commission_id),
                commission_payment_id=str(commission.payment_id),
                payment_id=str(payment_id),
            )
            return False

        result = await self.session.execute(
            update(_commissions)
            .where(
                _commissions.c.id == commission_id,
                _commissions.c.status == CommissionStatus.PENDING,
            )
            .values(
                status=CommissionStatus.CANCELLED,
                cancelled_at=utc_now(),
                cancellation_reason=reason,
            )
        )
        if result.rowcount == 0:
            logger.info(
                "commission_cancel_skipped",
                commission_id=str(commission_id),
                status=commission.status.value,
            )
            return False

        metrics.record_commission(CommissionStatus.CANCELLED.value)
        logger.info("commission_cancelled", commission_id=str(commission_id), reason=reason)
        return True

    async def _load(self, commission_id: UUID) -> AffiliateCommission:
        result = await self.session.execute(
            select(AffiliateCommission)
            .where(AffiliateCommission.id == commission_id)
            .execution_options(populate_existing=True)
        )
        commission = result.scalar_one_or_none()
        if commission is None:
            raise ResourceNotFoundError("Commission", commission_id)
        return commission

    async def _find_by_payment(self, payment_id: UUID) -> AffiliateCommission | None:
        result = await self.session.execute(
            select(AffiliateCommission).where(AffiliateCommission.payment_id == payment_id)
        )
        return result.scalar_one_or_none()

    def _commission_to_domain(self, commission: AffiliateCommission) -> CommissionData:
        """Convert ORM commission to domain model."""
        return CommissionData(
            commission_id=commission.id,
            referrer_id=commission.referrer_id,
            referred_user_id=commission.referred_user_id,
            payment_id=commission.payment_id,
            amount=commission.amount,
            percentage=commission.percentage,
            payment_amount=commission.payment_amount,
            status=commission.status,
            paid_at=commission.paid_at,
            cancelled_at=commission.cancelled_at,
            cancellation_reason=commission.cancellation_reason,
            created_at=commission.created_at,
        )
