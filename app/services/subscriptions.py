"""
Subscription Service - activates or renews a site's yearly plan.

NO DICTIONARIES - All operations use strongly typed domain models.
Runs inside the caller's unit of work; never commits.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Site, Subscription, utc_now
from app.exceptions import InvalidArgumentError, ResourceNotFoundError
from app.models.api import SiteStatus, SubscriptionStatus
from app.models.domain import USD, SubscriptionData
from app.services.pricing import get_plan

logger = get_logger(__name__)

SUBSCRIPTION_TERM = timedelta(days=365)


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to timestamps read back without tzinfo."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class SubscriptionService:
    """Site subscription activation (create, renew, enable plan features)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_owned_site(self, user_id: UUID, site_id: UUID, lock: bool = True) -> Site:
        """
        Load a site owned by the user, by default locked for the rest of the unit of work.

        Raises:
            ResourceNotFoundError: Unknown site or owned by someone else
        """
        stmt = select(Site).where(Site.id == site_id, Site.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        site = result.scalar_one_or_none()
        if site is None:
            raise ResourceNotFoundError("Site", site_id)
        return site

    async def ensure_no_active_subscription(self, site_id: UUID) -> None:
        """
        Reject paying for a site that is already subscribed.

        Raises:
            InvalidArgumentError: Site has an active subscription
        """
        existing = await self._find_subscription(site_id)
        if existing is not None and existing.status == SubscriptionStatus.ACTIVE:
            raise InvalidArgumentError("Site already has an active subscription")

    async def activate(
        self,
        user_id: UUID,
        site_id: UUID,
        plan_name: str,
        amount: Decimal,
    ) -> SubscriptionData:
        """
        Create a one-year subscription or extend the existing one.

        Renewals extend from the later of now and the current end date, so
        paying early never loses remaining time. The site is activated and its
        plan feature flags set.
        """
        plan = get_plan(plan_name)
        site = await self.get_owned_site(user_id, site_id)
        now = utc_now()

        subscription = await self._find_subscription(site_id)
        renewed = subscription is not None
        if subscription is None:
            subscription = Subscription(
                user_id=user_id,
                site_id=site_id,
                plan=plan.name,
                status=SubscriptionStatus.ACTIVE,
                amount=amount,
                monthly_rate=plan.monthly_rate,
                currency=USD,
                start_date=now,
                end_date=now + SUBSCRIPTION_TERM,
                next_billing_date=now + SUBSCRIPTION_TERM,
                last_payment_date=now,
                last_payment_amount=amount,
                auto_renew=True,
            )
            self.session.add(subscription)
        else:
            new_end = max(now, _as_utc(subscription.end_date)) + SUBSCRIPTION_TERM
            subscription.plan = plan.name
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.amount = amount
            subscription.monthly_rate = plan.monthly_rate
            subscription.end_date = new_end
            subscription.next_billing_date = new_end
            subscription.last_payment_date = now
            subscription.last_payment_amount = amount

        site.status = SiteStatus.ACTIVE
        site.is_active = True
        site.has_game_screenshots = plan.has_game_screenshots
        site.has_bonus_code_feed = plan.has_bonus_code_feed

        await self.session.flush()

        logger.info(
            "subscription_activated",
            user_id=str(user_id),
            site_id=str(site_id),
            plan=plan.name,
            renewed=renewed,
            end_date=subscription.end_date.isoformat(),
        )

        return SubscriptionData(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            site_id=subscription.site_id,
            plan=subscription.plan,
            status=subscription.status,
            amount=subscription.amount,
            start_date=_as_utc(subscription.start_date),
            end_date=_as_utc(subscription.end_date),
            renewed=renewed,
        )

    async def _find_subscription(self, site_id: UUID) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(Subscription.site_id == site_id)
        )
        return result.scalar_one_or_none()
