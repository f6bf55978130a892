"""
Payment Service - gateway checkout, settlement, refunds and credit-paid purchases.

NO DICTIONARIES - All operations use strongly typed domain models.

Payment state machine:
    PENDING -> SUCCEEDED -> REFUNDED
    PENDING -> FAILED
Every transition is a compare-and-set UPDATE on the expected status, so a
capture racing its own webhook settles the payment exactly once.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, replace
from decimal import ROUND_CEILING, Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Payment, utc_now
from app.db.unit_of_work import run_in_transaction
from app.exceptions import InvalidArgumentError, OrderNotFoundError
from app.models.api import (
    LedgerKind,
    OrderType,
    PaymentStatus,
    PaymentType,
    TransactionKind,
    WebhookOutcome,
)
from app.models.domain import (
    EZ_CREDITS,
    USD,
    AccountKey,
    AdjustmentIntent,
    CaptureOutcome,
    CheckoutCommand,
    CommissionData,
    CreditPaymentResult,
    ExchangeCommand,
    ExchangeResult,
    NotificationMessage,
    OrderCreated,
    PaymentData,
    PaymentMetadata,
    SubscriptionData,
    WebhookResult,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.commissions import CommissionService, commission_earned_message
from app.services.ledger import LedgerService, ledger_label
from app.services.notifications import NotificationDispatcher, dispatch_safely
from app.services.payment_provider import (
    COMPLETED_STATUS,
    CaptureResult,
    OrderRequest,
    PaymentProvider,
    WebhookEvent,
)
from app.services.pricing import (
    PlanDefinition,
    check_credit_price,
    check_plan_price,
    find_credit_pack,
    get_plan,
)
from app.services.subscriptions import SubscriptionService

logger = get_logger(__name__)

_payments = Payment.__table__

CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"
CAPTURE_REVERSED = "PAYMENT.CAPTURE.REVERSED"
CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"

PAID_WITH_CREDITS = "ez_credits"


@dataclass(frozen=True)
class Settlement:
    """What one settlement attempt changed."""

    payment: PaymentData
    newly_settled: bool
    commission: CommissionData | None = None
    subscription: SubscriptionData | None = None
    credits_awarded: int = 0


def credits_for_amount(amount: Decimal) -> int:
    """EZ credits needed to pay a USD amount at 1:1, rounded up."""
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


class PaymentService:
    """
    Payment orchestration over the ledger, subscription and commission services.

    Each public operation is one unit of work; notifications go out only after
    it commits.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        notifier: NotificationDispatcher | None = None,
        max_attempts: int | None = None,
        public_base_url: str | None = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.notifier = notifier
        self.max_attempts = max_attempts or settings.ledger_max_retries
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.ledger = LedgerService(session, notifier, self.max_attempts)
        self.commissions = CommissionService(session, self.max_attempts)
        self.subscriptions = SubscriptionService(session)

    # ========================================================================
    # Gateway Checkout
    # ========================================================================

    async def create_order(self, command: CheckoutCommand) -> OrderCreated:
        """
        Create a gateway order and record it as a pending payment.

        Raises:
            InvalidArgumentError: Unknown plan, missing site, or price off the catalog
            ResourceNotFoundError: Unknown user, or site not owned by the user
            GatewayError: Gateway call failed (nothing is persisted)
        """
        plan = self._checked_plan(command)
        if plan is not None and command.site_id is not None:
            await self.subscriptions.get_owned_site(command.user_id, command.site_id, lock=False)
        else:
            await self.ledger.ensure_user(command.user_id)
        # Release the read snapshot before the gateway round trip
        await self.session.rollback()

        payment_id = uuid4()
        with trace_operation(
            "create_order", user_id=command.user_id, order_type=command.order_type.value
        ):
            order = await self.provider.create_order(
                OrderRequest(
                    amount=command.amount,
                    currency=USD,
                    description=command.description,
                    custom_id=self._custom_id(command, plan),
                    return_url=f"{self.public_base_url}/payments/paypal/return",
                    cancel_url=f"{self.public_base_url}/pricing",
                    request_id=str(payment_id),
                )
            )

        pack = None
        if command.order_type == OrderType.CREDITS and command.credit_amount:
            pack = find_credit_pack(command.credit_amount, command.amount)
        metadata = PaymentMetadata(
            paypal_order_id=order.order_id,
            paypal_status=order.status,
            plan=plan.name if plan else None,
            credit_amount=command.credit_amount if plan is None else None,
            ledger_kind=command.ledger_kind if plan is None else None,
            pack_name=pack.name if pack else None,
        )

        async def work() -> None:
            self.session.add(
                Payment(
                    id=payment_id,
                    user_id=command.user_id,
                    site_id=command.site_id,
                    amount=command.amount,
                    currency=USD,
                    status=PaymentStatus.PENDING,
                    payment_type=command.payment_type,
                    description=command.description,
                    gateway_order_id=order.order_id,
                    payment_metadata=metadata.to_dict(),
                )
            )
            await self.session.flush()

        await run_in_transaction(
            self.session, work, operation="create_order", max_attempts=self.max_attempts
        )

        metrics.record_payment(command.payment_type.value, PaymentStatus.PENDING.value)
        logger.info(
            "payment_order_created",
            payment_id=str(payment_id),
            order_id=order.order_id,
            user_id=str(command.user_id),
            payment_type=command.payment_type.value,
            amount=str(command.amount),
        )
        return OrderCreated(
            order_id=order.order_id,
            status=order.status,
            approve_url=order.approve_url,
            payment_id=payment_id,
        )

    async def capture_order(self, user_id: UUID, order_id: str) -> CaptureOutcome:
        """
        Capture an approved order and settle the pending payment.

        A capture that did not complete applies nothing; a terminal decline marks
        the payment failed. If the webhook already settled the payment, the
        existing state is reported without applying anything twice.

        Raises:
            OrderNotFoundError: No pending or settled payment for this user and order
            GatewayError: Gateway call failed (payment left unchanged)
        """
        with trace_operation("capture_order", order_id=order_id, user_id=user_id):
            capture = await self.provider.capture_order(order_id)

            if not capture.completed:
                payment_id = None
                reported = PaymentStatus.PENDING
                if capture.declined:
                    payment_id, _ = await self._fail_pending(order_id, capture.status, user_id)
                    reported = PaymentStatus.FAILED
                logger.warning(
                    "payment_capture_not_completed",
                    order_id=order_id,
                    gateway_status=capture.status,
                )
                return CaptureOutcome(order_id=order_id, status=reported, payment_id=payment_id)

            settlement = await self._settle(order_id, capture, user_id)

        await self._after_settlement(settlement)
        return CaptureOutcome(
            order_id=order_id,
            status=settlement.payment.status,
            payment_id=settlement.payment.payment_id,
            payment_type=settlement.payment.payment_type,
        )

    async def handle_webhook(self, headers: Mapping[str, str], payload: bytes) -> WebhookResult:
        """
        Verify and apply a gateway webhook delivery.

        Replays are harmless: each handler is a no-op once the payment has left
        the state the event moves it out of.

        Raises:
            WebhookVerificationError: Payload malformed or signature invalid
        """
        event = await self.provider.verify_webhook(headers, payload)

        with trace_operation(
            "handle_webhook", event_id=event.event_id, event_type=event.event_type
        ):
            if event.event_type == CAPTURE_COMPLETED:
                outcome = await self._on_capture_completed(event)
            elif event.event_type in (CAPTURE_REFUNDED, CAPTURE_REVERSED):
                outcome = await self._on_capture_refunded(event)
            elif event.event_type == CAPTURE_DENIED:
                outcome = await self._on_capture_denied(event)
            else:
                outcome = WebhookOutcome.IGNORED

        metrics.record_webhook(event.event_type, outcome.value)
        logger.info(
            "webhook_handled",
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome.value,
        )
        return WebhookResult(outcome=outcome, event_id=event.event_id, event_type=event.event_type)

    # ========================================================================
    # Credit-Paid Purchases
    # ========================================================================

    async def pay_with_credits(self, command: CheckoutCommand) -> CreditPaymentResult:
        """
        Pay for a subscription or a credit pack with EZ credits at 1:1.

        Raises:
            InsufficientBalanceError: Not enough EZ credits (nothing is written)
            InvalidArgumentError: Unknown plan, missing site, price off the catalog,
                or site already subscribed
            ResourceNotFoundError: Unknown user, or site not owned by the user
        """
        credits_needed = credits_for_amount(command.amount)
        credits_account = AccountKey(command.user_id, LedgerKind.CREDITS)
        plan = self._checked_plan(command)

        async def work() -> tuple[CreditPaymentResult, CommissionData | None, str | None]:
            await self.ledger.ensure_user(command.user_id)
            site_name = None
            if plan is not None and command.site_id is not None:
                site = await self.subscriptions.get_owned_site(command.user_id, command.site_id)
                await self.subscriptions.ensure_no_active_subscription(site.id)
                site_name = site.name
                description = f"{plan.name} Subscription - Paid with Credits"
            else:
                description = f"{command.credit_amount} EZ Credits - Paid with Credits"

            payment = Payment(
                user_id=command.user_id,
                site_id=command.site_id if plan else None,
                amount=command.amount,
                currency=USD,
                status=PaymentStatus.SUCCEEDED,
                payment_type=PaymentType.SUBSCRIPTION if plan else PaymentType.USER_CREDITS,
                description=description,
                payment_metadata=PaymentMetadata(
                    plan=plan.name if plan else None,
                    credit_amount=None if plan else command.credit_amount,
                    ledger_kind=None if plan else LedgerKind.CREDITS,
                    payment_method=PAID_WITH_CREDITS,
                ).to_dict(),
                paid_at=utc_now(),
            )
            self.session.add(payment)
            await self.session.flush()

            debit = await self.ledger.apply_adjustment(
                AdjustmentIntent(
                    account=credits_account,
                    amount=-credits_needed,
                    kind=TransactionKind.USAGE,
                    description=(
                        f"Subscription payment: {plan.name} plan"
                        if plan
                        else f"Payment for {command.credit_amount} EZ credits"
                    ),
                    payment_id=payment.id,
                    site_id=command.site_id if plan else None,
                )
            )

            credit_balance = debit.balance
            credits_added = 0
            radium_awarded = 0
            subscription_id = None
            if plan is not None and command.site_id is not None:
                subscription = await self.subscriptions.activate(
                    command.user_id, command.site_id, plan.name, command.amount
                )
                subscription_id = subscription.subscription_id
                radium_awarded = await self._award_plan_credits(
                    command.user_id, plan, payment.id, command.site_id
                )
            else:
                credits_added = command.credit_amount or 0
                added = await self.ledger.apply_adjustment(
                    AdjustmentIntent(
                        account=credits_account,
                        amount=credits_added,
                        kind=TransactionKind.PURCHASE,
                        description=f"Purchased {credits_added} EZ credits",
                        cost=Decimal(credits_needed),
                        cost_currency=EZ_CREDITS,
                        payment_id=payment.id,
                    )
                )
                credit_balance = added.balance

            commission = await self.commissions.create_commission(
                payment.id, command.user_id, command.amount, subscription_id
            )
            result = CreditPaymentResult(
                payment_id=payment.id,
                credits_used=credits_needed,
                credit_balance=credit_balance,
                credits_added=credits_added,
                radium_awarded=radium_awarded,
                subscription_id=subscription_id,
            )
            return result, commission, site_name

        result, commission, site_name = await run_in_transaction(
            self.session, work, operation="pay_with_credits", max_attempts=self.max_attempts
        )

        payment_type = PaymentType.SUBSCRIPTION if plan else PaymentType.USER_CREDITS
        metrics.record_payment(payment_type.value, PaymentStatus.SUCCEEDED.value)
        logger.info(
            "payment_with_credits_completed",
            payment_id=str(result.payment_id),
            user_id=str(command.user_id),
            credits_used=result.credits_used,
            payment_type=payment_type.value,
        )

        if plan is not None:
            await dispatch_safely(
                self.notifier,
                NotificationMessage(
                    user_id=command.user_id,
                    type="subscription",
                    title="Subscription Activated",
                    message=(
                        f"Your {plan.name} subscription for {site_name} is now active. "
                        f"You received {result.radium_awarded} Radium credits."
                    ),
                    link=f"/profile/sites/{command.site_id}",
                ),
            )
        if commission is not None:
            await dispatch_safely(self.notifier, commission_earned_message(commission))
        return result

    async def exchange_credits(self, command: ExchangeCommand) -> ExchangeResult:
        """
        Buy Radium credits with EZ credits in one unit of work.

        Raises:
            InvalidArgumentError: Cost undercuts the per-credit floor
            InsufficientBalanceError: Not enough EZ credits (nothing is written)
            ResourceNotFoundError: Unknown user
        """
        check_credit_price(command.radium_amount, Decimal(command.credit_cost))

        async def work() -> ExchangeResult:
            await self.ledger.ensure_user(command.user_id)
            payment = Payment(
                user_id=command.user_id,
                amount=Decimal(command.credit_cost),
                currency=EZ_CREDITS,
                status=PaymentStatus.SUCCEEDED,
                payment_type=PaymentType.RADIUM_CREDITS,
                description=f"{command.pack_name}: {command.radium_amount} Radium Credits",
                payment_metadata=PaymentMetadata(
                    credit_amount=command.radium_amount,
                    ledger_kind=LedgerKind.RADIUM,
                    pack_name=command.pack_name,
                    payment_method=PAID_WITH_CREDITS,
                ).to_dict(),
                paid_at=utc_now(),
            )
            self.session.add(payment)
            await self.session.flush()

            debit = await self.ledger.apply_adjustment(
                AdjustmentIntent(
                    account=AccountKey(command.user_id, LedgerKind.CREDITS),
                    amount=-command.credit_cost,
                    kind=TransactionKind.USAGE,
                    description=(
                        f"Purchased {command.radium_amount} Radium credits ({command.pack_name})"
                    ),
                    payment_id=payment.id,
                )
            )
            credit = await self.ledger.apply_adjustment(
                AdjustmentIntent(
                    account=AccountKey(command.user_id, LedgerKind.RADIUM),
                    amount=command.radium_amount,
                    kind=TransactionKind.PURCHASE,
                    description=f"{command.pack_name}: {command.radium_amount} Radium credits",
                    cost=Decimal(command.credit_cost),
                    cost_currency=EZ_CREDITS,
                    payment_id=payment.id,
                )
            )
            return ExchangeResult(
                payment_id=payment.id,
                credit_balance=debit.balance,
                radium_balance=credit.balance,
                radium_added=command.radium_amount,
            )

        result = await run_in_transaction(
            self.session, work, operation="exchange_credits", max_attempts=self.max_attempts
        )

        metrics.record_payment(PaymentType.RADIUM_CREDITS.value, PaymentStatus.SUCCEEDED.value)
        logger.info(
            "credits_exchanged",
            payment_id=str(result.payment_id),
            user_id=str(command.user_id),
            credit_cost=command.credit_cost,
            radium_added=command.radium_amount,
        )
        await dispatch_safely(
            self.notifier,
            NotificationMessage(
                user_id=command.user_id,
                type="system",
                title="Radium Credits Purchased",
                message=(
                    f"You bought {command.radium_amount} Radium credits for "
                    f"{command.credit_cost} EZ credits."
                ),
                link="/profile/credits",
            ),
        )
        return result

    # ========================================================================
    # Webhook Handlers
    # ========================================================================

    async def _on_capture_completed(self, event: WebhookEvent) -> WebhookOutcome:
        if not event.order_id:
            logger.warning("webhook_missing_order_id", event_id=event.event_id)
            return WebhookOutcome.IGNORED

        capture = CaptureResult(
            order_id=event.order_id, status=COMPLETED_STATUS, capture_id=event.capture_id
        )
        try:
            settlement = await self._settle(event.order_id, capture)
        except OrderNotFoundError:
            logger.warning(
                "webhook_payment_not_found", event_id=event.event_id, order_id=event.order_id
            )
            return WebhookOutcome.IGNORED

        await self._after_settlement(settlement)
        return WebhookOutcome.PROCESSED if settlement.newly_settled else WebhookOutcome.ALREADY_PROCESSED

    async def _on_capture_refunded(self, event: WebhookEvent) -> WebhookOutcome:
        """
        Reverse a settled payment: cancel its pending commissions and take back
        the purchased credits, never more than the current balance.
        """
        capture_id = event.capture_id
        if not capture_id:
            logger.warning("webhook_missing_capture_id", event_id=event.event_id)
            return WebhookOutcome.IGNORED

        async def work() -> tuple[WebhookOutcome, PaymentData | None]:
            payment = await self._lock_payment(Payment.gateway_capture_id == capture_id)
            if payment is None:
                logger.warning(
                    "webhook_payment_not_found", event_id=event.event_id, capture_id=capture_id
                )
                return WebhookOutcome.IGNORED, None
            if payment.status == PaymentStatus.REFUNDED:
                return WebhookOutcome.ALREADY_PROCESSED, None
            if payment.status != PaymentStatus.SUCCEEDED:
                logger.warning(
                    "webhook_refund_unexpected_status",
                    payment_id=str(payment.id),
                    status=payment.status.value,
                )
                return WebhookOutcome.IGNORED, None

            metadata = replace(
                PaymentMetadata.from_dict(payment.payment_metadata), paypal_status=event.status
            )
            debit = 0
            if payment.payment_type != PaymentType.SUBSCRIPTION and metadata.credit_amount:
                account = AccountKey(payment.user_id, self._ledger_kind_of(payment, metadata))
                balance = await self.ledger.lock_balance(account)
                debit = min(metadata.credit_amount, balance.balance)
                shortfall = metadata.credit_amount - debit
                if shortfall > 0:
                    metadata = replace(metadata, refund_shortfall=shortfall)
                    logger.warning(
                        "refund_under_reversed",
                        payment_id=str(payment.id),
                        credit_amount=metadata.credit_amount,
                        debited=debit,
                        shortfall=shortfall,
                    )

            if not await self._transition(
                payment.id,
                PaymentStatus.SUCCEEDED,
                PaymentStatus.REFUNDED,
                metadata,
                refunded_at=utc_now(),
            ):
                return WebhookOutcome.ALREADY_PROCESSED, None

            await self.commissions.cancel_pending_for_payment(payment.id, "Payment refunded")

            if debit > 0:
                await self.ledger.apply_adjustment(
                    AdjustmentIntent(
                        account=AccountKey(payment.user_id, self._ledger_kind_of(payment, metadata)),
                        amount=-debit,
                        kind=TransactionKind.REFUND,
                        description=f"Refund of {metadata.credit_amount} credits (capture {capture_id})",
                        payment_id=payment.id,
                    )
                )

            refunded = await self._load_payment(payment.id)
            return WebhookOutcome.PROCESSED, self._payment_to_domain(refunded)

        outcome, payment = await run_in_transaction(
            self.session, work, operation="refund_payment", max_attempts=self.max_attempts
        )

        if payment is not None:
            metrics.record_payment(payment.payment_type.value, PaymentStatus.REFUNDED.value)
            logger.info("payment_refunded", payment_id=str(payment.payment_id), capture_id=capture_id)
            await dispatch_safely(
                self.notifier,
                NotificationMessage(
                    user_id=payment.user_id,
                    type="system",
                    title="Payment Refunded",
                    message=f"Your payment of ${payment.amount} ({payment.description}) was refunded.",
                    link="/profile/credits",
                ),
            )
        return outcome

    async def _on_capture_denied(self, event: WebhookEvent) -> WebhookOutcome:
        if not event.order_id:
            logger.warning("webhook_missing_order_id", event_id=event.event_id)
            return WebhookOutcome.IGNORED

        payment_id, changed = await self._fail_pending(event.order_id, event.status or "DENIED")
        if payment_id is None:
            return WebhookOutcome.IGNORED
        return WebhookOutcome.PROCESSED if changed else WebhookOutcome.ALREADY_PROCESSED

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _settle(
        self, order_id: str, capture: CaptureResult, user_id: UUID | None = None
    ) -> Settlement:
        """Mark the pending payment succeeded and deliver what it bought, in one unit of work."""

        async def work() -> Settlement:
            conditions = [Payment.gateway_order_id == order_id]
            if user_id is not None:
                conditions.append(Payment.user_id == user_id)
            payment = await self._lock_payment(*conditions)

            if payment is None:
                raise OrderNotFoundError(order_id)
            if payment.status == PaymentStatus.SUCCEEDED:
                return Settlement(payment=self._payment_to_domain(payment), newly_settled=False)
            if payment.status != PaymentStatus.PENDING:
                raise OrderNotFoundError(order_id)

            if capture.amount is not None and capture.amount != payment.amount:
                logger.warning(
                    "capture_amount_mismatch",
                    payment_id=str(payment.id),
                    expected=str(payment.amount),
                    captured=str(capture.amount),
                )

            metadata = replace(
                PaymentMetadata.from_dict(payment.payment_metadata),
                paypal_capture_id=capture.capture_id,
                paypal_status=capture.status,
            )
            changed = await self._transition(
                payment.id,
                PaymentStatus.PENDING,
                PaymentStatus.SUCCEEDED,
                metadata,
                paid_at=utc_now(),
                gateway_capture_id=capture.capture_id,
            )
            payment = await self._load_payment(payment.id)
            if not changed:
                return Settlement(payment=self._payment_to_domain(payment), newly_settled=False)

            return await self._fulfil(payment, metadata)

        return await run_in_transaction(
            self.session, work, operation="settle_payment", max_attempts=self.max_attempts
        )

    async def _fulfil(self, payment: Payment, metadata: PaymentMetadata) -> Settlement:
        """Deliver a settled payment: subscription or credits, then the commission."""
        subscription = None
        if payment.payment_type == PaymentType.SUBSCRIPTION:
            plan = get_plan(metadata.plan or "")
            if payment.site_id is None:
                raise InvalidArgumentError(f"Subscription payment {payment.id} has no site")
            subscription = await self.subscriptions.activate(
                payment.user_id, payment.site_id, plan.name, payment.amount
            )
            awarded = await self._award_plan_credits(
                payment.user_id, plan, payment.id, payment.site_id
            )
        else:
            if not metadata.credit_amount:
                raise InvalidArgumentError(f"Credit payment {payment.id} has no credit amount")
            ledger_kind = self._ledger_kind_of(payment, metadata)
            awarded = metadata.credit_amount
            await self.ledger.apply_adjustment(
                AdjustmentIntent(
                    account=AccountKey(payment.user_id, ledger_kind),
                    amount=awarded,
                    kind=TransactionKind.PURCHASE,
                    description=f"Purchased {awarded} {ledger_label(ledger_kind)}",
                    cost=payment.amount,
                    cost_currency=USD,
                    payment_id=payment.id,
                )
            )

        commission = await self.commissions.create_commission(
            payment.id,
            payment.user_id,
            payment.amount,
            subscription.subscription_id if subscription else None,
        )
        return Settlement(
            payment=self._payment_to_domain(payment),
            newly_settled=True,
            commission=commission,
            subscription=subscription,
            credits_awarded=awarded,
        )

    async def _after_settlement(self, settlement: Settlement) -> None:
        """Metrics, logs and notifications once a settlement has committed."""
        if not settlement.newly_settled:
            return

        payment = settlement.payment
        metrics.record_payment(payment.payment_type.value, PaymentStatus.SUCCEEDED.value)
        logger.info(
            "payment_settled",
            payment_id=str(payment.payment_id),
            user_id=str(payment.user_id),
            payment_type=payment.payment_type.value,
            amount=str(payment.amount),
            credits_awarded=settlement.credits_awarded,
        )

        if settlement.subscription is not None:
            message = NotificationMessage(
                user_id=payment.user_id,
                type="subscription",
                title="Subscription Activated",
                message=(
                    f"Your {settlement.subscription.plan} subscription is active until "
                    f"{settlement.subscription.end_date:%Y-%m-%d}. "
                    f"You received {settlement.credits_awarded} Radium credits."
                ),
                link=f"/profile/sites/{settlement.subscription.site_id}",
            )
        else:
            message = NotificationMessage(
                user_id=payment.user_id,
                type="system",
                title="Payment Successful",
                message=f"{settlement.credits_awarded} credits were added to your account.",
                link="/profile/credits",
            )
        await dispatch_safely(self.notifier, message)

        if settlement.commission is not None:
            await dispatch_safely(self.notifier, commission_earned_message(settlement.commission))

    async def _fail_pending(
        self, order_id: str, gateway_status: str, user_id: UUID | None = None
    ) -> tuple[UUID | None, bool]:
        """PENDING -> FAILED. Returns the payment id (if any) and whether it changed."""

        async def work() -> tuple[UUID | None, bool]:
            conditions = [Payment.gateway_order_id == order_id]
            if user_id is not None:
                conditions.append(Payment.user_id == user_id)
            payment = await self._lock_payment(*conditions)
            if payment is None:
                return None, False
            if payment.status != PaymentStatus.PENDING:
                return payment.id, False

            metadata = replace(
                PaymentMetadata.from_dict(payment.payment_metadata), paypal_status=gateway_status
            )
            changed = await self._transition(
                payment.id, PaymentStatus.PENDING, PaymentStatus.FAILED, metadata
            )
            if changed:
                metrics.record_payment(payment.payment_type.value, PaymentStatus.FAILED.value)
                logger.warning(
                    "payment_failed",
                    payment_id=str(payment.id),
                    order_id=order_id,
                    gateway_status=gateway_status,
                )
            return payment.id, changed

        return await run_in_transaction(
            self.session, work, operation="fail_payment", max_attempts=self.max_attempts
        )

    def _checked_plan(self, command: CheckoutCommand) -> PlanDefinition | None:
        """Catalog plan for a subscription checkout; price checks for both order types."""
        if command.order_type != OrderType.SUBSCRIPTION:
            check_credit_price(command.credit_amount or 0, command.amount)
            return None
        plan = get_plan(command.plan or "")
        check_plan_price(plan, command.amount)
        if command.site_id is None:
            raise InvalidArgumentError("Site ID required for subscription")
        return plan

    async def _award_plan_credits(
        self, user_id: UUID, plan: PlanDefinition, payment_id: UUID, site_id: UUID
    ) -> int:
        """Credit a year of the plan's included Radium credits up front."""
        await self.ledger.apply_adjustment(
            AdjustmentIntent(
                account=AccountKey(user_id, LedgerKind.RADIUM),
                amount=plan.annual_credits,
                kind=TransactionKind.SUBSCRIPTION,
                description=f"Annual Radium credits for {plan.name} subscription",
                payment_id=payment_id,
                site_id=site_id,
            )
        )
        return plan.annual_credits

    async def _transition(
        self,
        payment_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        metadata: PaymentMetadata,
        **values: Any,
    ) -> bool:
        """Compare-and-set a payment status. Returns whether this call won."""
        result = await self.session.execute(
            update(_payments)
            .where(_payments.c.id == payment_id, _payments.c.status == expected)
            .values(status=target, metadata=metadata.to_dict(), updated_at=utc_now(), **values)
        )
        return result.rowcount == 1

    async def _lock_payment(self, *conditions: Any) -> Payment | None:
        result = await self.session.execute(
            select(Payment)
            .where(*conditions)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_payment(self, payment_id: UUID) -> Payment:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _ledger_kind_of(payment: Payment, metadata: PaymentMetadata) -> LedgerKind:
        if metadata.ledger_kind is not None:
            return metadata.ledger_kind
        if payment.payment_type == PaymentType.USER_CREDITS:
            return LedgerKind.CREDITS
        return LedgerKind.RADIUM

    @staticmethod
    def _custom_id(command: CheckoutCommand, plan: PlanDefinition | None) -> str:
        """Order context echoed back by the gateway; PayPal caps custom_id at 127 chars."""
        data: dict[str, Any] = {"u": str(command.user_id), "t": command.order_type.value}
        if plan is not None:
            data["p"] = plan.name
            data["s"] = str(command.site_id)
        else:
            data["c"] = command.credit_amount
            data["k"] = command.ledger_kind.value
        return json.dumps(data, separators=(",", ":"))

    @staticmethod
    def _payment_to_domain(payment: Payment) -> PaymentData:
        """Convert ORM payment to domain model."""
        return PaymentData(
            payment_id=payment.id,
            user_id=payment.user_id,
            site_id=payment.site_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
            payment_type=payment.payment_type,
            description=payment.description,
            metadata=PaymentMetadata.from_dict(payment.payment_metadata),
            paid_at=payment.paid_at,
            created_at=payment.created_at,
        )
