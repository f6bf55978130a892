"""
API Routes - FastAPI endpoints for ledger, payment and referral operations.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import (
    get_commission_service,
    get_current_user,
    get_ledger_service,
    get_payment_service,
    http_error_for,
)
from app.db.session import get_read_db
from app.exceptions import LedgerError, WebhookVerificationError
from app.models.api import (
    BalanceResponse,
    CaptureOrderResponse,
    CommissionStatsResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    ExchangeCreditsRequest,
    ExchangeCreditsResponse,
    HealthResponse,
    LedgerKind,
    PayWithCreditsRequest,
    PayWithCreditsResponse,
    TransactionItem,
    TransactionKind,
    TransactionListResponse,
    WebhookAckResponse,
)
from app.models.domain import AccountKey, AuthenticatedUser, CheckoutCommand, ExchangeCommand
from app.observability.metrics import metrics
from app.services.commissions import CommissionService
from app.services.ledger import MAX_PAGE_SIZE, LedgerService
from app.services.payments import PaymentService

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Ledger
# ============================================================================


@router.get("/v1/ledger/{ledger_kind}/balance", response_model=BalanceResponse)
async def get_balance(
    ledger_kind: LedgerKind,
    user: AuthenticatedUser = Depends(get_current_user),
    service: LedgerService = Depends(get_ledger_service),
) -> BalanceResponse:
    """
    Current balance of the caller's account.

    The account is created with a zero balance on first access.
    """
    try:
        balance = await service.get_balance(AccountKey(user.user_id, ledger_kind))
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return BalanceResponse(
        ledger_kind=balance.ledger_kind, balance=balance.balance, lifetime=balance.lifetime
    )


@router.get("/v1/ledger/{ledger_kind}/transactions", response_model=TransactionListResponse)
async def list_transactions(
    ledger_kind: LedgerKind,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    kind: TransactionKind | None = Query(None, alias="type"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionListResponse:
    """Transaction history of the caller's account, newest first."""
    try:
        page = await service.list_transactions(
            AccountKey(user.user_id, ledger_kind), limit=limit, offset=offset, kind=kind
        )
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return TransactionListResponse(
        transactions=[
            TransactionItem(
                transaction_id=tx.transaction_id,
                kind=tx.kind,
                amount=tx.amount,
                balance_after=tx.balance_after,
                description=tx.description,
                cost=tx.cost,
                cost_currency=tx.cost_currency,
                payment_id=tx.payment_id,
                site_id=tx.site_id,
                created_at=tx.created_at,
            )
            for tx in page.transactions
        ],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


# ============================================================================
# Payments
# ============================================================================


@router.post(
    "/v1/payments/orders",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    request: CreateOrderRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> CreateOrderResponse:
    """
    Start a PayPal checkout for a subscription or a credit pack.

    Returns the approval link the buyer is redirected to.
    """
    try:
        command = CheckoutCommand(
            user_id=user.user_id,
            order_type=request.type,
            amount=request.amount,
            plan=request.plan,
            credit_amount=request.credit_amount,
            ledger_kind=request.ledger_kind,
            site_id=request.site_id,
        )
        order = await service.create_order(command)
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return CreateOrderResponse(
        order_id=order.order_id,
        status=order.status,
        approve_url=order.approve_url,
        payment_id=order.payment_id,
    )


@router.post("/v1/payments/orders/{order_id}/capture", response_model=CaptureOrderResponse)
async def capture_order(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> CaptureOrderResponse:
    """Capture an approved order and deliver what it paid for."""
    try:
        outcome = await service.capture_order(user.user_id, order_id)
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return CaptureOrderResponse(
        order_id=outcome.order_id,
        status=outcome.status,
        payment_id=outcome.payment_id,
        payment_type=outcome.payment_type,
    )


@router.post("/v1/payments/pay-with-credits", response_model=PayWithCreditsResponse)
async def pay_with_credits(
    request: PayWithCreditsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> PayWithCreditsResponse:
    """Pay for a subscription or credit pack with EZ credits (1 credit = $1)."""
    try:
        command = CheckoutCommand(
            user_id=user.user_id,
            order_type=request.type,
            amount=request.amount,
            plan=request.plan,
            credit_amount=request.credit_amount,
            ledger_kind=LedgerKind.CREDITS,
            site_id=request.site_id,
        )
        result = await service.pay_with_credits(command)
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return PayWithCreditsResponse(
        payment_id=result.payment_id,
        credits_used=result.credits_used,
        credit_balance=result.credit_balance,
        credits_added=result.credits_added,
        radium_awarded=result.radium_awarded,
        subscription_id=result.subscription_id,
    )


@router.post("/v1/credits/exchange", response_model=ExchangeCreditsResponse)
async def exchange_credits(
    request: ExchangeCreditsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> ExchangeCreditsResponse:
    """Buy Radium credits with EZ credits."""
    try:
        command = ExchangeCommand(
            user_id=user.user_id,
            radium_amount=request.radium_amount,
            credit_cost=request.credit_cost,
            pack_name=request.pack_name,
        )
        result = await service.exchange_credits(command)
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return ExchangeCreditsResponse(
        payment_id=result.payment_id,
        credit_balance=result.credit_balance,
        radium_balance=result.radium_balance,
        radium_added=result.radium_added,
    )


@router.post("/v1/payments/webhooks/paypal", response_model=WebhookAckResponse)
async def paypal_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> WebhookAckResponse:
    """
    PayPal webhook receiver.

    Unverifiable deliveries get 400. Processing failures get 500 so PayPal
    redelivers; redelivery is safe because every handler is idempotent.
    """
    payload = await request.body()

    try:
        result = await service.handle_webhook(request.headers, payload)
    except WebhookVerificationError as exc:
        metrics.record_webhook("unknown", "rejected")
        logger.warning("paypal_webhook_rejected", error=exc.message)
        raise http_error_for(exc) from exc
    except LedgerError as exc:
        metrics.record_error(type(exc).__name__, "paypal_webhook")
        logger.error("paypal_webhook_failed", error=str(exc), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookAckResponse(received=True, outcome=result.outcome, event_id=result.event_id)


# ============================================================================
# Referrals
# ============================================================================


@router.get("/v1/referrals/stats", response_model=CommissionStatsResponse)
async def get_referral_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    service: CommissionService = Depends(get_commission_service),
) -> CommissionStatsResponse:
    """Commission earnings of the caller as a referrer."""
    stats = await service.get_stats(user.user_id)
    return CommissionStatsResponse(
        total_earned=stats.total_earned,
        pending_earnings=stats.pending_earnings,
        paid_earnings=stats.paid_earnings,
        total_referrals=stats.total_referrals,
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("database_health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
