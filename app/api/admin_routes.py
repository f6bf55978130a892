"""
Admin API routes for managing balances and affiliate commissions.

Protected by bearer JWT; every route requires a super admin (role 0).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from structlog import get_logger

from app.api.dependencies import (
    get_commission_service,
    get_ledger_service,
    http_error_for,
    require_super_admin,
)
from app.exceptions import LedgerError
from app.models.api import (
    AdjustBalanceRequest,
    AdjustBalanceResponse,
    AdminAdjustmentItem,
    AdminAdjustmentListResponse,
    CancelCommissionRequest,
    CommissionRateRequest,
    CommissionRateResponse,
    CommissionResponse,
    LedgerKind,
    ReconciliationResponse,
)
from app.models.domain import AccountKey, AuthenticatedUser, CommissionData
from app.services.commissions import CommissionService
from app.services.ledger import MAX_PAGE_SIZE, LedgerService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _commission_response(commission: CommissionData) -> CommissionResponse:
    return CommissionResponse(
        commission_id=commission.commission_id,
        referrer_id=commission.referrer_id,
        referred_user_id=commission.referred_user_id,
        payment_id=commission.payment_id,
        amount=commission.amount,
        percentage=commission.percentage,
        status=commission.status,
        paid_at=commission.paid_at,
        cancelled_at=commission.cancelled_at,
        cancellation_reason=commission.cancellation_reason,
    )


# ============================================================================
# Ledger Administration
# ============================================================================


@router.post("/ledger/{ledger_kind}/adjust", response_model=AdjustBalanceResponse)
async def adjust_balance(
    ledger_kind: LedgerKind,
    request: AdjustBalanceRequest,
    admin: AuthenticatedUser = Depends(require_super_admin),
    service: LedgerService = Depends(get_ledger_service),
) -> AdjustBalanceResponse:
    """
    Manually credit or debit a user's balance.

    Debits below zero are rejected with 400.
    """
    try:
        result = await service.admin_adjust(
            admin.user_id,
            AccountKey(request.user_id, ledger_kind),
            request.amount,
            request.description,
            payment_method=request.payment_method,
        )
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    return AdjustBalanceResponse(
        user_id=request.user_id,
        ledger_kind=ledger_kind,
        balance=result.balance,
        lifetime=result.lifetime,
        adjustment=result.amount,
        transaction_id=result.transaction_id,
    )


@router.get("/ledger/{ledger_kind}/adjustments", response_model=AdminAdjustmentListResponse)
async def list_adjustments(
    ledger_kind: LedgerKind,
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    admin: AuthenticatedUser = Depends(require_super_admin),
    service: LedgerService = Depends(get_ledger_service),
) -> AdminAdjustmentListResponse:
    """Recent manual adjustments, newest first."""
    adjustments = await service.list_admin_adjustments(ledger_kind, limit=limit)
    return AdminAdjustmentListResponse(
        transactions=[
            AdminAdjustmentItem(
                transaction_id=item.transaction_id,
                user_id=item.user_id,
                user_name=item.user_name,
                user_email=item.user_email,
                amount=item.amount,
                balance_after=item.balance_after,
                description=item.description,
                created_at=item.created_at,
            )
            for item in adjustments
        ]
    )


@router.get("/ledger/{ledger_kind}/reconcile/{user_id}", response_model=ReconciliationResponse)
async def reconcile_account(
    ledger_kind: LedgerKind,
    user_id: UUID,
    admin: AuthenticatedUser = Depends(require_super_admin),
    service: LedgerService = Depends(get_ledger_service),
) -> ReconciliationResponse:
    """Replay an account's transactions and report any snapshot that disagrees."""
    report = await service.reconcile_account(AccountKey(user_id, ledger_kind))
    return ReconciliationResponse(
        user_id=report.user_id,
        ledger_kind=report.ledger_kind,
        balance=report.balance,
        replayed_balance=report.replayed_balance,
        transaction_count=report.transaction_count,
        mismatched_transaction_ids=report.mismatched_transaction_ids,
        consistent=report.consistent,
    )


# ============================================================================
# Commission Administration
# ============================================================================


@router.put("/referrals/commission-rate", response_model=CommissionRateResponse)
async def set_commission_rate(
    request: CommissionRateRequest,
    admin: AuthenticatedUser = Depends(require_super_admin),
    service: CommissionService = Depends(get_commission_service),
) -> CommissionRateResponse:
    """Change a referrer's commission rate for future payments."""
    try:
        data = await service.set_commission_rate(request.user_id, request.commission_rate)
    except LedgerError as exc:
        raise http_error_for(exc) from exc

    logger.info(
        "admin_commission_rate_set",
        admin_id=str(admin.user_id),
        user_id=str(request.user_id),
        commission_rate=str(data.commission_rate),
    )
    return CommissionRateResponse(
        user_id=data.user_id,
        email=data.email,
        name=data.name,
        commission_rate=data.commission_rate,
    )


@router.post("/commissions/{commission_id}/pay", response_model=CommissionResponse)
async def mark_commission_paid(
    commission_id: UUID,
    admin: AuthenticatedUser = Depends(require_super_admin),
    service: CommissionService = Depends(get_commission_service),
) -> CommissionResponse:
    """Record that a pending commission was paid out."""
    try:
        commission = await service.mark_paid(commission_id)
    except LedgerError as exc:
        raise http_error_for(exc) from exc
    return _commission_response(commission)


@router.post("/commissions/{commission_id}/cancel", response_model=CommissionResponse)
async def cancel_commission(
    commission_id: UUID,
    request: CancelCommissionRequest,
    admin: AuthenticatedUser = Depends(require_super_admin),
    service: CommissionService = Depends(get_commission_service),
) -> CommissionResponse:
    """Cancel a pending commission. Paid commissions are left as they are."""
    try:
        commission = await service.cancel_commission(commission_id, request.reason)
    except LedgerError as exc:
        raise http_error_for(exc) from exc
    return _commission_response(commission)
