"""
Ledger Service - the only writer of balances.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from collections.abc import Awaitable, Callable
from dataclasses import replace
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Select, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import BalanceAccount, LedgerTransaction, Payment, User, utc_now
from app.db.unit_of_work import run_in_transaction
from app.exceptions import (
    InsufficientBalanceError,
    InvalidArgumentError,
    LedgerError,
    ResourceNotFoundError,
)
from app.models.api import LedgerKind, PaymentStatus, PaymentType, TransactionKind
from app.models.domain import (
    USD,
    AccountKey,
    AdjustmentIntent,
    AdjustmentResult,
    AdminAdjustmentData,
    BalanceData,
    NotificationMessage,
    PaymentMetadata,
    ReconciliationReport,
    TransactionData,
    TransactionPage,
)
from app.observability.metrics import metrics
from app.services.notifications import NotificationDispatcher, dispatch_safely

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200

_balances = BalanceAccount.__table__


def ledger_label(ledger_kind: LedgerKind) -> str:
    """Human readable ledger name."""
    return "Radium credits" if ledger_kind == LedgerKind.RADIUM else "EZ credits"


class LedgerService:
    """
    Ledger service with atomic balance writes.

    Every balance change follows the pattern:
    1. Insert the account if absent, then lock it (SELECT FOR UPDATE)
    2. Conditional UPDATE that refuses to go below zero, RETURNING the new balance
    3. Insert the transaction row with that balance as its snapshot

    Public mutators commit through a retrying unit of work. Composite flows
    (payments, exchanges) call apply_adjustment inside their own unit of work.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        max_attempts: int | None = None,
    ) -> None:
        """Initialize ledger service with database session."""
        self.session = session
        self.notifier = notifier
        self.max_attempts = max_attempts or settings.ledger_max_retries

    async def get_balance(self, account: AccountKey) -> BalanceData:
        """Current balance, creating an empty account on first access."""

        async def work() -> BalanceData:
            return await self.lock_balance(account)

        return await run_in_transaction(
            self.session, work, operation="get_balance", max_attempts=self.max_attempts
        )

    async def lock_balance(self, account: AccountKey) -> BalanceData:
        """Lock the account inside the caller's unit of work and return its balance."""
        row = await self._get_or_create_account(account)
        return BalanceData(
            user_id=row.user_id,
            ledger_kind=row.ledger_kind,
            balance=row.balance,
            lifetime=row.lifetime,
        )

    async def list_transactions(
        self,
        account: AccountKey,
        limit: int = 50,
        offset: int = 0,
        kind: TransactionKind | None = None,
    ) -> TransactionPage:
        """Transaction history for one account, newest first."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidArgumentError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidArgumentError("offset cannot be negative")

        conditions = [
            LedgerTransaction.user_id == account.user_id,
            LedgerTransaction.ledger_kind == account.ledger_kind,
        ]
        if kind is not None:
            conditions.append(LedgerTransaction.kind == kind)

        total = await self.session.scalar(
            select(func.count()).select_from(LedgerTransaction).where(*conditions)
        )
        result = await self.session.execute(
            select(LedgerTransaction)
            .where(*conditions)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )

        return TransactionPage(
            transactions=[self._transaction_to_domain(tx) for tx in result.scalars()],
            total=total or 0,
            limit=limit,
            offset=offset,
        )

    async def adjust_balance(
        self,
        intent: AdjustmentIntent,
        notification: NotificationMessage | None = None,
    ) -> AdjustmentResult:
        """
        Apply one balance change and commit.

        Raises:
            InsufficientBalanceError: Debit would take the balance below zero
            PersistenceConflictError: Write conflicts persisted past the retry budget
        """

        async def work() -> AdjustmentResult:
            return await self.apply_adjustment(intent)

        result = await self._commit_adjustments(work, [intent])
        if notification is not None:
            await dispatch_safely(self.notifier, notification)
        return result

    async def apply_adjustment(self, intent: AdjustmentIntent) -> AdjustmentResult:
        """
        Apply one balance change inside the caller's unit of work (no commit).

        Raises:
            InsufficientBalanceError: Debit would take the balance below zero
        """
        account = await self._get_or_create_account(intent.account)

        stmt = (
            update(_balances)
            .where(_balances.c.id == account.id, _balances.c.balance + intent.amount >= 0)
            .values(
                balance=_balances.c.balance + intent.amount,
                lifetime=_balances.c.lifetime + max(intent.amount, 0),
                updated_at=utc_now(),
            )
            .returning(_balances.c.balance, _balances.c.lifetime)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise InsufficientBalanceError(required=-intent.amount, available=account.balance)

        transaction = LedgerTransaction(
            account_id=account.id,
            user_id=intent.account.user_id,
            ledger_kind=intent.account.ledger_kind,
            kind=intent.kind,
            amount=intent.amount,
            balance_after=row.balance,
            description=intent.description,
            cost=intent.cost,
            cost_currency=intent.cost_currency,
            payment_id=intent.payment_id,
            site_id=intent.site_id,
        )
        self.session.add(transaction)
        await self.session.flush()

        return AdjustmentResult(
            transaction_id=transaction.id,
            account_id=account.id,
            amount=intent.amount,
            balance=row.balance,
            lifetime=row.lifetime,
        )

    async def admin_adjust(
        self,
        admin_id: UUID,
        account: AccountKey,
        amount: int,
        description: str,
        payment_method: str | None = None,
    ) -> AdjustmentResult:
        """
        Manual adjustment by a super admin.

        Positive adjustments also record a zero-amount succeeded payment so the
        grant shows up in payment history with who made it and how it was paid.
        """
        if payment_method:
            description = f"{description} (via {payment_method})"
        intent = AdjustmentIntent(
            account=account,
            amount=amount,
            kind=TransactionKind.ADMIN_ADJUST,
            description=description,
        )

        async def work() -> AdjustmentResult:
            applied = intent
            await self.ensure_user(account.user_id)
            if amount > 0:
                payment = Payment(
                    user_id=account.user_id,
                    amount=Decimal("0.00"),
                    currency=USD,
                    status=PaymentStatus.SUCCEEDED,
                    payment_type=(
                        PaymentType.USER_CREDITS
                        if account.ledger_kind == LedgerKind.CREDITS
                        else PaymentType.RADIUM_CREDITS
                    ),
                    description=f"Manual adjustment: {description}",
                    payment_metadata=PaymentMetadata(
                        credit_amount=amount,
                        ledger_kind=account.ledger_kind,
                        adjusted_by=str(admin_id),
                        payment_method=payment_method,
                    ).to_dict(),
                    paid_at=utc_now(),
                )
                self.session.add(payment)
                await self.session.flush()
                applied = replace(intent, payment_id=payment.id)
            return await self.apply_adjustment(applied)

        result = await self._commit_adjustments(work, [intent])

        logger.info(
            "admin_balance_adjusted",
            admin_id=str(admin_id),
            user_id=str(account.user_id),
            ledger_kind=account.ledger_kind.value,
            amount=amount,
            balance=result.balance,
        )

        verb = "added to" if amount > 0 else "deducted from"
        await dispatch_safely(
            self.notifier,
            NotificationMessage(
                user_id=account.user_id,
                type="system",
                title="Credits Adjusted",
                message=(
                    f"{abs(amount)} {ledger_label(account.ledger_kind)} {verb} your account. "
                    f"New balance: {result.balance}"
                ),
                link="/dashboard/credits",
            ),
        )
        return result

    async def list_admin_adjustments(
        self, ledger_kind: LedgerKind, limit: int = 100
    ) -> list[AdminAdjustmentData]:
        """Recent manual adjustments across all users."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidArgumentError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        result = await self.session.execute(
            select(LedgerTransaction, User.name, User.email)
            .outerjoin(User, User.id == LedgerTransaction.user_id)
            .where(
                LedgerTransaction.ledger_kind == ledger_kind,
                LedgerTransaction.kind == TransactionKind.ADMIN_ADJUST,
            )
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(limit)
        )

        return [
            AdminAdjustmentData(
                transaction_id=tx.id,
                user_id=tx.user_id,
                user_name=name,
                user_email=email,
                amount=tx.amount,
                balance_after=tx.balance_after,
                description=tx.description,
                created_at=tx.created_at,
            )
            for tx, name, email in result.all()
        ]

    async def reconcile_account(self, account: AccountKey) -> ReconciliationReport:
        """
        Replay an account's transactions oldest first.

        Every recorded balance_after must equal the running sum, and the final
        sum must equal the stored balance.
        """
        balance_row = await self.session.execute(
            select(BalanceAccount)
            .where(
                BalanceAccount.user_id == account.user_id,
                BalanceAccount.ledger_kind == account.ledger_kind,
            )
            .execution_options(populate_existing=True)
        )
        stored = balance_row.scalar_one_or_none()
        if stored is None:
            return ReconciliationReport(
                user_id=account.user_id,
                ledger_kind=account.ledger_kind,
                balance=0,
                replayed_balance=0,
                transaction_count=0,
            )

        result = await self.session.execute(
            select(LedgerTransaction.id, LedgerTransaction.amount, LedgerTransaction.balance_after)
            .where(LedgerTransaction.account_id == stored.id)
            .order_by(LedgerTransaction.created_at.asc(), LedgerTransaction.id.asc())
        )

        running = 0
        count = 0
        mismatched: list[int] = []
        for transaction_id, amount, balance_after in result.all():
            running += amount
            count += 1
            if running != balance_after:
                mismatched.append(transaction_id)

        report = ReconciliationReport(
            user_id=account.user_id,
            ledger_kind=account.ledger_kind,
            balance=stored.balance,
            replayed_balance=running,
            transaction_count=count,
            mismatched_transaction_ids=mismatched,
        )
        if not report.consistent:
            logger.error(
                "ledger_reconciliation_mismatch",
                user_id=str(account.user_id),
                ledger_kind=account.ledger_kind.value,
                balance=stored.balance,
                replayed_balance=running,
                mismatched=len(mismatched),
            )
        return report

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _commit_adjustments(
        self,
        work: Callable[[], Awaitable[AdjustmentResult]],
        intents: list[AdjustmentIntent],
    ) -> AdjustmentResult:
        """Run work in a retrying unit of work, recording adjustment metrics."""
        try:
            result = await run_in_transaction(
                self.session, work, operation="adjust_balance", max_attempts=self.max_attempts
            )
        except LedgerError as e:
            for intent in intents:
                metrics.record_adjustment(
                    intent.account.ledger_kind.value, intent.kind.value, False, intent.amount
                )
            logger.info(
                "balance_adjustment_rejected",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        for intent in intents:
            metrics.record_adjustment(
                intent.account.ledger_kind.value, intent.kind.value, True, intent.amount
            )
            logger.info(
                "balance_adjusted",
                user_id=str(intent.account.user_id),
                ledger_kind=intent.account.ledger_kind.value,
                kind=intent.kind.value,
                amount=intent.amount,
            )
        return result

    async def ensure_user(self, user_id: UUID) -> None:
        """
        Raises:
            ResourceNotFoundError: No users row for this id
        """
        found = await self.session.scalar(select(User.id).where(User.id == user_id))
        if found is None:
            raise ResourceNotFoundError("User", user_id)

    async def _get_or_create_account(self, key: AccountKey) -> BalanceAccount:
        """
        Insert the account if absent, then lock it (SELECT FOR UPDATE).

        The insert is a no-op on conflict so concurrent first writes do not
        abort the surrounding transaction. Accounts are only opened for users
        that exist.
        """
        existing = await self.session.execute(self._locked_account(key))
        account = existing.scalar_one_or_none()
        if account is not None:
            return account

        await self.ensure_user(key.user_id)
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        now = utc_now()
        await self.session.execute(
            insert(_balances)
            .values(
                id=uuid4(),
                user_id=key.user_id,
                ledger_kind=key.ledger_kind,
                balance=0,
                lifetime=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "ledger_kind"])
        )
        result = await self.session.execute(self._locked_account(key))
        return result.scalar_one()

    def _locked_account(self, key: AccountKey) -> Select[tuple[BalanceAccount]]:
        return (
            select(BalanceAccount)
            .where(
                BalanceAccount.user_id == key.user_id,
                BalanceAccount.ledger_kind == key.ledger_kind,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def _transaction_to_domain(self, tx: LedgerTransaction) -> TransactionData:
        """Convert ORM transaction to domain model."""
        return TransactionData(
            transaction_id=tx.id,
            account_id=tx.account_id,
            user_id=tx.user_id,
            ledger_kind=tx.ledger_kind,
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
