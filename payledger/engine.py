"""
LedgerEngine — the single entry point for every ledger operation.

HTTP handlers and webhooks never touch a session. They call the engine,
which:

  1. opens one AsyncSession and one database transaction per operation,
     runs the workflow function inside it, and commits (or rolls back on
     any exception, so a balance change never outlives its transaction
     record);
  2. replays the whole unit of work when a concurrent writer got to the
     same balance first (StaleDataError from the version counter,
     IntegrityError from two lazy balance inserts, or SQLite's
     "database is locked"), up to max_retries attempts;
  3. calls the external collaborators (payout rail, booking system) only
     after the commit, never while a database transaction is open.

The engine is built by build_engine() at startup and stored on
app.state; tests build their own against an isolated database.
"""

import asyncio
import logging
import random
import uuid

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from payledger.config import settings
from payledger.database import AsyncSessionLocal
from payledger.exceptions import (
    AlreadyResolvedError,
    ConcurrentUpdateError,
    GatewayUnavailableError,
    PaymentMethodNotFoundError,
    PayoutRejectedError,
    TransactionNotFoundError,
)
from payledger.gateways import (
    BookingClient,
    PayoutGateway,
    booking_client_from_settings,
    payout_gateway_from_settings,
)
from payledger.models.balance import Balance
from payledger.models.payment_method import PaymentMethod, PaymentMethodType
from payledger.models.transaction import (
    DisputeOutcome,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from payledger.services import (
    balance_service,
    dispute_service,
    payment_method_service,
    reconciliation_service,
    refund_service,
    settlement_service,
    transaction_service,
    withdrawal_service,
)
from payledger.services.reconciliation_service import Mismatch
from payledger.services.transaction_service import WorkflowResult

logger = logging.getLogger(__name__)


def _is_balance_insert_race(exc: IntegrityError) -> bool:
    # Two units of work lazily creating the same user's balance row
    message = str(exc.orig)
    return "balances" in message and ("UNIQUE" in message or "duplicate key" in message)


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError):
        return _is_balance_insert_race(exc)
    if isinstance(exc, OperationalError):
        return "database is locked" in str(exc)
    return False


class LedgerEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        booking_client: BookingClient,
        payout_gateway: PayoutGateway,
        max_retries: int = 5,
        max_withdrawal_amount: int = 1_000_000,
        max_daily_withdrawal: int = 5_000_000,
        retry_backoff: float = 0.01,
    ):
        self.session_factory = session_factory
        self.booking_client = booking_client
        self.payout_gateway = payout_gateway
        self.max_retries = max_retries
        self.max_withdrawal_amount = max_withdrawal_amount
        self.max_daily_withdrawal = max_daily_withdrawal
        self.retry_backoff = retry_backoff

    # -----------------------------------------------------------------------
    # Unit of work
    # -----------------------------------------------------------------------

    async def _run(self, operation, *args, **kwargs):
        """
        Run ``operation(db, *args, **kwargs)`` in its own database transaction.

        Raises:
            ConcurrentUpdateError: If every attempt lost a race.
            LedgerError: Whatever the workflow raised; nothing is committed.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        return await operation(db, *args, **kwargs)
            except (StaleDataError, IntegrityError, OperationalError) as exc:
                if not _is_retryable(exc):
                    raise
                logger.warning(
                    "%s lost a concurrent update (attempt %s/%s): %s",
                    operation.__name__,
                    attempt,
                    self.max_retries,
                    exc.__class__.__name__,
                )
                await asyncio.sleep(self.retry_backoff * attempt * random.uniform(1, 2))

        logger.error("%s gave up after %s attempts", operation.__name__, self.max_retries)
        raise ConcurrentUpdateError(
            "The balance is being updated by another request; try again"
        )

    async def _notify_booking(self, result: WorkflowResult) -> None:
        txn = result.transaction
        if result.booking_event is None or txn.booking_id is None:
            return
        try:
            if result.booking_event == "paid":
                await self.booking_client.mark_paid(txn.booking_id, txn.id)
            else:
                await self.booking_client.mark_refunded(txn.booking_id, txn.id)
        except GatewayUnavailableError as exc:
            logger.error(
                "Booking %s not told it was %s (transaction %s committed)",
                txn.booking_id,
                result.booking_event,
                txn.id,
            )
            if exc.transaction_id is None:
                exc.transaction_id = txn.id
            raise

    # -----------------------------------------------------------------------
    # Balances and history
    # -----------------------------------------------------------------------

    async def get_balance(self, user_id: uuid.UUID) -> Balance:
        return await self._run(balance_service.get_balance, user_id)

    async def list_transactions(
        self,
        user_id: uuid.UUID,
        type_filter: TransactionType | None = None,
        status_filter: TransactionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        return await self._run(
            transaction_service.get_transactions,
            user_id,
            type_filter=type_filter,
            status_filter=status_filter,
            limit=limit,
            offset=offset,
        )

    async def get_transaction(
        self, transaction_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> Transaction:
        return await self._run(transaction_service.get_transaction, transaction_id, user_id)

    async def get_payment_by_reference(self, gateway_reference: str) -> Transaction:
        """The settled payment the gateway knows as ``gateway_reference``."""

        async def _find(db: AsyncSession) -> Transaction:
            txn = await transaction_service.find_by_reference(
                db,
                gateway_reference,
                TransactionType.PAYMENT,
                exclude_status=TransactionStatus.FAILED,
            )
            if txn is None:
                raise TransactionNotFoundError(gateway_reference)
            return txn

        return await self._run(_find)

    # -----------------------------------------------------------------------
    # Withdrawals
    # -----------------------------------------------------------------------

    async def request_withdrawal(
        self,
        user_id: uuid.UUID,
        amount: int,
        payment_method_id: uuid.UUID,
        description: str | None = None,
    ) -> Transaction:
        """
        Reserve the funds, commit, then submit the payout.

        Raises:
            GatewayUnavailableError: The payout rail couldn't be reached.
                The withdrawal stays pending; resubmit_withdrawal() retries.
            PayoutRejectedError: The rail refused the payout. The withdrawal
                has been failed and the funds returned to available.
        """
        txn, method = await self._run(
            withdrawal_service.request_withdrawal,
            user_id,
            amount,
            payment_method_id,
            self.max_withdrawal_amount,
            self.max_daily_withdrawal,
            description,
        )
        return await self._submit_payout(txn, method)

    async def _submit_payout(self, txn: Transaction, method: PaymentMethod) -> Transaction:
        try:
            reference = await self.payout_gateway.submit_payout(txn, method)
        except PayoutRejectedError:
            logger.error("Payout for withdrawal %s rejected; releasing funds", txn.id)
            await self._run(
                withdrawal_service.complete_withdrawal,
                False,
                transaction_id=txn.id,
            )
            raise
        except GatewayUnavailableError as exc:
            logger.error("Withdrawal %s left pending: payout rail unavailable", txn.id)
            if exc.transaction_id is None:
                exc.transaction_id = txn.id
            raise

        return await self._run(withdrawal_service.attach_gateway_reference, txn.id, reference)

    async def resubmit_withdrawal(self, transaction_id: uuid.UUID) -> Transaction:
        """Retry the payout for a pending withdrawal; no-op once acknowledged."""
        txn, method = await self._run(withdrawal_service.load_for_submission, transaction_id)

        if txn.status != TransactionStatus.PENDING:
            raise AlreadyResolvedError(f"Withdrawal {txn.id} is already {txn.status.value}")
        if txn.gateway_reference is not None:
            return txn
        if method is None:
            raise PaymentMethodNotFoundError(txn.payment_method_id)

        return await self._submit_payout(txn, method)

    async def complete_withdrawal(
        self,
        succeeded: bool,
        transaction_id: uuid.UUID | None = None,
        gateway_reference: str | None = None,
    ) -> Transaction:
        return await self._run(
            withdrawal_service.complete_withdrawal,
            succeeded,
            transaction_id=transaction_id,
            gateway_reference=gateway_reference,
        )

    # -----------------------------------------------------------------------
    # Settlement
    # -----------------------------------------------------------------------

    async def record_payment(
        self,
        booking_id: uuid.UUID,
        amount: int,
        gateway_reference: str,
        user_id: uuid.UUID | None = None,
    ) -> WorkflowResult:
        """Credit a settled payment, then tell the booking system it's paid."""
        transaction_service.validate_amount(amount)
        if user_id is None:
            user_id = await self.booking_client.resolve_payee(booking_id)

        result = await self._run(
            settlement_service.record_payment,
            user_id,
            booking_id,
            amount,
            gateway_reference,
        )
        await self._notify_booking(result)
        return result

    async def record_payment_failure(
        self,
        booking_id: uuid.UUID,
        amount: int,
        gateway_reference: str,
        user_id: uuid.UUID | None = None,
    ) -> WorkflowResult:
        transaction_service.validate_amount(amount)
        if user_id is None:
            user_id = await self.booking_client.resolve_payee(booking_id)

        return await self._run(
            settlement_service.record_payment_failure,
            user_id,
            booking_id,
            amount,
            gateway_reference,
        )

    # -----------------------------------------------------------------------
    # Refunds and disputes
    # -----------------------------------------------------------------------

    async def record_refund(
        self,
        source_transaction_id: uuid.UUID,
        amount: int,
        gateway_reference: str | None = None,
        description: str | None = None,
    ) -> WorkflowResult:
        result = await self._run(
            refund_service.record_refund,
            source_transaction_id,
            amount,
            gateway_reference,
            description,
        )
        await self._notify_booking(result)
        return result

    async def record_dispute_hold(
        self,
        source_transaction_id: uuid.UUID,
        amount: int,
        gateway_reference: str | None = None,
        description: str | None = None,
    ) -> WorkflowResult:
        return await self._run(
            dispute_service.record_dispute_hold,
            source_transaction_id,
            amount,
            gateway_reference,
            description,
        )

    async def record_dispute_resolution(
        self,
        source_transaction_id: uuid.UUID,
        outcome: DisputeOutcome,
    ) -> WorkflowResult:
        result = await self._run(
            dispute_service.record_dispute_resolution,
            source_transaction_id,
            outcome,
        )
        await self._notify_booking(result)
        return result

    # -----------------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------------

    async def reconcile(self, user_id: uuid.UUID | None = None) -> list[Mismatch]:
        return await self._run(reconciliation_service.reconcile, user_id)

    # -----------------------------------------------------------------------
    # Payment methods
    # -----------------------------------------------------------------------

    async def list_payment_methods(self, user_id: uuid.UUID) -> list[PaymentMethod]:
        return await self._run(payment_method_service.list_payment_methods, user_id)

    async def add_payment_method(
        self,
        user_id: uuid.UUID,
        method_type: PaymentMethodType,
        last4: str,
        brand: str | None = None,
        bank_name: str | None = None,
        gateway_token: str | None = None,
        is_default: bool = False,
        is_verified: bool = False,
    ) -> PaymentMethod:
        return await self._run(
            payment_method_service.add_payment_method,
            user_id,
            method_type,
            last4,
            brand=brand,
            bank_name=bank_name,
            gateway_token=gateway_token,
            is_default=is_default,
            is_verified=is_verified,
        )

    async def set_default_payment_method(
        self, user_id: uuid.UUID, payment_method_id: uuid.UUID
    ) -> PaymentMethod:
        return await self._run(
            payment_method_service.set_default_payment_method, user_id, payment_method_id
        )

    async def delete_payment_method(
        self, user_id: uuid.UUID, payment_method_id: uuid.UUID
    ) -> None:
        await self._run(
            payment_method_service.delete_payment_method, user_id, payment_method_id
        )


def build_engine(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> LedgerEngine:
    """Build a LedgerEngine wired to the configured database and collaborators."""
    return LedgerEngine(
        session_factory=session_factory or AsyncSessionLocal,
        booking_client=booking_client_from_settings(),
        payout_gateway=payout_gateway_from_settings(),
        max_retries=settings.BALANCE_UPDATE_MAX_RETRIES,
        max_withdrawal_amount=settings.MAX_WITHDRAWAL_AMOUNT,
        max_daily_withdrawal=settings.MAX_DAILY_WITHDRAWAL,
    )
