"""
Transaction service — reads and inserts against the transaction store.

Workflows create their records through record_transaction() so every row
is flushed (and gets its id) inside the caller's unit of work. Everything
else here is a query: listing a user's history, looking up a row by id or
gateway reference, and the aggregates the workflows validate against
(cumulative refunds, today's withdrawals).
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payledger.exceptions import InvalidAmountError, TransactionNotFoundError
from payledger.models.transaction import (
    DisputeOutcome,
    Transaction,
    TransactionStatus,
    TransactionType,
)


@dataclass
class WorkflowResult:
    """
    What a workflow step hands back to the engine.

    created is False when the step was an idempotent replay and nothing
    was written. booking_event ("paid" or "refunded") tells the engine
    which status to report to the booking system after commit.
    """

    transaction: Transaction
    created: bool = True
    booking_event: str | None = None


def validate_amount(amount) -> int:
    """
    Return ``amount`` if it is a positive integer.

    Raises:
        InvalidAmountError: For zero, negative, fractional or non-numeric
                            values (booleans included).
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


async def record_transaction(
    db: AsyncSession,
    user_id: uuid.UUID,
    txn_type: TransactionType,
    amount: int,
    status: TransactionStatus,
    booking_id: uuid.UUID | None = None,
    payment_method_id: uuid.UUID | None = None,
    gateway_reference: str | None = None,
    source_transaction_id: uuid.UUID | None = None,
    description: str | None = None,
    dispute_outcome: DisputeOutcome | None = None,
    shortfall: int = 0,
) -> Transaction:
    """Insert a transaction row and flush it so its id is available."""
    txn = Transaction(
        user_id=user_id,
        type=txn_type,
        amount=amount,
        status=status,
        booking_id=booking_id,
        payment_method_id=payment_method_id,
        gateway_reference=gateway_reference,
        source_transaction_id=source_transaction_id,
        description=description,
        dispute_outcome=dispute_outcome,
        shortfall=shortfall,
    )
    db.add(txn)
    await db.flush()
    return txn


async def get_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    type_filter: TransactionType | None = None,
    status_filter: TransactionStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """
    List a user's transactions, newest first, with optional filters.

    Ties on created_at are broken by id so pagination is stable.
    """
    query = (
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )

    if type_filter:
        query = query.where(Transaction.type == type_filter)
    if status_filter:
        query = query.where(Transaction.status == status_filter)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_transaction(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> Transaction:
    """
    Get a single transaction by id.

    When user_id is given, a transaction owned by someone else is reported
    as not found rather than forbidden, so ids can't be probed.

    Raises:
        TransactionNotFoundError: If no matching row exists.
    """
    query = select(Transaction).where(Transaction.id == transaction_id)
    if user_id is not None:
        query = query.where(Transaction.user_id == user_id)

    result = await db.execute(query)
    txn = result.scalar_one_or_none()

    if txn is None:
        raise TransactionNotFoundError(transaction_id)

    return txn


async def find_by_reference(
    db: AsyncSession,
    gateway_reference: str,
    txn_type: TransactionType,
    exclude_status: TransactionStatus | None = None,
) -> Transaction | None:
    """Return the oldest transaction of ``txn_type`` carrying ``gateway_reference``."""
    query = (
        select(Transaction)
        .where(Transaction.gateway_reference == gateway_reference)
        .where(Transaction.type == txn_type)
        .order_by(Transaction.created_at)
        .limit(1)
    )
    if exclude_status is not None:
        query = query.where(Transaction.status != exclude_status)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def find_children(
    db: AsyncSession,
    source_transaction_id: uuid.UUID,
    txn_type: TransactionType,
) -> list[Transaction]:
    """Rows of ``txn_type`` that point at a source payment, oldest first."""
    result = await db.execute(
        select(Transaction)
        .where(Transaction.source_transaction_id == source_transaction_id)
        .where(Transaction.type == txn_type)
        .order_by(Transaction.created_at, Transaction.id)
    )
    return list(result.scalars().all())


async def refunded_amount(db: AsyncSession, source_transaction_id: uuid.UUID) -> int:
    """Cumulative completed refunds against a payment."""
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.source_transaction_id == source_transaction_id)
        .where(Transaction.type == TransactionType.REFUND)
        .where(Transaction.status == TransactionStatus.COMPLETED)
    )
    return result.scalar()


async def withdrawn_since(
    db: AsyncSession,
    user_id: uuid.UUID,
    since: datetime,
) -> int:
    """Sum of non-failed withdrawals requested by the user since ``since``."""
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.user_id == user_id)
        .where(Transaction.type == TransactionType.WITHDRAWAL)
        .where(Transaction.status != TransactionStatus.FAILED)
        .where(Transaction.created_at >= since)
    )
    return result.scalar()


def start_of_day(now: datetime | None = None) -> datetime:
    """Midnight UTC of the current (or given) day."""
    now = now or datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)
