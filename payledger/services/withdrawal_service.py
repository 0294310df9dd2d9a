"""
Withdrawal service — moving a user's money out to their payment method.

A withdrawal has two phases, so no request ever waits on a settlement
that can take days:

  1. request_withdrawal() — validate, then in one unit of work move the
     amount from `available` to `pending` and insert a `pending`
     withdrawal. The engine then submits it to the payout rail and stores
     the gateway's reference with attach_gateway_reference().

  2. complete_withdrawal() — the gateway later reports the outcome:
       success: pending -= amount                       -> completed
       failure: pending -= amount, available += amount  -> failed
     The failure branch is the only path that hands reserved money back
     to `available`.

Validation order (all before any mutation):
  amount > 0, payment method usable, per-request limit, daily limit,
  amount <= available.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from payledger.exceptions import AlreadyResolvedError, TransactionNotFoundError, WithdrawalLimitExceededError
from payledger.models.payment_method import PaymentMethod
from payledger.models.transaction import Transaction, TransactionStatus, TransactionType
from payledger.services import balance_service, payment_method_service, transaction_service

logger = logging.getLogger(__name__)


async def request_withdrawal(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    payment_method_id: uuid.UUID,
    max_single: int,
    max_daily: int,
    description: str | None = None,
) -> tuple[Transaction, PaymentMethod]:
    """
    Reserve funds for a withdrawal and record it as pending.

    Args:
        db: Database session (inside the engine's unit of work).
        user_id: The user withdrawing.
        amount: Positive integer in minor units.
        payment_method_id: Destination; must be the user's verified method.
        max_single: Largest amount one request may withdraw.
        max_daily: Cap on non-failed withdrawals per UTC day, this one included.
        description: Optional memo.

    Returns:
        The pending withdrawal and the payment method it pays out to.

    Raises:
        InvalidAmountError: If amount isn't a positive integer.
        PaymentMethodNotFoundError / PaymentMethodNotUsableError
        WithdrawalLimitExceededError: If either limit would be broken.
        InsufficientFundsError: If amount > available.
    """
    transaction_service.validate_amount(amount)

    # Serializes against payment method writes for this user
    await balance_service.lock_balance(db, user_id)

    method = await payment_method_service.get_payout_method(db, user_id, payment_method_id)

    if amount > max_single:
        raise WithdrawalLimitExceededError(
            f"Withdrawal of {amount} exceeds the per-request limit of {max_single}",
            limit=max_single,
        )

    today = await transaction_service.withdrawn_since(
        db, user_id, transaction_service.start_of_day()
    )
    if today + amount > max_daily:
        raise WithdrawalLimitExceededError(
            f"Withdrawal of {amount} would exceed the daily limit of {max_daily} "
            f"({today} already withdrawn today)",
            limit=max_daily,
        )

    await balance_service.apply_delta(db, user_id, available=-amount, pending=amount)

    txn = await transaction_service.record_transaction(
        db,
        user_id=user_id,
        txn_type=TransactionType.WITHDRAWAL,
        amount=amount,
        status=TransactionStatus.PENDING,
        payment_method_id=method.id,
        description=description,
    )

    logger.info("Withdrawal %s of %s reserved for user %s", txn.id, amount, user_id)
    return txn, method


async def get_withdrawal(
    db: AsyncSession,
    transaction_id: uuid.UUID | None = None,
    gateway_reference: str | None = None,
) -> Transaction:
    """
    Find a withdrawal by id or by the gateway's reference.

    Raises:
        TransactionNotFoundError: If nothing matches, or the match isn't a withdrawal.
    """
    if transaction_id is not None:
        txn = await transaction_service.get_transaction(db, transaction_id)
    elif gateway_reference:
        txn = await transaction_service.find_by_reference(
            db, gateway_reference, TransactionType.WITHDRAWAL
        )
    else:
        raise ValueError("transaction_id or gateway_reference is required")

    if txn is None or txn.type != TransactionType.WITHDRAWAL:
        raise TransactionNotFoundError(transaction_id or gateway_reference)
    return txn


async def load_for_submission(
    db: AsyncSession,
    transaction_id: uuid.UUID,
) -> tuple[Transaction, PaymentMethod | None]:
    """The withdrawal plus its payment method, for (re)submitting a payout."""
    txn = await get_withdrawal(db, transaction_id=transaction_id)
    method = await db.get(PaymentMethod, txn.payment_method_id)
    return txn, method


async def attach_gateway_reference(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    gateway_reference: str,
) -> Transaction:
    """Store the payout rail's reference once; later calls leave it alone."""
    txn = await get_withdrawal(db, transaction_id=transaction_id)
    if txn.gateway_reference is None:
        txn.gateway_reference = gateway_reference
        await db.flush()
        logger.info("Withdrawal %s acknowledged as %s", txn.id, gateway_reference)
    return txn


async def complete_withdrawal(
    db: AsyncSession,
    succeeded: bool,
    transaction_id: uuid.UUID | None = None,
    gateway_reference: str | None = None,
) -> Transaction:
    """
    Apply the payout rail's final word on a withdrawal.

    Replaying the same outcome returns the transaction unchanged.

    Raises:
        TransactionNotFoundError: If the withdrawal can't be found.
        AlreadyResolvedError: If it already reached the other terminal status.
    """
    txn = await get_withdrawal(db, transaction_id, gateway_reference)
    await balance_service.lock_balance(db, txn.user_id)
    await db.refresh(txn)

    target = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED

    if txn.status == target:
        logger.warning("Withdrawal %s already %s; ignoring replay", txn.id, target.value)
        return txn
    if txn.status != TransactionStatus.PENDING:
        raise AlreadyResolvedError(
            f"Withdrawal {txn.id} is already {txn.status.value}"
        )

    if succeeded:
        await balance_service.apply_delta(db, txn.user_id, pending=-txn.amount)
    else:
        await balance_service.apply_delta(
            db, txn.user_id, pending=-txn.amount, available=txn.amount
        )

    txn.transition(target)
    await db.flush()

    logger.info("Withdrawal %s %s", txn.id, target.value)
    return txn
