"""
Refund service — giving a customer back all or part of a payment.

A refund reverses earnings that were already credited, so it takes the
money out of the payee's `available` balance and out of `total_earnings`.
If the payee has already withdrawn it, the refund is rejected with
InsufficientFundsError; the balance is never clamped at zero.

Partial refunds are allowed. The payment only moves to `refunded` once the
refunds against it add up to its full amount; until then it stays
`completed` and can take further refunds (or a dispute).
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from payledger.exceptions import AlreadyResolvedError, NotRefundableError
from payledger.models.transaction import Transaction, TransactionStatus, TransactionType
from payledger.services import balance_service, transaction_service
from payledger.services.transaction_service import WorkflowResult

logger = logging.getLogger(__name__)


async def load_source_payment(db: AsyncSession, source_transaction_id: uuid.UUID) -> Transaction:
    """
    Load the payment a refund or dispute acts on.

    Raises:
        TransactionNotFoundError: If no transaction has that id.
        NotRefundableError: If it isn't a payment.
    """
    source = await transaction_service.get_transaction(db, source_transaction_id)
    if source.type != TransactionType.PAYMENT:
        raise NotRefundableError(
            f"Transaction {source.id} is a {source.type.value}, not a payment"
        )
    return source


async def remaining_refundable(db: AsyncSession, source: Transaction) -> int:
    """Payment amount minus the refunds already completed against it."""
    return source.amount - await transaction_service.refunded_amount(db, source.id)


async def record_refund(
    db: AsyncSession,
    source_transaction_id: uuid.UUID,
    amount: int,
    gateway_reference: str | None = None,
    description: str | None = None,
) -> WorkflowResult:
    """
    Refund ``amount`` of a completed payment.

    Args:
        db: Database session (inside the engine's unit of work).
        source_transaction_id: The payment being refunded.
        amount: Positive integer, at most the remaining refundable amount.
        gateway_reference: The gateway's refund id; makes redelivery a replay.
        description: Optional memo.

    Returns:
        WorkflowResult for the refund row. booking_event is "refunded" once
        the payment is fully refunded.

    Raises:
        InvalidAmountError: If amount isn't a positive integer.
        TransactionNotFoundError: If the source payment doesn't exist.
        NotRefundableError: If the source isn't a completed payment, or the
                            amount is more than what's left to refund.
        AlreadyResolvedError: If gateway_reference is already a refund of
                              another payment.
        InsufficientFundsError: If the payee's available balance is short.
    """
    transaction_service.validate_amount(amount)

    source = await load_source_payment(db, source_transaction_id)
    await balance_service.lock_balance(db, source.user_id)
    await db.refresh(source)

    if gateway_reference:
        existing = await transaction_service.find_by_reference(
            db, gateway_reference, TransactionType.REFUND
        )
        if existing is not None:
            if existing.source_transaction_id != source.id:
                raise AlreadyResolvedError(
                    f"Refund reference {gateway_reference} already belongs to payment "
                    f"{existing.source_transaction_id}"
                )
            logger.info("Refund %s already recorded as %s", gateway_reference, existing.id)
            event = "refunded" if source.status == TransactionStatus.REFUNDED else None
            return WorkflowResult(existing, created=False, booking_event=event)

    if source.status != TransactionStatus.COMPLETED:
        raise NotRefundableError(
            f"Payment {source.id} is {source.status.value} and can't be refunded"
        )

    remaining = await remaining_refundable(db, source)
    if amount > remaining:
        raise NotRefundableError(
            f"Refund of {amount} exceeds the {remaining} left to refund on payment {source.id}"
        )

    await balance_service.apply_delta(
        db, source.user_id, available=-amount, total_earnings=-amount
    )

    refund = await transaction_service.record_transaction(
        db,
        user_id=source.user_id,
        txn_type=TransactionType.REFUND,
        amount=amount,
        status=TransactionStatus.COMPLETED,
        booking_id=source.booking_id,
        gateway_reference=gateway_reference,
        source_transaction_id=source.id,
        description=description,
    )

    booking_event = None
    if amount == remaining:
        source.transition(TransactionStatus.REFUNDED)
        await db.flush()
        booking_event = "refunded"

    logger.info(
        "Refund %s of %s against payment %s (%s left)",
        refund.id,
        amount,
        source.id,
        remaining - amount,
    )
    return WorkflowResult(refund, booking_event=booking_event)
