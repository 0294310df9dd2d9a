"""
Settlement service — crediting a user when a customer's payment clears.

The payment gateway tells us a booking's charge succeeded (or failed).
Gateways redeliver notifications, so the gateway reference is the
idempotency key: a second success for the same reference returns the
first transaction and credits nothing.

The idempotency check runs after lock_balance(), so two deliveries racing
each other are serialized on the payee's balance row and the second one
always sees the first one's transaction.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from payledger.models.transaction import TransactionStatus, TransactionType
from payledger.services import balance_service, transaction_service
from payledger.services.transaction_service import WorkflowResult

logger = logging.getLogger(__name__)


def _require_reference(gateway_reference: str) -> str:
    if not gateway_reference or not gateway_reference.strip():
        raise ValueError("gateway_reference is required to record a payment")
    return gateway_reference


async def record_payment(
    db: AsyncSession,
    user_id: uuid.UUID,
    booking_id: uuid.UUID,
    amount: int,
    gateway_reference: str,
) -> WorkflowResult:
    """
    Credit a settled booking payment to the payee.

    Atomically: available += amount, total_earnings += amount, and a
    `completed` payment row is inserted.

    Returns:
        WorkflowResult with created=False if this reference was already
        credited. booking_event is "paid" either way, so a booking update
        lost after an earlier commit is re-sent on redelivery.

    Raises:
        InvalidAmountError: If amount isn't a positive integer.
    """
    transaction_service.validate_amount(amount)
    _require_reference(gateway_reference)

    await balance_service.lock_balance(db, user_id)

    existing = await transaction_service.find_by_reference(
        db,
        gateway_reference,
        TransactionType.PAYMENT,
        exclude_status=TransactionStatus.FAILED,
    )
    if existing is not None:
        if existing.amount != amount:
            logger.warning(
                "Payment %s replayed with amount %s, originally %s",
                gateway_reference,
                amount,
                existing.amount,
            )
        else:
            logger.info("Payment %s already recorded as %s", gateway_reference, existing.id)
        return WorkflowResult(existing, created=False, booking_event="paid")

    await balance_service.apply_delta(
        db, user_id, available=amount, total_earnings=amount
    )

    txn = await transaction_service.record_transaction(
        db,
        user_id=user_id,
        txn_type=TransactionType.PAYMENT,
        amount=amount,
        status=TransactionStatus.COMPLETED,
        booking_id=booking_id,
        gateway_reference=gateway_reference,
    )

    logger.info(
        "Payment %s of %s for booking %s credited to user %s",
        gateway_reference,
        amount,
        booking_id,
        user_id,
    )
    return WorkflowResult(txn, booking_event="paid")


async def record_payment_failure(
    db: AsyncSession,
    user_id: uuid.UUID,
    booking_id: uuid.UUID,
    amount: int,
    gateway_reference: str,
) -> WorkflowResult:
    """
    Record a failed booking payment. No balance field changes.

    Any earlier payment row for the same reference wins: a repeated
    failure notice is a replay, and a failure arriving after a success
    is stale and ignored.
    """
    transaction_service.validate_amount(amount)
    _require_reference(gateway_reference)

    await balance_service.lock_balance(db, user_id)

    existing = await transaction_service.find_by_reference(
        db, gateway_reference, TransactionType.PAYMENT
    )
    if existing is not None:
        if existing.status != TransactionStatus.FAILED:
            logger.warning(
                "Ignoring failure notice for %s: payment already %s",
                gateway_reference,
                existing.status.value,
            )
        return WorkflowResult(existing, created=False)

    txn = await transaction_service.record_transaction(
        db,
        user_id=user_id,
        txn_type=TransactionType.PAYMENT,
        amount=amount,
        status=TransactionStatus.FAILED,
        booking_id=booking_id,
        gateway_reference=gateway_reference,
    )

    logger.info("Payment %s for booking %s failed", gateway_reference, booking_id)
    return WorkflowResult(txn)
