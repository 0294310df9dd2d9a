"""
Dispute service — chargebacks opened and closed by the payment gateway.

When a customer disputes a charge, the money is frozen until the gateway
decides:

  hold       available -> disputed               payment: completed -> disputed
  won        disputed  -> available               payment: disputed  -> completed
  lost       disputed  removed, total_earnings -= amount
                                                  payment: disputed  -> refunded

Shortfall:
  If the payee has already withdrawn part of the money, only what is left
  in `available` can be frozen. The hold still goes through; the missing
  part is stored on the hold as `shortfall` and logged at CRITICAL so
  someone can chase it. `Transaction.held` (amount - shortfall) is what
  actually sits in `disputed`, and it is that figure a won dispute hands
  back. A lost dispute still takes the full disputed amount out of
  total_earnings.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from payledger.exceptions import AlreadyResolvedError, NotRefundableError
from payledger.models.transaction import (
    DisputeOutcome,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from payledger.services import balance_service, transaction_service
from payledger.services.refund_service import load_source_payment, remaining_refundable
from payledger.services.transaction_service import WorkflowResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Hold
# ---------------------------------------------------------------------------

async def record_dispute_hold(
    db: AsyncSession,
    source_transaction_id: uuid.UUID,
    amount: int,
    gateway_reference: str | None = None,
    description: str | None = None,
) -> WorkflowResult:
    """
    Freeze ``amount`` of a completed payment while a chargeback is open.

    Raises:
        InvalidAmountError: If amount isn't a positive integer.
        TransactionNotFoundError: If the payment doesn't exist.
        NotRefundableError: If the source isn't a payment, or amount is more
                            than what's left unrefunded on it.
        AlreadyResolvedError: If the payment isn't `completed` (already
                              disputed under another reference, refunded,
                              or never settled).
                              Also if gateway_reference already holds
                              another payment.
    """
    transaction_service.validate_amount(amount)

    source = await load_source_payment(db, source_transaction_id)
    balance = await balance_service.lock_balance(db, source.user_id)
    await db.refresh(source)

    if gateway_reference:
        existing = await transaction_service.find_by_reference(
            db, gateway_reference, TransactionType.DISPUTE_HOLD
        )
        if existing is not None:
            if existing.source_transaction_id != source.id:
                raise AlreadyResolvedError(
                    f"Dispute reference {gateway_reference} already belongs to payment "
                    f"{existing.source_transaction_id}"
                )
            logger.info("Dispute %s already on hold as %s", gateway_reference, existing.id)
            return WorkflowResult(existing, created=False)

    if source.status != TransactionStatus.COMPLETED:
        raise AlreadyResolvedError(
            f"Payment {source.id} is {source.status.value}; a dispute can only "
            f"be opened on a completed payment"
        )

    remaining = await remaining_refundable(db, source)
    if amount > remaining:
        raise NotRefundableError(
            f"Dispute of {amount} exceeds the {remaining} left unrefunded on payment {source.id}"
        )

    held = min(amount, balance.available)
    shortfall = amount - held

    if held:
        await balance_service.apply_delta(
            db, source.user_id, available=-held, disputed=held
        )

    hold = await transaction_service.record_transaction(
        db,
        user_id=source.user_id,
        txn_type=TransactionType.DISPUTE_HOLD,
        amount=amount,
        status=TransactionStatus.DISPUTED,
        booking_id=source.booking_id,
        gateway_reference=gateway_reference,
        source_transaction_id=source.id,
        description=description,
        shortfall=shortfall,
    )

    source.transition(TransactionStatus.DISPUTED)
    await db.flush()

    if shortfall:
        logger.critical(
            "Dispute hold %s on payment %s is short by %s: user %s had only %s available",
            hold.id,
            source.id,
            shortfall,
            source.user_id,
            held,
        )
    logger.info("Dispute hold %s froze %s of payment %s", hold.id, held, source.id)
    return WorkflowResult(hold)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

async def _latest(
    db: AsyncSession, source_id: uuid.UUID, txn_type: TransactionType
) -> Transaction | None:
    children = await transaction_service.find_children(db, source_id, txn_type)
    return children[-1] if children else None


async def record_dispute_resolution(
    db: AsyncSession,
    source_transaction_id: uuid.UUID,
    outcome: DisputeOutcome,
) -> WorkflowResult:
    """
    Close the open dispute on a payment.

    Returns:
        WorkflowResult for the dispute_resolution row. booking_event is
        "refunded" when the dispute was lost.

    Raises:
        TransactionNotFoundError: If the payment doesn't exist.
        AlreadyResolvedError: If there is no open hold, or the dispute was
                              already closed with the other outcome.
    """
    outcome = DisputeOutcome(outcome)

    source = await load_source_payment(db, source_transaction_id)
    await balance_service.lock_balance(db, source.user_id)
    await db.refresh(source)

    hold = await _latest(db, source.id, TransactionType.DISPUTE_HOLD)

    if hold is None or hold.status != TransactionStatus.DISPUTED:
        resolution = await _latest(db, source.id, TransactionType.DISPUTE_RESOLUTION)
        if resolution is not None and hold is not None and resolution.dispute_outcome == outcome:
            logger.warning(
                "Dispute on payment %s already closed as %s; ignoring replay",
                source.id,
                outcome.value,
            )
            event = "refunded" if outcome == DisputeOutcome.LOST else None
            return WorkflowResult(resolution, created=False, booking_event=event)
        raise AlreadyResolvedError(f"Payment {source.id} has no open dispute")

    held = hold.held

    if outcome == DisputeOutcome.WON:
        if held:
            await balance_service.apply_delta(
                db, source.user_id, disputed=-held, available=held
            )
        status = TransactionStatus.COMPLETED
    else:
        await balance_service.apply_delta(
            db, source.user_id, disputed=-held, total_earnings=-hold.amount
        )
        status = TransactionStatus.REFUNDED

    resolution = await transaction_service.record_transaction(
        db,
        user_id=source.user_id,
        txn_type=TransactionType.DISPUTE_RESOLUTION,
        amount=hold.amount,
        status=status,
        booking_id=source.booking_id,
        source_transaction_id=source.id,
        dispute_outcome=outcome,
        shortfall=hold.shortfall,
    )

    hold.transition(status)
    source.transition(status)
    await db.flush()

    logger.info(
        "Dispute on payment %s %s: %s released from disputed",
        source.id,
        outcome.value,
        held,
    )
    return WorkflowResult(
        resolution,
        booking_event="refunded" if outcome == DisputeOutcome.LOST else None,
    )
