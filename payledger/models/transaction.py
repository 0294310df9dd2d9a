"""
Transaction model — the immutable record of every ledger event.

Every change to a Balance is paired with exactly one Transaction insert or
one Transaction status transition, committed in the same database
transaction. The history is append-mostly: rows are never deleted, and
once a row reaches a terminal status it never changes again.

Key fields:
  - type: what happened (payment, withdrawal, refund, dispute_hold,
    dispute_resolution)
  - amount: Always positive, in minor units. The effect on the balance is
    implied by type + status (see payledger.ledger_effects)
  - status: where the event is in its lifecycle
  - gateway_reference: the payment gateway's id for this event; the
    idempotency key that makes webhook redelivery safe
  - source_transaction_id: for refunds, holds and resolutions, the
    payment being acted upon
  - shortfall: for dispute holds/resolutions, the part of the disputed
    amount that could not be frozen because `available` was too low

Status state machine (ALLOWED_TRANSITIONS):

    pending ──► completed ──► disputed ──► completed
       │            │             │
       ▼            ▼             ▼
     failed      refunded      refunded

  failed and refunded are terminal. `disputed` is the only status that
  can lead back to `completed`, which is how a won chargeback restores a
  payment.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from payledger.database import Base
from payledger.exceptions import InvalidTransitionError


class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    DISPUTE_HOLD = "dispute_hold"
    DISPUTE_RESOLUTION = "dispute_resolution"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class DisputeOutcome(str, enum.Enum):
    WON = "won"
    LOST = "lost"


ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED}
    ),
    TransactionStatus.COMPLETED: frozenset(
        {TransactionStatus.DISPUTED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.DISPUTED: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        # Always positive; the type implies the direction
        CheckConstraint("amount > 0", name="ck_transactions_positive_amount"),
        CheckConstraint("shortfall >= 0", name="ck_transactions_non_negative_shortfall"),
        CheckConstraint("shortfall <= amount", name="ck_transactions_shortfall_within_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )

    # NULL for withdrawals
    booking_id: Mapped[uuid.UUID | None] = mapped_column(
        nullable=True,
        index=True,
    )

    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    # Required for withdrawals, NULL otherwise
    payment_method_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("payment_methods.id"),
        nullable=True,
        index=True,
    )

    # Set once the gateway acknowledges the event
    gateway_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    source_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("transactions.id"),
        nullable=True,
        index=True,
    )

    # Only set on dispute_resolution rows
    dispute_outcome: Mapped[DisputeOutcome | None] = mapped_column(
        Enum(DisputeOutcome),
        nullable=True,
    )

    shortfall: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Indexed for newest-first listing and the daily withdrawal limit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def held(self) -> int:
        """Amount actually frozen by a dispute hold (amount minus shortfall)."""
        return self.amount - self.shortfall

    def transition(self, target: TransactionStatus) -> None:
        """
        Move this transaction to ``target`` status.

        Raises:
            InvalidTransitionError: If the move isn't in ALLOWED_TRANSITIONS.
        """
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target
