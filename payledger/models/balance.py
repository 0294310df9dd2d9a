"""
Balance model — the per-user money summary.

Each user has at most one Balance row, created lazily (all zeros) the first
time the ledger touches that user. The four money columns are integer
minor units (cents):

  - available:       funds the user may withdraw now
  - pending:         funds reserved for an in-flight withdrawal
  - disputed:        funds frozen by an open chargeback
  - total_earnings:  lifetime credited amount, reduced only by refunds
                     and lost disputes

The row is a cache of the transaction history: after every committed
workflow step, each field equals the sum of the effects of the user's
transactions (see payledger.ledger_effects). The reconciliation check
verifies exactly that.

Concurrency:
  `version` is mapped as SQLAlchemy's version_id_col. Every UPDATE carries
  `WHERE version = <value read>`, so two writers that read the same row
  cannot both commit; the loser gets StaleDataError and the engine retries
  its whole unit of work against fresh data.

  CHECK constraints repeat the non-negative rule at the database level.
  The application checks before every delta; the constraints are the
  final safety net.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from payledger.database import Base


class Balance(Base):
    __tablename__ = "balances"

    __table_args__ = (
        CheckConstraint("available >= 0", name="ck_balances_available_non_negative"),
        CheckConstraint("pending >= 0", name="ck_balances_pending_non_negative"),
        CheckConstraint("disputed >= 0", name="ck_balances_disputed_non_negative"),
        CheckConstraint(
            "total_earnings >= 0", name="ck_balances_total_earnings_non_negative"
        ),
    )

    # One balance per user
    user_id: Mapped[uuid.UUID] = mapped_column(primary_key=True)

    available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    disputed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Optimistic concurrency counter (see module docstring)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total(self) -> int:
        """available + pending + disputed."""
        return self.available + self.pending + self.disputed
