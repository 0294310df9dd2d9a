"""
Reconciliation service — audits stored balances against the transaction log.

For each user, the balance fields must equal the sum of
ledger_effects.effects_of() over their transactions. Any difference is
reported as a Mismatch and logged as a warning. Nothing is corrected here;
drift means a bug or a manual database edit and needs a human.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payledger.ledger_effects import BALANCE_FIELDS, Effects, sum_effects
from payledger.models.balance import Balance
from payledger.models.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class Mismatch:
    user_id: uuid.UUID
    field: str
    expected: int
    actual: int


async def _user_ids(db: AsyncSession) -> list[uuid.UUID]:
    balance_users = await db.execute(select(Balance.user_id))
    transaction_users = await db.execute(select(Transaction.user_id).distinct())
    return sorted(set(balance_users.scalars()) | set(transaction_users.scalars()), key=str)


async def reconcile_user(db: AsyncSession, user_id: uuid.UUID) -> list[Mismatch]:
    """Compare one user's balance row with their transaction history."""
    result = await db.execute(select(Transaction).where(Transaction.user_id == user_id))
    expected = sum_effects(result.scalars().all())

    balance = await db.get(Balance, user_id)
    actual = (
        Effects(**{f: getattr(balance, f) for f in BALANCE_FIELDS})
        if balance is not None
        else Effects()
    )

    mismatches = []
    for field in BALANCE_FIELDS:
        want, got = getattr(expected, field), getattr(actual, field)
        if want != got:
            logger.warning(
                "Balance drift for user %s: %s is %s, transactions say %s",
                user_id,
                field,
                got,
                want,
            )
            mismatches.append(Mismatch(user_id, field, expected=want, actual=got))
    return mismatches


async def reconcile(db: AsyncSession, user_id: uuid.UUID | None = None) -> list[Mismatch]:
    """
    Audit one user, or every user with a balance row or a transaction.

    Returns:
        All mismatches found; an empty list means the ledger is consistent.
    """
    user_ids = [user_id] if user_id is not None else await _user_ids(db)

    mismatches = []
    for uid in user_ids:
        mismatches.extend(await reconcile_user(db, uid))

    logger.info(
        "Reconciled %s user(s): %s mismatch(es)", len(user_ids), len(mismatches)
    )
    return mismatches
