"""
Balance service — the only code that writes to the balances table.

  - get_balance(): read a user's balance, creating a zeroed row on first use
  - lock_balance(): serialize a workflow against concurrent writers
  - apply_delta(): the single mutation primitive used by every workflow

Atomicity:
  None of these functions commit. They run inside the unit of work the
  LedgerEngine opened, next to the Transaction insert or status change
  the workflow pairs with the delta. Both commit together or not at all.

Locking:
  apply_delta() reads the row with_for_update() (a row lock on
  PostgreSQL, a no-op on SQLite) and the UPDATE is guarded by the
  Balance.version counter. A writer that lost the race gets StaleDataError
  at flush time; the engine rolls back and replays the whole operation.

Validation:
  The non-negative rule is the only business check here. Every other
  rule (amount > 0, refundable amount, withdrawal limits, ...) belongs to
  the workflow calling apply_delta().
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payledger.exceptions import InsufficientFundsError
from payledger.ledger_effects import BALANCE_FIELDS
from payledger.models.balance import Balance

logger = logging.getLogger(__name__)


async def get_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    for_update: bool = False,
) -> Balance:
    """
    Return the user's Balance, creating an all-zero row if none exists.

    Never fails for a well-formed user id. If two units of work create the
    same row concurrently, the loser's flush raises IntegrityError and the
    engine retries, at which point the row exists.
    """
    query = select(Balance).where(Balance.user_id == user_id)
    if for_update:
        # Refresh an already-loaded row with the values read under the lock
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(query)
    balance = result.scalar_one_or_none()

    if balance is None:
        balance = Balance(
            user_id=user_id,
            available=0,
            pending=0,
            disputed=0,
            total_earnings=0,
        )
        db.add(balance)
        await db.flush()
        logger.debug("Created balance for user %s", user_id)

    return balance


async def lock_balance(db: AsyncSession, user_id: uuid.UUID) -> Balance:
    """
    Claim the user's balance row for the rest of the unit of work.

    Workflows call this before their idempotency and state checks. The
    write bumps Balance.version, so a concurrent unit of work that read
    the same row fails at flush and is replayed after this one commits,
    by which point it sees this one's transaction. Money fields are not
    touched.
    """
    balance = await get_balance(db, user_id, for_update=True)
    balance.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return balance


async def apply_delta(
    db: AsyncSession,
    user_id: uuid.UUID,
    **deltas: int,
) -> Balance:
    """
    Apply signed deltas to one or more balance fields at once.

    Example:
        # reserve 600 for a withdrawal
        await apply_delta(db, user_id, available=-600, pending=600)

    All deltas are checked before any is applied, so a rejected call
    leaves the row untouched.

    Args:
        db: Database session (inside the engine's unit of work).
        user_id: Owner of the balance.
        **deltas: field name -> signed integer change. Valid fields are
                  available, pending, disputed, total_earnings.

    Returns:
        The updated Balance.

    Raises:
        InsufficientFundsError: If any field would drop below zero.
        ValueError: If an unknown field name is passed.
    """
    unknown = set(deltas) - set(BALANCE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown balance field(s): {sorted(unknown)}")

    balance = await get_balance(db, user_id, for_update=True)

    for field, delta in deltas.items():
        current = getattr(balance, field)
        if current + delta < 0:
            raise InsufficientFundsError(
                user_id=user_id,
                field=field,
                requested=-delta,
                available=current,
            )

    for field, delta in deltas.items():
        if delta:
            setattr(balance, field, getattr(balance, field) + delta)

    await db.flush()
    return balance
