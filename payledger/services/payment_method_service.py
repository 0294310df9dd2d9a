"""
Payment method service — the payout destinations a user registers.

The ledger reads payment methods (withdrawals must target one) but the
only rule it enforces on them is "at most one default per user". Setting
a new default clears the flag on every other method of that user in the
same unit of work.

Deletion is soft (is_active = False) and is refused while a pending
withdrawal still points at the method.

Every write takes the user's balance lock first, the same lock a
withdrawal holds while it reads its destination. Writes for one user
therefore run one at a time.
"""

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payledger.exceptions import (
    PaymentMethodInUseError,
    PaymentMethodNotFoundError,
    PaymentMethodNotUsableError,
)
from payledger.models.payment_method import (
    PAYOUT_METHOD_TYPES,
    PaymentMethod,
    PaymentMethodType,
)
from payledger.models.transaction import Transaction, TransactionStatus, TransactionType
from payledger.security import encrypt_value
from payledger.services import balance_service


async def _clear_default(db: AsyncSession, user_id: uuid.UUID) -> None:
    await db.execute(
        update(PaymentMethod)
        .where(PaymentMethod.user_id == user_id)
        .where(PaymentMethod.is_default.is_(True))
        .values(is_default=False)
        .execution_options(synchronize_session="fetch")
    )


async def add_payment_method(
    db: AsyncSession,
    user_id: uuid.UUID,
    method_type: PaymentMethodType,
    last4: str,
    brand: str | None = None,
    bank_name: str | None = None,
    gateway_token: str | None = None,
    is_default: bool = False,
    is_verified: bool = False,
) -> PaymentMethod:
    """
    Register a payment method for a user.

    The user's first active method becomes the default automatically.
    """
    await balance_service.lock_balance(db, user_id)

    existing = await list_payment_methods(db, user_id)
    if not existing:
        is_default = True

    if is_default:
        await _clear_default(db, user_id)

    method = PaymentMethod(
        user_id=user_id,
        type=method_type,
        last4=last4,
        brand=brand,
        bank_name=bank_name,
        gateway_token_encrypted=encrypt_value(gateway_token) if gateway_token else None,
        is_default=is_default,
        is_verified=is_verified,
    )
    db.add(method)
    await db.flush()
    return method


async def list_payment_methods(
    db: AsyncSession,
    user_id: uuid.UUID,
) -> list[PaymentMethod]:
    """Active payment methods, default first."""
    result = await db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.user_id == user_id)
        .where(PaymentMethod.is_active.is_(True))
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at)
    )
    return list(result.scalars().all())


async def get_payment_method(
    db: AsyncSession,
    user_id: uuid.UUID,
    payment_method_id: uuid.UUID,
) -> PaymentMethod:
    """
    Get an active payment method owned by ``user_id``.

    Raises:
        PaymentMethodNotFoundError: If missing, inactive, or someone else's.
    """
    result = await db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.id == payment_method_id)
        .where(PaymentMethod.user_id == user_id)
        .where(PaymentMethod.is_active.is_(True))
    )
    method = result.scalar_one_or_none()

    if method is None:
        raise PaymentMethodNotFoundError(payment_method_id)

    return method


async def get_payout_method(
    db: AsyncSession,
    user_id: uuid.UUID,
    payment_method_id: uuid.UUID,
) -> PaymentMethod:
    """
    Get a payment method that can receive a withdrawal.

    Raises:
        PaymentMethodNotFoundError: If it isn't the user's active method.
        PaymentMethodNotUsableError: If it's unverified or not a payout type.
    """
    method = await get_payment_method(db, user_id, payment_method_id)

    if method.type not in PAYOUT_METHOD_TYPES:
        raise PaymentMethodNotUsableError(
            f"Payment method {payment_method_id} can't receive payouts"
        )
    if not method.is_verified:
        raise PaymentMethodNotUsableError(
            f"Payment method {payment_method_id} is not verified"
        )

    return method


async def set_default_payment_method(
    db: AsyncSession,
    user_id: uuid.UUID,
    payment_method_id: uuid.UUID,
) -> PaymentMethod:
    """Make one method the user's default and clear the flag on the rest."""
    await balance_service.lock_balance(db, user_id)
    method = await get_payment_method(db, user_id, payment_method_id)
    await _clear_default(db, user_id)
    method.is_default = True
    await db.flush()
    return method


async def delete_payment_method(
    db: AsyncSession,
    user_id: uuid.UUID,
    payment_method_id: uuid.UUID,
) -> None:
    """
    Deactivate a payment method.

    Raises:
        PaymentMethodNotFoundError: If it isn't the user's active method.
        PaymentMethodInUseError: If a pending withdrawal targets it.
    """
    await balance_service.lock_balance(db, user_id)
    method = await get_payment_method(db, user_id, payment_method_id)

    in_flight = await db.execute(
        select(Transaction.id)
        .where(Transaction.payment_method_id == payment_method_id)
        .where(Transaction.type == TransactionType.WITHDRAWAL)
        .where(Transaction.status == TransactionStatus.PENDING)
        .limit(1)
    )
    if in_flight.scalar_one_or_none() is not None:
        raise PaymentMethodInUseError(payment_method_id)

    method.is_active = False
    method.is_default = False
    await db.flush()
