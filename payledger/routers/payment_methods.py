"""
Payment methods router — the caller's payout destinations.

  GET    /payment-methods                — List active methods, default first
  POST   /payment-methods                — Register a method
  POST   /payment-methods/{id}/default   — Make a method the default
  DELETE /payment-methods/{id}           — Remove a method
"""

import uuid

from fastapi import APIRouter, Depends

from payledger.dependencies import get_current_user_id, get_engine
from payledger.engine import LedgerEngine
from payledger.schemas.payment_method import (
    PaymentMethodCreateRequest,
    PaymentMethodResponse,
)

router = APIRouter()


@router.get(
    "",
    response_model=list[PaymentMethodResponse],
    summary="List my payment methods",
)
async def list_payment_methods(
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    return await engine.list_payment_methods(user_id)


@router.post(
    "",
    response_model=PaymentMethodResponse,
    status_code=201,
    summary="Add a payment method",
)
async def add_payment_method(
    request: PaymentMethodCreateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Register a card or bank account for payouts.

    The first method a user adds becomes the default. The gateway token is
    encrypted at rest and never returned.
    """
    return await engine.add_payment_method(
        user_id=user_id,
        method_type=request.type,
        last4=request.last4,
        brand=request.brand,
        bank_name=request.bank_name,
        gateway_token=request.gateway_token,
        is_default=request.is_default,
        is_verified=request.is_verified,
    )


@router.post(
    "/{payment_method_id}/default",
    response_model=PaymentMethodResponse,
    summary="Set the default payment method",
)
async def set_default_payment_method(
    payment_method_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    return await engine.set_default_payment_method(user_id, payment_method_id)


@router.delete(
    "/{payment_method_id}",
    status_code=204,
    summary="Remove a payment method",
)
async def delete_payment_method(
    payment_method_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    """Refused with 409 while a pending withdrawal is paying out to it."""
    await engine.delete_payment_method(user_id, payment_method_id)
