"""
Withdrawals router — members moving their available balance out.

  POST /withdrawals   — Reserve funds and submit the payout

The request returns as soon as the payout rail has acknowledged the
payout (or failed to). Completion arrives later through the gateway
webhook or POST /ledger/withdrawals/complete.
"""

import uuid

from fastapi import APIRouter, Depends

from payledger.dependencies import get_current_user_id, get_engine
from payledger.engine import LedgerEngine
from payledger.schemas.transaction import TransactionResponse, WithdrawalRequest

router = APIRouter()


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Request a withdrawal",
)
async def request_withdrawal(
    request: WithdrawalRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Withdraw part of the available balance to a verified payment method.

    The amount moves from **available** to **pending** and a `pending`
    withdrawal is returned. It becomes `completed` when the payout settles,
    or `failed` (funds back to available) if the payout is returned.

    A 503 means the payout rail was unreachable: the withdrawal exists and
    stays pending, and its id is in the error body.
    """
    return await engine.request_withdrawal(
        user_id=user_id,
        amount=request.amount,
        payment_method_id=request.payment_method_id,
        description=request.description,
    )
