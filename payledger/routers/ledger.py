"""
Ledger router — money events posted by trusted backends.

All endpoints require a `service` or `admin` token. Most of these events
also arrive through the signed gateway webhook; these endpoints exist for
backends that relay events themselves and for operator corrections.

  POST /ledger/payments                     — Settle a booking payment
  POST /ledger/payments/failed              — Record a failed payment
  POST /ledger/withdrawals/{id}/submit      — Retry a payout submission
  POST /ledger/withdrawals/complete         — Apply a payout outcome
  POST /ledger/refunds                      — Refund a payment
  POST /ledger/disputes                     — Open a dispute hold
  POST /ledger/disputes/resolve             — Close a dispute

Replays of an event already recorded answer 200 with the original
transaction instead of 201.
"""

import uuid

from fastapi import APIRouter, Depends, Response

from payledger.dependencies import Principal, get_engine, require_service
from payledger.engine import LedgerEngine
from payledger.schemas.ledger import (
    DisputeHoldRequest,
    DisputeResolutionRequest,
    PaymentEventRequest,
    RefundRequest,
    WithdrawalCompletionRequest,
)
from payledger.schemas.transaction import TransactionResponse
from payledger.services.transaction_service import WorkflowResult

router = APIRouter()


def _respond(result: WorkflowResult, response: Response):
    if not result.created:
        response.status_code = 200
    return result.transaction


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@router.post(
    "/payments",
    response_model=TransactionResponse,
    status_code=201,
    summary="Record a settled booking payment",
)
async def record_payment(
    request: PaymentEventRequest,
    response: Response,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Credit the booking's payee with a payment that cleared.

    The gateway reference makes this idempotent: posting the same
    reference again returns the original transaction with a 200.
    """
    result = await engine.record_payment(
        booking_id=request.booking_id,
        amount=request.amount,
        gateway_reference=request.gateway_reference,
        user_id=request.user_id,
    )
    return _respond(result, response)


@router.post(
    "/payments/failed",
    response_model=TransactionResponse,
    status_code=201,
    summary="Record a failed booking payment",
)
async def record_payment_failure(
    request: PaymentEventRequest,
    response: Response,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """Recorded for the audit trail; no balance changes."""
    result = await engine.record_payment_failure(
        booking_id=request.booking_id,
        amount=request.amount,
        gateway_reference=request.gateway_reference,
        user_id=request.user_id,
    )
    return _respond(result, response)


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------

@router.post(
    "/withdrawals/{transaction_id}/submit",
    response_model=TransactionResponse,
    summary="Retry submitting a pending withdrawal",
)
async def resubmit_withdrawal(
    transaction_id: uuid.UUID,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """Does nothing if the payout rail already acknowledged the withdrawal."""
    return await engine.resubmit_withdrawal(transaction_id)


@router.post(
    "/withdrawals/complete",
    response_model=TransactionResponse,
    summary="Apply the payout outcome of a withdrawal",
)
async def complete_withdrawal(
    request: WithdrawalCompletionRequest,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    - **succeeded=true**: pending funds leave the ledger; status `completed`
    - **succeeded=false**: pending funds return to available; status `failed`
    """
    return await engine.complete_withdrawal(
        succeeded=request.succeeded,
        transaction_id=request.transaction_id,
        gateway_reference=request.gateway_reference,
    )


# ---------------------------------------------------------------------------
# Refunds and disputes
# ---------------------------------------------------------------------------

@router.post(
    "/refunds",
    response_model=TransactionResponse,
    status_code=201,
    summary="Refund a payment",
)
async def record_refund(
    request: RefundRequest,
    response: Response,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Refund all or part of a completed payment.

    Rejected with 422 if the payee no longer has the funds available.
    """
    result = await engine.record_refund(
        source_transaction_id=request.source_transaction_id,
        amount=request.amount,
        gateway_reference=request.gateway_reference,
        description=request.description,
    )
    return _respond(result, response)


@router.post(
    "/disputes",
    response_model=TransactionResponse,
    status_code=201,
    summary="Open a dispute hold on a payment",
)
async def record_dispute_hold(
    request: DisputeHoldRequest,
    response: Response,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Freeze the disputed amount until the chargeback is decided.

    If less than the disputed amount is available, what is available is
    frozen and the rest is reported as the hold's `shortfall`.
    """
    result = await engine.record_dispute_hold(
        source_transaction_id=request.source_transaction_id,
        amount=request.amount,
        gateway_reference=request.gateway_reference,
        description=request.description,
    )
    return _respond(result, response)


@router.post(
    "/disputes/resolve",
    response_model=TransactionResponse,
    status_code=201,
    summary="Close a dispute",
)
async def record_dispute_resolution(
    request: DisputeResolutionRequest,
    response: Response,
    principal: Principal = Depends(require_service),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    - **won**: the held funds return to available
    - **lost**: the held funds leave the ledger and earnings drop by the disputed amount
    """
    result = await engine.record_dispute_resolution(
        source_transaction_id=request.source_transaction_id,
        outcome=request.outcome,
    )
    return _respond(result, response)
