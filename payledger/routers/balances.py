"""
Balances router — a member's own balance and transaction history.

Member endpoints (scoped to the authenticated user):
  GET /balance                  — available / pending / disputed / earnings
  GET /transactions             — History, newest first (with filters)
  GET /transactions/{id}        — A single transaction

Cross-user reads are in the admin router.
"""

import uuid

from fastapi import APIRouter, Depends, Query

from payledger.dependencies import get_current_user_id, get_engine
from payledger.engine import LedgerEngine
from payledger.models.transaction import TransactionStatus, TransactionType
from payledger.schemas.balance import BalanceResponse
from payledger.schemas.transaction import TransactionResponse

router = APIRouter()


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Get my balance",
)
async def get_balance(
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Return the caller's balance breakdown.

    A user the ledger has never seen gets an all-zero balance.
    """
    return await engine.get_balance(user_id)


@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="List my transactions",
)
async def list_transactions(
    type: TransactionType | None = Query(None, description="Filter by transaction type"),
    status: TransactionStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    """List the caller's transactions, newest first."""
    return await engine.list_transactions(
        user_id,
        type_filter=type,
        status_filter=status,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a single transaction",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_engine),
):
    """Someone else's transaction is reported as not found."""
    return await engine.get_transaction(transaction_id, user_id=user_id)
