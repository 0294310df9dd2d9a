"""
Admin router — read-only, cross-user visibility for operators.

All endpoints require an `admin` or `service` token.

Endpoints:
  GET /admin/balances/{user_id}              — Any user's balance
  GET /admin/users/{user_id}/transactions    — Any user's history
  GET /admin/reconciliation?user_id=         — Audit balances vs. history
"""

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from payledger.dependencies import Principal, get_engine, require_admin
from payledger.engine import LedgerEngine
from payledger.models.transaction import TransactionStatus, TransactionType
from payledger.schemas.balance import BalanceResponse
from payledger.schemas.ledger import ReconciliationResponse
from payledger.schemas.transaction import TransactionResponse

router = APIRouter()


@router.get(
    "/balances/{user_id}",
    response_model=BalanceResponse,
    summary="[Admin] Get any user's balance",
)
async def admin_get_balance(
    user_id: uuid.UUID,
    principal: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    return await engine.get_balance(user_id)


@router.get(
    "/users/{user_id}/transactions",
    response_model=list[TransactionResponse],
    summary="[Admin] List any user's transactions",
)
async def admin_list_transactions(
    user_id: uuid.UUID,
    type: TransactionType | None = Query(None),
    status: TransactionStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    return await engine.list_transactions(
        user_id,
        type_filter=type,
        status_filter=status,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/reconciliation",
    response_model=ReconciliationResponse,
    summary="[Admin] Reconcile balances against transactions",
)
async def admin_reconcile(
    user_id: uuid.UUID | None = Query(None, description="Audit one user only"),
    principal: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    """
    Recompute every balance from the transaction history and report drift.

    Nothing is corrected; an empty mismatch list means the ledger is
    consistent.
    """
    mismatches = await engine.reconcile(user_id)
    return ReconciliationResponse(
        consistent=not mismatches,
        mismatches=[asdict(m) for m in mismatches],
    )
