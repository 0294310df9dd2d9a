"""
Pydantic schemas for transaction and withdrawal endpoints.

Amounts are always positive; what a transaction does to the balance is
implied by its type and status.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from payledger.models.transaction import DisputeOutcome, TransactionStatus, TransactionType


class TransactionResponse(BaseModel):
    """Public representation of a ledger transaction."""
    id: uuid.UUID
    user_id: uuid.UUID
    booking_id: uuid.UUID | None
    type: TransactionType
    amount: int
    status: TransactionStatus
    payment_method_id: uuid.UUID | None
    gateway_reference: str | None
    source_transaction_id: uuid.UUID | None
    dispute_outcome: DisputeOutcome | None
    shortfall: int
    description: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalRequest(BaseModel):
    """Request body for POST /withdrawals."""
    amount: int = Field(gt=0, description="Amount in minor units (must be positive)")
    payment_method_id: uuid.UUID
    description: str | None = Field(None, max_length=255)
