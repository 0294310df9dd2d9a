"""
Pydantic schemas for the service-facing /ledger endpoints and the
reconciliation report.

Amounts are integer minor units. Validation here only checks shape
(positive integers, non-empty references); the workflows enforce the
business rules.
"""

import uuid

from pydantic import BaseModel, Field, model_validator

from payledger.models.transaction import DisputeOutcome


class PaymentEventRequest(BaseModel):
    """Request body for POST /ledger/payments and /ledger/payments/failed."""
    booking_id: uuid.UUID
    amount: int = Field(gt=0, description="Amount in minor units (must be positive)")
    gateway_reference: str = Field(min_length=1, max_length=255)
    user_id: uuid.UUID | None = Field(
        None, description="Payee; resolved through the booking system when omitted"
    )


class WithdrawalCompletionRequest(BaseModel):
    """Request body for POST /ledger/withdrawals/complete."""
    transaction_id: uuid.UUID | None = None
    gateway_reference: str | None = Field(None, min_length=1, max_length=255)
    succeeded: bool

    @model_validator(mode="after")
    def needs_an_identifier(self):
        """The withdrawal must be named by id or by gateway reference."""
        if self.transaction_id is None and self.gateway_reference is None:
            raise ValueError("transaction_id or gateway_reference is required")
        return self


class RefundRequest(BaseModel):
    """Request body for POST /ledger/refunds."""
    source_transaction_id: uuid.UUID
    amount: int = Field(gt=0, description="Amount in minor units (must be positive)")
    gateway_reference: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=255)


class DisputeHoldRequest(BaseModel):
    """Request body for POST /ledger/disputes."""
    source_transaction_id: uuid.UUID
    amount: int = Field(gt=0, description="Disputed amount in minor units")
    gateway_reference: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=255)


class DisputeResolutionRequest(BaseModel):
    """Request body for POST /ledger/disputes/resolve."""
    source_transaction_id: uuid.UUID
    outcome: DisputeOutcome


class MismatchResponse(BaseModel):
    user_id: uuid.UUID
    field: str
    expected: int
    actual: int


class ReconciliationResponse(BaseModel):
    """Result of a reconciliation pass; consistent when mismatches is empty."""
    consistent: bool
    mismatches: list[MismatchResponse]
