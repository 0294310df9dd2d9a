"""
Pydantic schemas for payment method endpoints.

The gateway payout token is accepted on create and never returned; only
the last four digits and display metadata are exposed.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from payledger.models.payment_method import PaymentMethodType


class PaymentMethodCreateRequest(BaseModel):
    """Request body for POST /payment-methods."""
    type: PaymentMethodType
    last4: str = Field(pattern=r"^\d{4}$", description="Last four digits")
    brand: str | None = Field(None, max_length=50)
    bank_name: str | None = Field(None, max_length=100)
    gateway_token: str | None = Field(
        None, description="Payout token issued by the payment gateway"
    )
    is_default: bool = False
    is_verified: bool = Field(
        False, description="Whether the gateway has verified this destination"
    )


class PaymentMethodResponse(BaseModel):
    """Public representation of a payment method (no token)."""
    id: uuid.UUID
    type: PaymentMethodType
    last4: str
    brand: str | None
    bank_name: str | None
    is_default: bool
    is_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}
