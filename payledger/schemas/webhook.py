"""
Pydantic schemas for payment gateway webhook events.

Every event arrives as {"type": "...", "data": {...}}. The envelope is
parsed first; the router then validates `data` against the model for
that event type.

    payment.succeeded / payment.failed   PaymentEventData
    payout.paid / payout.failed          PayoutEventData
    charge.refunded                      RefundEventData
    dispute.created                      DisputeEventData
    dispute.closed                       DisputeClosedEventData
"""

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field


class GatewayEvent(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class PaymentMetadata(BaseModel):
    booking_id: uuid.UUID
    user_id: uuid.UUID | None = None


class PaymentEventData(BaseModel):
    id: str = Field(min_length=1, description="Gateway charge id")
    amount: int = Field(gt=0)
    metadata: PaymentMetadata


class PayoutMetadata(BaseModel):
    transaction_id: uuid.UUID | None = None


class PayoutEventData(BaseModel):
    id: str = Field(min_length=1, description="Gateway payout id")
    metadata: PayoutMetadata = Field(default_factory=PayoutMetadata)


class RefundEventData(BaseModel):
    id: str = Field(min_length=1, description="Gateway refund id")
    charge: str = Field(min_length=1, description="Charge being refunded")
    amount: int = Field(gt=0)


class DisputeEventData(BaseModel):
    id: str = Field(min_length=1, description="Gateway dispute id")
    charge: str = Field(min_length=1, description="Charge being disputed")
    amount: int = Field(gt=0)
    reason: str | None = None


class DisputeClosedEventData(BaseModel):
    id: str = Field(min_length=1)
    charge: str = Field(min_length=1)
    status: Literal["won", "lost"]


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool
    transaction_id: uuid.UUID | None = None
