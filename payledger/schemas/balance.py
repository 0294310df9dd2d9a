"""
Pydantic schemas for balance endpoints.

All monetary amounts are in integer minor units (e.g., $10.50 = 1050).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel


class BalanceResponse(BaseModel):
    """A user's balance breakdown."""
    user_id: uuid.UUID
    available: int
    pending: int
    disputed: int
    total: int
    total_earnings: int
    updated_at: datetime

    model_config = {"from_attributes": True}
