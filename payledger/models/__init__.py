"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata.create_all() sees every table
  2. Other modules can import from payledger.models directly
"""

from payledger.models.balance import Balance  # noqa: F401
from payledger.models.payment_method import PaymentMethod, PaymentMethodType  # noqa: F401
from payledger.models.transaction import (  # noqa: F401
    DisputeOutcome,
    Transaction,
    TransactionStatus,
    TransactionType,
)
