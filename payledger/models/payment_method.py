"""
PaymentMethod model — where a user's withdrawals are paid out to.

The ledger only references payment methods; it never charges them. The
one rule enforced here is that a user has at most one default method at a
time (payment_method_service flips the others off when a new default is
set).

Only the last four digits are stored in plaintext. The gateway's payout
token, when provided, is Fernet-encrypted at rest and decrypted only when
a payout is submitted.

Deleting a method is a soft delete (is_active = False) so historical
withdrawals keep a valid reference.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, Index, LargeBinary, String, text
from sqlalchemy.orm import Mapped, mapped_column

from payledger.database import Base


class PaymentMethodType(str, enum.Enum):
    CARD = "card"
    BANK_ACCOUNT = "bank_account"


# Types the payout rail can send money to
PAYOUT_METHOD_TYPES = frozenset({PaymentMethodType.CARD, PaymentMethodType.BANK_ACCOUNT})


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    __table_args__ = (
        # At most one default per user
        Index(
            "uq_payment_methods_one_default",
            "user_id",
            unique=True,
            sqlite_where=text("is_default"),
            postgresql_where=text("is_default"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )

    type: Mapped[PaymentMethodType] = mapped_column(
        Enum(PaymentMethodType),
        nullable=False,
    )

    # Last four digits in plaintext for display ("ending in 4242")
    last4: Mapped[str] = mapped_column(String(4), nullable=False)

    # Display-only metadata
    brand: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Gateway payout token, Fernet-encrypted
    gateway_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary,
        nullable=True,
    )

    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
