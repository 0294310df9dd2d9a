"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors (like InsufficientFundsError)
without importing HTTP concepts. The handler registered here translates
them into HTTP responses with a consistent body:

    {"detail": "...", "error_type": "...", ...extra fields}

Exception hierarchy:
    LedgerError (base)
    ├── InvalidAmountError            — non-positive or malformed amount
    ├── InsufficientFundsError        — a balance field would go negative
    ├── NotRefundableError            — source payment can't take this refund
    ├── AlreadyResolvedError          — transaction/dispute already settled
    ├── InvalidTransitionError        — illegal status change
    ├── WithdrawalLimitExceededError  — per-request or daily cap hit
    ├── TransactionNotFoundError
    ├── PaymentMethodNotFoundError
    ├── PaymentMethodNotUsableError   — unverified or wrong type for payouts
    ├── PaymentMethodInUseError       — referenced by a pending withdrawal
    ├── PayeeNotFoundError            — booking has no resolvable payee
    ├── GatewayUnavailableError       — external call failed; retry later
    ├── PayoutRejectedError           — payout rail refused the withdrawal
    ├── ConcurrentUpdateError         — retries exhausted on a busy balance
    └── WebhookSignatureError         — webhook body not signed by gateway

Idempotent replays (same gateway reference delivered twice) are NOT errors:
workflows return the existing transaction and the caller gets a 200.
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class LedgerError(Exception):
    """Base exception for all ledger domain errors."""

    status_code = 400
    error_type = "ledger_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> dict:
        """Additional fields merged into the JSON error body."""
        return {}


# ---------------------------------------------------------------------------
# Validation errors (raised before any mutation)
# ---------------------------------------------------------------------------

class InvalidAmountError(LedgerError):
    """Raised when an amount is zero, negative, or not an integer."""

    status_code = 422
    error_type = "invalid_amount"

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Invalid amount {amount!r}: must be a positive integer")


class InsufficientFundsError(LedgerError):
    """
    Raised when a delta would drive a balance field below zero.

    Attributes:
        user_id: The owner of the balance.
        field: The balance field that lacks funds (usually "available").
        requested: The amount the operation tried to take.
        available: The current value of that field.
    """

    status_code = 422
    error_type = "insufficient_funds"

    def __init__(
        self,
        user_id: uuid.UUID,
        field: str,
        requested: int,
        available: int,
    ):
        self.user_id = user_id
        self.field = field
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds: requested {requested} from {field}, "
            f"which holds {available}"
        )

    def extra(self) -> dict:
        return {
            "field": self.field,
            "requested": self.requested,
            "available": self.available,
        }


class NotRefundableError(LedgerError):
    """Raised when a refund targets a payment that can't absorb it."""

    status_code = 409
    error_type = "not_refundable"


class AlreadyResolvedError(LedgerError):
    """Raised when a terminal transaction or closed dispute is acted upon again."""

    status_code = 409
    error_type = "already_resolved"


class InvalidTransitionError(LedgerError):
    """Raised when a transaction status change is not in the transition table."""

    status_code = 409
    error_type = "invalid_transition"

    def __init__(self, transaction_id: uuid.UUID, current, target):
        self.transaction_id = transaction_id
        self.current = current
        self.target = target
        super().__init__(
            f"Transaction {transaction_id} cannot move from "
            f"{current.value} to {target.value}"
        )


class WithdrawalLimitExceededError(LedgerError):
    """Raised when a withdrawal breaks the single or daily limit."""

    status_code = 422
    error_type = "withdrawal_limit_exceeded"

    def __init__(self, detail: str, limit: int):
        self.limit = limit
        super().__init__(detail)

    def extra(self) -> dict:
        return {"limit": self.limit}


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------

class TransactionNotFoundError(LedgerError):
    """Raised when a transaction id or gateway reference matches nothing."""

    status_code = 404
    error_type = "transaction_not_found"

    def __init__(self, reference):
        self.reference = reference
        super().__init__(f"Transaction {reference} not found")


class PaymentMethodNotFoundError(LedgerError):
    """Raised when a payment method doesn't exist or belongs to someone else."""

    status_code = 404
    error_type = "payment_method_not_found"

    def __init__(self, payment_method_id: uuid.UUID):
        self.payment_method_id = payment_method_id
        super().__init__(f"Payment method {payment_method_id} not found")


class PaymentMethodNotUsableError(LedgerError):
    """Raised when a payment method can't receive payouts."""

    status_code = 422
    error_type = "payment_method_not_usable"


class PaymentMethodInUseError(LedgerError):
    """Raised when deleting a payment method a pending withdrawal points at."""

    status_code = 409
    error_type = "payment_method_in_use"

    def __init__(self, payment_method_id: uuid.UUID):
        self.payment_method_id = payment_method_id
        super().__init__(
            f"Payment method {payment_method_id} has a withdrawal in flight"
        )


class PayeeNotFoundError(LedgerError):
    """Raised when the booking system can't say who a booking pays."""

    status_code = 404
    error_type = "payee_not_found"

    def __init__(self, booking_id: uuid.UUID):
        self.booking_id = booking_id
        super().__init__(f"No payee found for booking {booking_id}")


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------

class GatewayUnavailableError(LedgerError):
    """
    Raised when the payout rail or booking system can't be reached.

    Local state is left intact (e.g. a withdrawal stays pending) so the
    caller or queue can retry the external step.
    """

    status_code = 503
    error_type = "gateway_unavailable"

    def __init__(self, detail: str, transaction_id: uuid.UUID | None = None):
        self.transaction_id = transaction_id
        super().__init__(detail)

    def extra(self) -> dict:
        if self.transaction_id is None:
            return {}
        return {"transaction_id": str(self.transaction_id)}


class PayoutRejectedError(LedgerError):
    """Raised by a payout gateway that refused a payout outright (4xx)."""

    status_code = 422
    error_type = "payout_rejected"


class ConcurrentUpdateError(LedgerError):
    """Raised when a balance stayed contended after every retry."""

    status_code = 409
    error_type = "concurrent_update"


class WebhookSignatureError(LedgerError):
    """Raised when a webhook body doesn't carry a valid gateway signature."""

    status_code = 400
    error_type = "invalid_signature"

    def __init__(self):
        super().__init__("Webhook signature verification failed")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the ledger exception handler with the FastAPI application.

    Every LedgerError subclass carries its own status code and error type,
    so one handler covers the whole hierarchy.

    This is called once during app startup in main.py.
    """

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(
        request: Request, exc: LedgerError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error_type": exc.error_type,
                **exc.extra(),
            },
        )
