"""
External collaborators the ledger calls out to.

  - BookingClient: the booking/contract system. Tells us who a booking
    pays (resolve_payee) and wants to hear when a booking is paid or
    refunded.
  - PayoutGateway: the payout rail that actually sends a withdrawal to
    the user's card or bank account.

Each has an httpx implementation for production and a local one for
deployments without the remote system:

  - LoggingBookingClient: logs status updates; can't resolve payees, so
    payment events must carry the payee's user id
  - ManualPayoutGateway: hands out "manual_<transaction id>" references
    for payouts an operator processes by hand

Neither is ever called while a database transaction is open; the engine
commits first, then calls out.

Error mapping:
  transport errors, timeouts, 5xx  -> GatewayUnavailableError (retry later)
  4xx on a payout                  -> PayoutRejectedError (compensate)
"""

import logging
import uuid
from typing import Protocol

import httpx

from payledger.config import settings
from payledger.exceptions import (
    GatewayUnavailableError,
    PayeeNotFoundError,
    PayoutRejectedError,
)
from payledger.models.payment_method import PaymentMethod
from payledger.models.transaction import Transaction
from payledger.security import decrypt_value

logger = logging.getLogger(__name__)


class BookingClient(Protocol):
    async def resolve_payee(self, booking_id: uuid.UUID) -> uuid.UUID: ...

    async def mark_paid(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None: ...

    async def mark_refunded(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None: ...


class PayoutGateway(Protocol):
    async def submit_payout(
        self, transaction: Transaction, payment_method: PaymentMethod
    ) -> str: ...


# ---------------------------------------------------------------------------
# Booking system
# ---------------------------------------------------------------------------

class HttpBookingClient:
    """Talks to the booking service's REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Booking service %s %s failed: %s", method, path, exc)
            raise GatewayUnavailableError(f"Booking service unreachable: {exc}") from exc

        if response.status_code >= 500:
            logger.error(
                "Booking service %s %s returned %s", method, path, response.status_code
            )
            raise GatewayUnavailableError(
                f"Booking service error {response.status_code}"
            )
        return response

    async def resolve_payee(self, booking_id: uuid.UUID) -> uuid.UUID:
        response = await self._request("GET", f"/bookings/{booking_id}")
        if response.status_code == 404:
            raise PayeeNotFoundError(booking_id)
        response.raise_for_status()
        payee = response.json().get("payee_user_id")
        if not payee:
            raise PayeeNotFoundError(booking_id)
        return uuid.UUID(str(payee))

    async def _set_payment_status(
        self, booking_id: uuid.UUID, status: str, transaction_id: uuid.UUID
    ) -> None:
        response = await self._request(
            "POST",
            f"/bookings/{booking_id}/payment-status",
            json={"status": status, "transaction_id": str(transaction_id)},
        )
        response.raise_for_status()

    async def mark_paid(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        await self._set_payment_status(booking_id, "paid", transaction_id)

    async def mark_refunded(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        await self._set_payment_status(booking_id, "refunded", transaction_id)


class LoggingBookingClient:
    """Used when no booking service is configured."""

    async def resolve_payee(self, booking_id: uuid.UUID) -> uuid.UUID:
        raise PayeeNotFoundError(booking_id)

    async def mark_paid(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        logger.info("Booking %s paid by transaction %s", booking_id, transaction_id)

    async def mark_refunded(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        logger.info("Booking %s refunded by transaction %s", booking_id, transaction_id)


# ---------------------------------------------------------------------------
# Payout rail
# ---------------------------------------------------------------------------

class HttpPayoutGateway:
    """
    Submits payouts to the gateway's REST API.

    The withdrawal transaction id is sent as the Idempotency-Key, so a
    resubmission after a timeout can't pay out twice.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    async def submit_payout(
        self, transaction: Transaction, payment_method: PaymentMethod
    ) -> str:
        destination = None
        if payment_method.gateway_token_encrypted:
            destination = decrypt_value(payment_method.gateway_token_encrypted)

        payload = {
            "amount": transaction.amount,
            "destination": destination,
            "destination_type": payment_method.type.value,
            "metadata": {
                "transaction_id": str(transaction.id),
                "user_id": str(transaction.user_id),
            },
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    "/payouts",
                    json=payload,
                    headers={"Idempotency-Key": str(transaction.id)},
                )
        except httpx.HTTPError as exc:
            logger.error("Payout submission for %s failed: %s", transaction.id, exc)
            raise GatewayUnavailableError(
                f"Payout gateway unreachable: {exc}", transaction_id=transaction.id
            ) from exc

        if response.status_code >= 500:
            logger.error(
                "Payout gateway returned %s for %s", response.status_code, transaction.id
            )
            raise GatewayUnavailableError(
                f"Payout gateway error {response.status_code}",
                transaction_id=transaction.id,
            )
        if response.status_code >= 400:
            raise PayoutRejectedError(
                f"Payout gateway rejected withdrawal {transaction.id}: {response.text}"
            )

        return response.json()["id"]


class ManualPayoutGateway:
    """Used when no payout gateway is configured."""

    async def submit_payout(
        self, transaction: Transaction, payment_method: PaymentMethod
    ) -> str:
        logger.info(
            "Withdrawal %s of %s queued for manual payout to %s ending %s",
            transaction.id,
            transaction.amount,
            payment_method.type.value,
            payment_method.last4,
        )
        return f"manual_{transaction.id}"


def booking_client_from_settings() -> BookingClient:
    if settings.BOOKING_SERVICE_URL:
        return HttpBookingClient(settings.BOOKING_SERVICE_URL, settings.GATEWAY_TIMEOUT_SECONDS)
    return LoggingBookingClient()


def payout_gateway_from_settings() -> PayoutGateway:
    if settings.PAYOUT_GATEWAY_URL:
        return HttpPayoutGateway(settings.PAYOUT_GATEWAY_URL, settings.GATEWAY_TIMEOUT_SECONDS)
    return ManualPayoutGateway()
