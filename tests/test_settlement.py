"""
Tests for payment settlement (crediting a payee when a charge clears).

These tests verify:
  - A settled payment credits available and total_earnings
  - Delivering the same gateway reference twice credits once
  - The payee is resolved through the booking system when not supplied
  - The booking system is told the booking is paid, and a notice lost to
    an outage is re-sent on redelivery
  - Failed payments are recorded without touching the balance
  - Invalid amounts are rejected before anything is written
"""

import uuid

import pytest

from payledger.exceptions import (
    GatewayUnavailableError,
    InvalidAmountError,
    PayeeNotFoundError,
)
from payledger.models.transaction import TransactionStatus, TransactionType


class TestRecordPayment:
    """Tests for LedgerEngine.record_payment."""

    async def test_payment_credits_available_and_earnings(self, ledger):
        uid = uuid.uuid4()
        result = await ledger.record_payment(
            booking_id=uuid.uuid4(), amount=500, gateway_reference="ch_1", user_id=uid
        )

        assert result.created is True
        assert result.transaction.type == TransactionType.PAYMENT
        assert result.transaction.status == TransactionStatus.COMPLETED

        balance = await ledger.get_balance(uid)
        assert balance.available == 500
        assert balance.total_earnings == 500
        assert balance.pending == 0

    async def test_same_reference_credits_once(self, ledger):
        """Double delivery of 500 with reference ref-A leaves available at 500."""
        uid = uuid.uuid4()
        booking_id = uuid.uuid4()

        first = await ledger.record_payment(booking_id, 500, "ref-A", user_id=uid)
        second = await ledger.record_payment(booking_id, 500, "ref-A", user_id=uid)

        assert first.created is True
        assert second.created is False
        assert second.transaction.id == first.transaction.id

        balance = await ledger.get_balance(uid)
        assert balance.available == 500
        assert balance.total_earnings == 500

        payments = await ledger.list_transactions(uid, type_filter=TransactionType.PAYMENT)
        assert len(payments) == 1

    async def test_payee_resolved_through_booking_system(self, ledger, booking_client):
        payee = uuid.uuid4()
        booking_id = uuid.uuid4()
        booking_client.payees[booking_id] = payee

        result = await ledger.record_payment(booking_id, 1200, "ch_resolved")

        assert result.transaction.user_id == payee
        assert (await ledger.get_balance(payee)).available == 1200

    async def test_unknown_payee(self, ledger):
        with pytest.raises(PayeeNotFoundError):
            await ledger.record_payment(uuid.uuid4(), 100, "ch_orphan")

    async def test_booking_marked_paid(self, ledger, booking_client):
        booking_id = uuid.uuid4()
        result = await ledger.record_payment(booking_id, 100, "ch_2", user_id=uuid.uuid4())
        assert booking_client.paid == [(booking_id, result.transaction.id)]

    async def test_booking_outage_is_healed_by_redelivery(self, ledger, booking_client):
        uid = uuid.uuid4()
        booking_id = uuid.uuid4()
        booking_client.unavailable = True

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await ledger.record_payment(booking_id, 300, "ch_3", user_id=uid)

        # The credit is committed even though the booking wasn't told
        assert (await ledger.get_balance(uid)).available == 300
        assert exc_info.value.transaction_id is not None

        booking_client.unavailable = False
        replay = await ledger.record_payment(booking_id, 300, "ch_3", user_id=uid)

        assert replay.created is False
        assert booking_client.paid == [(booking_id, replay.transaction.id)]
        assert (await ledger.get_balance(uid)).available == 300

    @pytest.mark.parametrize("amount", [0, -100, 10.5, True])
    async def test_invalid_amount(self, ledger, amount):
        uid = uuid.uuid4()
        with pytest.raises(InvalidAmountError):
            await ledger.record_payment(uuid.uuid4(), amount, "ch_bad", user_id=uid)

        assert await ledger.list_transactions(uid) == []


class TestRecordPaymentFailure:
    """Tests for LedgerEngine.record_payment_failure."""

    async def test_failure_recorded_without_balance_change(self, ledger):
        uid = uuid.uuid4()
        result = await ledger.record_payment_failure(
            uuid.uuid4(), 800, "ch_declined", user_id=uid
        )

        assert result.created is True
        assert result.transaction.status == TransactionStatus.FAILED

        balance = await ledger.get_balance(uid)
        assert balance.available == 0
        assert balance.total_earnings == 0

    async def test_failure_is_idempotent(self, ledger):
        uid = uuid.uuid4()
        booking_id = uuid.uuid4()
        first = await ledger.record_payment_failure(booking_id, 800, "ch_x", user_id=uid)
        second = await ledger.record_payment_failure(booking_id, 800, "ch_x", user_id=uid)

        assert second.created is False
        assert second.transaction.id == first.transaction.id

    async def test_stale_failure_after_success_is_ignored(self, ledger):
        uid = uuid.uuid4()
        booking_id = uuid.uuid4()
        paid = await ledger.record_payment(booking_id, 800, "ch_y", user_id=uid)
        late = await ledger.record_payment_failure(booking_id, 800, "ch_y", user_id=uid)

        assert late.created is False
        assert late.transaction.id == paid.transaction.id
        assert late.transaction.status == TransactionStatus.COMPLETED
        assert (await ledger.get_balance(uid)).available == 800

    async def test_success_after_failed_attempt_is_credited(self, ledger):
        """A retried charge can succeed under the reference that failed before."""
        uid = uuid.uuid4()
        booking_id = uuid.uuid4()
        await ledger.record_payment_failure(booking_id, 800, "ch_retry", user_id=uid)
        result = await ledger.record_payment(booking_id, 800, "ch_retry", user_id=uid)

        assert result.created is True
        assert (await ledger.get_balance(uid)).available == 800


class TestPaymentEndpoints:
    """Tests for POST /ledger/payments and /ledger/payments/failed."""

    async def test_created_then_replayed(self, client, service_headers):
        uid = uuid.uuid4()
        body = {
            "booking_id": str(uuid.uuid4()),
            "amount": 500,
            "gateway_reference": "ref-A",
            "user_id": str(uid),
        }

        first = await client.post("/ledger/payments", json=body, headers=service_headers)
        assert first.status_code == 201

        second = await client.post("/ledger/payments", json=body, headers=service_headers)
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

    async def test_zero_amount_rejected(self, client, service_headers):
        response = await client.post(
            "/ledger/payments",
            json={
                "booking_id": str(uuid.uuid4()),
                "amount": 0,
                "gateway_reference": "ch_zero",
                "user_id": str(uuid.uuid4()),
            },
            headers=service_headers,
        )
        assert response.status_code == 422

    async def test_failed_payment_endpoint(self, client, service_headers):
        response = await client.post(
            "/ledger/payments/failed",
            json={
                "booking_id": str(uuid.uuid4()),
                "amount": 900,
                "gateway_reference": "ch_nope",
                "user_id": str(uuid.uuid4()),
            },
            headers=service_headers,
        )
        assert response.status_code == 201
        assert response.json()["status"] == "failed"

    async def test_unknown_payee_is_404(self, client, service_headers):
        response = await client.post(
            "/ledger/payments",
            json={
                "booking_id": str(uuid.uuid4()),
                "amount": 100,
                "gateway_reference": "ch_orphan",
            },
            headers=service_headers,
        )
        assert response.status_code == 404
        assert response.json()["error_type"] == "payee_not_found"
