"""
Tests for refunds against settled payments.

These tests verify:
  - A full refund reverses the credit and marks the payment refunded
  - Partial refunds accumulate until the payment is fully refunded
  - Refunds beyond the remaining amount, or against a payment that isn't
    completed, are rejected
  - A refund the payee can't cover is rejected, never clamped
  - Redelivery of the same refund reference is a replay
  - The booking system hears about full refunds
"""

import uuid

import pytest

from payledger.exceptions import (
    AlreadyResolvedError,
    InsufficientFundsError,
    InvalidAmountError,
    NotRefundableError,
    TransactionNotFoundError,
)
from payledger.models.transaction import TransactionStatus, TransactionType

from helpers import assert_balance


class TestRecordRefund:
    """Tests for LedgerEngine.record_refund."""

    async def test_full_refund_of_200(self, ledger, fund):
        uid = uuid.uuid4()
        payment = await fund(uid, 200)

        result = await ledger.record_refund(payment.id, 200)

        assert result.created is True
        assert result.transaction.type == TransactionType.REFUND
        assert result.transaction.status == TransactionStatus.COMPLETED
        assert result.transaction.source_transaction_id == payment.id
        await assert_balance(ledger, uid, available=0, total_earnings=0)

        source = await ledger.get_transaction(payment.id)
        assert source.status == TransactionStatus.REFUNDED

    async def test_partial_refunds_accumulate(self, ledger, fund):
        uid = uuid.uuid4()
        payment = await fund(uid, 1000)

        await ledger.record_refund(payment.id, 300)
        assert (await ledger.get_transaction(payment.id)).status == TransactionStatus.COMPLETED
        await assert_balance(ledger, uid, available=700, total_earnings=700)

        await ledger.record_refund(payment.id, 700)
        assert (await ledger.get_transaction(payment.id)).status == TransactionStatus.REFUNDED
        await assert_balance(ledger, uid, available=0, total_earnings=0)

    async def test_refund_beyond_remaining(self, ledger, fund):
        uid = uuid.uuid4()
        payment = await fund(uid, 1000)
        await ledger.record_refund(payment.id, 600)

        with pytest.raises(NotRefundableError):
            await ledger.record_refund(payment.id, 401)

        await assert_balance(ledger, uid, available=400, total_earnings=400)

    async def test_refund_of_refunded_payment(self, ledger, fund):
        payment = await fund(uuid.uuid4(), 200)
        await ledger.record_refund(payment.id, 200)

        with pytest.raises(NotRefundableError):
            await ledger.record_refund(payment.id, 1)

    async def test_refund_of_failed_payment(self, ledger):
        failed = await ledger.record_payment_failure(
            uuid.uuid4(), 500, "ch_failed", user_id=uuid.uuid4()
        )
        with pytest.raises(NotRefundableError):
            await ledger.record_refund(failed.transaction.id, 500)

    async def test_refund_of_non_payment(self, ledger, fund, add_bank_account):
        uid = uuid.uuid4()
        await fund(uid, 500)
        method = await add_bank_account(uid)
        withdrawal = await ledger.request_withdrawal(uid, 100, method.id)

        with pytest.raises(NotRefundableError):
            await ledger.record_refund(withdrawal.id, 100)

    async def test_unknown_source(self, ledger):
        with pytest.raises(TransactionNotFoundError):
            await ledger.record_refund(uuid.uuid4(), 100)

    async def test_invalid_amount(self, ledger, fund):
        payment = await fund(uuid.uuid4(), 500)
        with pytest.raises(InvalidAmountError):
            await ledger.record_refund(payment.id, -5)

    async def test_refund_after_withdrawal_is_not_clamped(
        self, ledger, fund, add_bank_account
    ):
        uid = uuid.uuid4()
        payment = await fund(uid, 1000)
        method = await add_bank_account(uid)
        await ledger.request_withdrawal(uid, 900, method.id)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.record_refund(payment.id, 500)

        assert exc_info.value.field == "available"
        await assert_balance(ledger, uid, available=100, pending=900, total_earnings=1000)
        refunds = await ledger.list_transactions(uid, type_filter=TransactionType.REFUND)
        assert refunds == []

    async def test_same_reference_is_replayed(self, ledger, fund):
        uid = uuid.uuid4()
        payment = await fund(uid, 1000)

        first = await ledger.record_refund(payment.id, 400, gateway_reference="re_1")
        second = await ledger.record_refund(payment.id, 400, gateway_reference="re_1")

        assert second.created is False
        assert second.transaction.id == first.transaction.id
        await assert_balance(ledger, uid, available=600, total_earnings=600)

    async def test_replay_after_full_refund(self, ledger, fund):
        payment = await fund(uuid.uuid4(), 300)
        first = await ledger.record_refund(payment.id, 300, gateway_reference="re_full")
        second = await ledger.record_refund(payment.id, 300, gateway_reference="re_full")

        assert second.created is False
        assert second.transaction.id == first.transaction.id

    async def test_reference_of_another_payment_is_refused(self, ledger, fund):
        uid = uuid.uuid4()
        first_payment = await fund(uid, 500)
        second_payment = await fund(uid, 500)
        await ledger.record_refund(first_payment.id, 100, gateway_reference="re_shared")

        with pytest.raises(AlreadyResolvedError):
            await ledger.record_refund(second_payment.id, 200, gateway_reference="re_shared")

        await assert_balance(ledger, uid, available=900, total_earnings=900)
        refunds = await ledger.list_transactions(uid, type_filter=TransactionType.REFUND)
        assert [r.source_transaction_id for r in refunds] == [first_payment.id]

    async def test_booking_told_on_full_refund_only(self, ledger, booking_client, fund):
        payment = await fund(uuid.uuid4(), 1000)

        await ledger.record_refund(payment.id, 400)
        assert booking_client.refunded == []

        final = await ledger.record_refund(payment.id, 600)
        assert booking_client.refunded == [(payment.booking_id, final.transaction.id)]


class TestRefundEndpoint:
    """Tests for POST /ledger/refunds."""

    async def test_refund_endpoint(self, client, service_headers, member_headers, user_id, fund):
        payment = await fund(user_id, 200)

        response = await client.post(
            "/ledger/refunds",
            json={"source_transaction_id": str(payment.id), "amount": 200},
            headers=service_headers,
        )
        assert response.status_code == 201
        assert response.json()["type"] == "refund"

        balance = (await client.get("/balance", headers=member_headers)).json()
        assert balance["available"] == 0
        assert balance["total_earnings"] == 0

    async def test_not_refundable_is_409(self, client, service_headers, fund):
        payment = await fund(uuid.uuid4(), 200)

        response = await client.post(
            "/ledger/refunds",
            json={"source_transaction_id": str(payment.id), "amount": 201},
            headers=service_headers,
        )
        assert response.status_code == 409
        assert response.json()["error_type"] == "not_refundable"
