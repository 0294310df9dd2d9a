"""
Tests for the payment gateway webhook.

These tests verify:
  - Unsigned or wrongly signed bodies are rejected before anything runs
  - Each event type drives the matching ledger operation
  - Redelivered events are acknowledged without double counting
  - Unknown event types are acknowledged but not applied
  - Ledger errors keep their status codes so the gateway knows whether
    to retry
"""

import json
import uuid

from payledger.security import sign_webhook


async def deliver(client, event_type: str, data: dict, signature: str | None = None):
    body = json.dumps({"type": event_type, "data": data}).encode()
    headers = {"Content-Type": "application/json"}
    headers["X-Gateway-Signature"] = signature if signature is not None else sign_webhook(body)
    return await client.post("/webhooks/gateway", content=body, headers=headers)


def payment_data(charge_id: str, amount: int, user_id: uuid.UUID, booking_id=None):
    return {
        "id": charge_id,
        "amount": amount,
        "metadata": {
            "booking_id": str(booking_id or uuid.uuid4()),
            "user_id": str(user_id),
        },
    }


class TestWebhookSignature:
    """Tests for X-Gateway-Signature verification."""

    async def test_missing_signature(self, client):
        body = json.dumps({"type": "payment.succeeded", "data": {}}).encode()
        response = await client.post(
            "/webhooks/gateway", content=body, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_signature"

    async def test_wrong_signature(self, client, ledger):
        uid = uuid.uuid4()
        response = await deliver(
            client,
            "payment.succeeded",
            payment_data("ch_forged", 10_000, uid),
            signature=sign_webhook(b"something else"),
        )
        assert response.status_code == 400
        assert (await ledger.get_balance(uid)).available == 0

    async def test_wrong_secret(self, client):
        body = json.dumps({"type": "payment.succeeded", "data": {}}).encode()
        response = await client.post(
            "/webhooks/gateway",
            content=body,
            headers={"X-Gateway-Signature": sign_webhook(body, secret="not-the-secret")},
        )
        assert response.status_code == 400


class TestPaymentEvents:
    """payment.succeeded / payment.failed."""

    async def test_payment_succeeded_credits_payee(self, client, ledger):
        uid = uuid.uuid4()
        response = await deliver(client, "payment.succeeded", payment_data("ch_1", 500, uid))

        assert response.status_code == 200
        data = response.json()
        assert data["handled"] is True
        assert data["transaction_id"] is not None
        assert (await ledger.get_balance(uid)).available == 500

    async def test_redelivery_credits_once(self, client, ledger):
        uid = uuid.uuid4()
        data = payment_data("ref-A", 500, uid)

        first = await deliver(client, "payment.succeeded", data)
        second = await deliver(client, "payment.succeeded", data)

        assert first.json()["transaction_id"] == second.json()["transaction_id"]
        assert (await ledger.get_balance(uid)).available == 500

    async def test_payment_failed(self, client, ledger):
        uid = uuid.uuid4()
        response = await deliver(client, "payment.failed", payment_data("ch_2", 500, uid))

        assert response.status_code == 200
        txn = await ledger.get_transaction(uuid.UUID(response.json()["transaction_id"]))
        assert txn.status.value == "failed"
        assert (await ledger.get_balance(uid)).available == 0

    async def test_malformed_event_data(self, client):
        response = await deliver(client, "payment.succeeded", {"id": "ch_3"})
        assert response.status_code == 422

    async def test_booking_outage_asks_for_retry(self, client, booking_client):
        booking_client.unavailable = True
        response = await deliver(
            client, "payment.succeeded", payment_data("ch_4", 500, uuid.uuid4())
        )
        assert response.status_code == 503


class TestPayoutEvents:
    """payout.paid / payout.failed."""

    async def test_payout_paid(self, client, ledger, fund, add_bank_account):
        uid = uuid.uuid4()
        await fund(uid, 1000)
        method = await add_bank_account(uid)
        txn = await ledger.request_withdrawal(uid, 600, method.id)

        response = await deliver(
            client,
            "payout.paid",
            {"id": txn.gateway_reference, "metadata": {"transaction_id": str(txn.id)}},
        )

        assert response.status_code == 200
        balance = await ledger.get_balance(uid)
        assert balance.available == 400
        assert balance.pending == 0

    async def test_payout_failed_by_reference(self, client, ledger, fund, add_bank_account):
        uid = uuid.uuid4()
        await fund(uid, 1000)
        method = await add_bank_account(uid)
        txn = await ledger.request_withdrawal(uid, 600, method.id)

        response = await deliver(client, "payout.failed", {"id": txn.gateway_reference})

        assert response.status_code == 200
        balance = await ledger.get_balance(uid)
        assert balance.available == 1000
        assert balance.pending == 0

    async def test_conflicting_payout_event(self, client, ledger, fund, add_bank_account):
        uid = uuid.uuid4()
        await fund(uid, 1000)
        method = await add_bank_account(uid)
        txn = await ledger.request_withdrawal(uid, 600, method.id)
        await deliver(client, "payout.paid", {"id": txn.gateway_reference})

        response = await deliver(client, "payout.failed", {"id": txn.gateway_reference})
        assert response.status_code == 409


class TestRefundAndDisputeEvents:
    """charge.refunded / dispute.created / dispute.closed."""

    async def test_charge_refunded(self, client, ledger):
        uid = uuid.uuid4()
        await deliver(client, "payment.succeeded", payment_data("ch_r", 200, uid))

        response = await deliver(
            client, "charge.refunded", {"id": "re_1", "charge": "ch_r", "amount": 200}
        )

        assert response.status_code == 200
        balance = await ledger.get_balance(uid)
        assert balance.available == 0
        assert balance.total_earnings == 0

    async def test_refund_for_unknown_charge(self, client):
        response = await deliver(
            client, "charge.refunded", {"id": "re_2", "charge": "ch_missing", "amount": 200}
        )
        assert response.status_code == 404

    async def test_dispute_lifecycle(self, client, ledger):
        uid = uuid.uuid4()
        await deliver(client, "payment.succeeded", payment_data("ch_d", 1000, uid))

        opened = await deliver(
            client,
            "dispute.created",
            {"id": "dp_1", "charge": "ch_d", "amount": 1000, "reason": "fraudulent"},
        )
        assert opened.status_code == 200
        assert (await ledger.get_balance(uid)).disputed == 1000

        # Redelivery of the same dispute is a replay
        again = await deliver(
            client, "dispute.created", {"id": "dp_1", "charge": "ch_d", "amount": 1000}
        )
        assert again.json()["transaction_id"] == opened.json()["transaction_id"]

        closed = await deliver(
            client, "dispute.closed", {"id": "dp_1", "charge": "ch_d", "status": "won"}
        )
        assert closed.status_code == 200
        balance = await ledger.get_balance(uid)
        assert balance.available == 1000
        assert balance.disputed == 0


class TestUnknownEvents:
    async def test_unknown_type_acknowledged(self, client):
        response = await deliver(client, "customer.created", {"id": "cus_1"})
        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": False, "transaction_id": None}
