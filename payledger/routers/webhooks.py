"""
Webhooks router — events pushed by the payment gateway.

  POST /webhooks/gateway

Authentication is the X-Gateway-Signature header ("sha256=<hex>", an
HMAC-SHA256 of the raw body keyed with WEBHOOK_SECRET), not a JWT.

Each event type maps onto one engine operation:

  payment.succeeded  -> record_payment            (data.id is the charge reference)
  payment.failed     -> record_payment_failure
  payout.paid        -> complete_withdrawal(succeeded=True)
  payout.failed      -> complete_withdrawal(succeeded=False)
  charge.refunded    -> record_refund              (data.charge names the payment)
  dispute.created    -> record_dispute_hold
  dispute.closed     -> record_dispute_resolution

Gateways retry on any non-2xx response. Ledger errors keep their usual
status codes, so a 503 (booking system or payout rail down) is retried
and a 4xx is not. Replays are answered 200 like any other delivery.
Unknown event types are acknowledged and logged.
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from payledger.dependencies import get_engine
from payledger.engine import LedgerEngine
from payledger.exceptions import WebhookSignatureError
from payledger.models.transaction import DisputeOutcome, Transaction
from payledger.schemas.webhook import (
    DisputeClosedEventData,
    DisputeEventData,
    GatewayEvent,
    PaymentEventData,
    PayoutEventData,
    RefundEventData,
    WebhookAck,
)
from payledger.security import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------

async def _payment_succeeded(engine: LedgerEngine, data: dict) -> Transaction:
    event = PaymentEventData.model_validate(data)
    result = await engine.record_payment(
        booking_id=event.metadata.booking_id,
        amount=event.amount,
        gateway_reference=event.id,
        user_id=event.metadata.user_id,
    )
    return result.transaction


async def _payment_failed(engine: LedgerEngine, data: dict) -> Transaction:
    event = PaymentEventData.model_validate(data)
    result = await engine.record_payment_failure(
        booking_id=event.metadata.booking_id,
        amount=event.amount,
        gateway_reference=event.id,
        user_id=event.metadata.user_id,
    )
    return result.transaction


async def _payout_paid(engine: LedgerEngine, data: dict) -> Transaction:
    event = PayoutEventData.model_validate(data)
    return await engine.complete_withdrawal(
        succeeded=True,
        transaction_id=event.metadata.transaction_id,
        gateway_reference=event.id,
    )


async def _payout_failed(engine: LedgerEngine, data: dict) -> Transaction:
    event = PayoutEventData.model_validate(data)
    return await engine.complete_withdrawal(
        succeeded=False,
        transaction_id=event.metadata.transaction_id,
        gateway_reference=event.id,
    )


async def _charge_refunded(engine: LedgerEngine, data: dict) -> Transaction:
    event = RefundEventData.model_validate(data)
    payment = await engine.get_payment_by_reference(event.charge)
    result = await engine.record_refund(
        source_transaction_id=payment.id,
        amount=event.amount,
        gateway_reference=event.id,
    )
    return result.transaction


async def _dispute_created(engine: LedgerEngine, data: dict) -> Transaction:
    event = DisputeEventData.model_validate(data)
    payment = await engine.get_payment_by_reference(event.charge)
    result = await engine.record_dispute_hold(
        source_transaction_id=payment.id,
        amount=event.amount,
        gateway_reference=event.id,
        description=event.reason,
    )
    return result.transaction


async def _dispute_closed(engine: LedgerEngine, data: dict) -> Transaction:
    event = DisputeClosedEventData.model_validate(data)
    payment = await engine.get_payment_by_reference(event.charge)
    result = await engine.record_dispute_resolution(
        source_transaction_id=payment.id,
        outcome=DisputeOutcome(event.status),
    )
    return result.transaction


EVENT_HANDLERS = {
    "payment.succeeded": _payment_succeeded,
    "payment.failed": _payment_failed,
    "payout.paid": _payout_paid,
    "payout.failed": _payout_failed,
    "charge.refunded": _charge_refunded,
    "dispute.created": _dispute_created,
    "dispute.closed": _dispute_closed,
}


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@router.post(
    "/gateway",
    response_model=WebhookAck,
    summary="Receive a payment gateway event",
)
async def gateway_webhook(
    request: Request,
    x_gateway_signature: str | None = Header(None),
    engine: LedgerEngine = Depends(get_engine),
):
    """Verify the signature, then apply the event to the ledger."""
    body = await request.body()
    if not verify_webhook_signature(body, x_gateway_signature):
        logger.warning("Rejected webhook with invalid signature")
        raise WebhookSignatureError()

    try:
        event = GatewayEvent.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Malformed webhook body") from exc

    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info("Ignoring webhook event of type %s", event.type)
        return WebhookAck(handled=False)

    try:
        txn = await handler(engine, event.data)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=f"Malformed {event.type} event: {exc.error_count()} error(s)",
        ) from exc

    logger.info("Webhook %s applied to transaction %s", event.type, txn.id)
    return WebhookAck(handled=True, transaction_id=txn.id)
