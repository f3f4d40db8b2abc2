"""
Gateway notification router.

Mercado Pago delivers two kinds of callbacks:
- Webhooks: JSON body {"action": "payment.updated", "data": {"id": ...}},
  optionally signed with the x-signature header
- IPN: id + topic, in the query string or the body
  (topic "payment" for PIX, "point_integration_ipn" for terminal intents)

Both are acknowledged with 200 immediately; the reconciliation runs as a
background task so a slow gateway never causes redelivery storms.
"""

import hashlib
import hmac
import json
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request

from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.utils.schemas import NotificationAck
from rest_api.routers._common import get_optional_store_id, get_reconciliation_engine
from rest_api.services.payments.reconciliation import ReconciliationEngine


router = APIRouter(prefix="/api", tags=["notifications"])


def verify_webhook_signature(
    x_signature: str | None,
    x_request_id: str | None,
    data_id: str,
    secret: str | None = None,
) -> bool:
    """
    Verify a Mercado Pago webhook signature.

    The x-signature header carries "ts=<timestamp>,v1=<hex digest>"; v1 is
    HMAC-SHA256 over "id:{data_id};request-id:{x_request_id};ts:{ts};".
    Without a configured secret verification is skipped.
    """
    secret = settings.mercadopago_webhook_secret if secret is None else secret
    if not secret:
        logger.debug("Webhook signature verification skipped, no secret configured")
        return True

    if not x_signature or not x_request_id:
        logger.warning("Webhook missing signature headers")
        return False

    parts = {}
    for part in x_signature.split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            parts[key.strip()] = value.strip()

    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        logger.warning("Webhook signature malformed", x_signature=x_signature)
        return False

    manifest = f"id:{data_id};request-id:{x_request_id};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1)


async def _read_json(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        logger.warning("Notification body is not JSON", size=len(raw))
        return {}
    return body if isinstance(body, dict) else {}


async def _process_webhook(engine: ReconciliationEngine, payload: dict, store_hint: str | None) -> None:
    try:
        await engine.handle_webhook(payload, store_hint)
    except Exception as e:
        logger.error("Webhook processing failed", error=str(e), exc_info=True)


async def _process_ipn(engine: ReconciliationEngine, resource_id: str, topic: str | None, store_hint: str | None) -> None:
    try:
        await engine.handle_ipn(resource_id, topic, store_hint)
    except Exception as e:
        logger.error("IPN processing failed", payment_id=resource_id, topic=topic, error=str(e), exc_info=True)


def parse_ipn(query: dict[str, str], body: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    Extract (resource id, topic) from an IPN delivery.

    Query parameters win; the body may carry "resource" as a URL whose last
    path segment is the id.
    """
    resource_id = query.get("id") or query.get("data.id")
    topic = query.get("topic") or query.get("type")

    if not resource_id:
        data = body.get("data") or {}
        resource_id = body.get("id") or (data.get("id") if isinstance(data, dict) else None)
        resource = body.get("resource")
        if not resource_id and resource:
            resource_id = str(resource).rstrip("/").rsplit("/", 1)[-1]
    if not topic:
        topic = body.get("topic") or body.get("type")

    return (str(resource_id) if resource_id else None), topic


@router.post("/webhooks/mercadopago", response_model=NotificationAck)
async def mercadopago_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature: str | None = Header(default=None, alias="x-signature"),
    x_request_id: str | None = Header(default=None, alias="x-request-id"),
    store_id: str | None = Depends(get_optional_store_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> NotificationAck:
    """
    Payment webhook. Always 200; events with an invalid signature are
    logged and dropped.
    """
    payload = await _read_json(request)
    data_id = request.query_params.get("data.id") or str((payload.get("data") or {}).get("id") or "")

    if not verify_webhook_signature(x_signature, x_request_id, data_id):
        logger.warning("Webhook signature invalid, event dropped", data_id=data_id, store_id=store_id)
        return NotificationAck()

    logger.info(
        "Webhook received",
        action=payload.get("action"),
        type=payload.get("type"),
        data_id=data_id,
        store_id=store_id,
    )
    background_tasks.add_task(_process_webhook, engine, payload, store_id)
    return NotificationAck()


@router.get("/notifications/mercadopago")
async def ipn_probe(
    request: Request,
    background_tasks: BackgroundTasks,
    store_id: str | None = Depends(get_optional_store_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> dict:
    """
    Reachability check used when registering the IPN URL. A GET carrying
    id and topic is treated as a delivery.
    """
    resource_id, topic = parse_ipn(dict(request.query_params), {})
    if resource_id:
        logger.info("IPN received", payment_id=resource_id, topic=topic, store_id=store_id, method="GET")
        background_tasks.add_task(_process_ipn, engine, resource_id, topic, store_id)
    return {"status": "ready"}


@router.post("/notifications/mercadopago", response_model=NotificationAck)
async def mercadopago_ipn(
    request: Request,
    background_tasks: BackgroundTasks,
    store_id: str | None = Depends(get_optional_store_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> NotificationAck:
    """IPN delivery. Always 200; processing happens in the background."""
    body = await _read_json(request)
    resource_id, topic = parse_ipn(dict(request.query_params), body)

    if not resource_id:
        logger.warning("IPN without resource id", topic=topic, store_id=store_id)
        return NotificationAck()

    logger.info("IPN received", payment_id=resource_id, topic=topic, store_id=store_id)
    background_tasks.add_task(_process_ipn, engine, resource_id, topic, store_id)
    return NotificationAck()
