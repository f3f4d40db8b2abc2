"""
Mercado Pago gateway adapter.

Wraps the two Mercado Pago surfaces the kiosk uses:
- Payments API (/v1/payments): PIX charges, payment lookups and search
- Point Integration API (/point/integration-api): card intents queued on a
  physical terminal, intent lookups, cancellation and queue cleanup

Every response is reduced to a PaymentObservation whose status is one of
GatewayStatus.{PENDING, APPROVED, REJECTED, CANCELED}. Callers never see
raw provider states.

All calls go through the Mercado Pago circuit breaker. Transport errors,
5xx responses and an open circuit surface as GatewayUnavailable.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from shared.config.constants import (
    CancelReason,
    GatewayStatus,
    MPPaymentStatus,
    PaymentMethod,
    PointIntentState,
)
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from .circuit_breaker import CircuitBreaker, CircuitBreakerError, mercadopago_breaker


# =============================================================================
# Errors
# =============================================================================


class GatewayError(Exception):
    """Base class for gateway adapter errors."""


class GatewayUnavailable(GatewayError):
    """Gateway unreachable, failing, unconfigured or circuit open."""

    def __init__(self, reason: str, retry_after: float | None = None):
        self.reason = reason
        self.retry_after = retry_after
        super().__init__(f"Payment gateway unavailable: {reason}")


class GatewayRequestError(GatewayError):
    """Gateway refused a request (4xx other than the documented cases)."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Gateway rejected request ({status_code}): {message}")


class GatewayConflict(GatewayError):
    """Intent is being processed on the terminal and cannot be cancelled."""

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Intent {intent_id} is being processed and cannot be cancelled")


class AmbiguousGatewayState(GatewayError):
    """Intent reports FINISHED but carries no settled payment id."""

    def __init__(self, intent_id: str, external_reference: str | None):
        self.intent_id = intent_id
        self.external_reference = external_reference
        super().__init__(f"Intent {intent_id} finished without a settled payment id")


class _ServerError(Exception):
    """5xx from the gateway; counted as a breaker failure."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Gateway returned {status_code}")


# =============================================================================
# Value objects
# =============================================================================


@dataclass(frozen=True)
class GatewayCredentials:
    """Access token and terminal for one store."""

    access_token: str
    device_id: str | None = None
    tenant_id: str | None = None
    is_default: bool = False


@dataclass
class PaymentObservation:
    """Normalized gateway reading for one intent or payment."""

    status: str
    reason: str | None = None
    intent_id: str | None = None
    settled_payment_id: str | None = None
    external_reference: str | None = None
    amount_cents: int | None = None
    raw_status: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in GatewayStatus.TERMINAL

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "intent_id": self.intent_id,
            "settled_payment_id": self.settled_payment_id,
            "external_reference": self.external_reference,
            "amount_cents": self.amount_cents,
            "raw_status": self.raw_status,
        }


@dataclass
class PixIntent:
    intent_id: str
    qr_text: str | None = None
    qr_image: str | None = None
    ticket_url: str | None = None
    raw_status: str | None = None


@dataclass
class CardIntent:
    intent_id: str
    device_id: str
    raw: dict[str, Any] = field(default_factory=dict)


def _to_cents(amount: Any) -> int | None:
    if amount is None:
        return None
    try:
        return int(round(float(amount) * 100))
    except (TypeError, ValueError):
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


# =============================================================================
# Adapter
# =============================================================================


class MercadoPagoGateway:
    """
    Mercado Pago adapter bound to one store's credentials.

    Args:
        credentials: token and terminal for the store
        client: optional shared httpx.AsyncClient (tests inject one built on
            httpx.MockTransport); when omitted a client is opened per call
        breaker: circuit breaker guarding every call
    """

    def __init__(
        self,
        credentials: GatewayCredentials,
        client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker = mercadopago_breaker,
        base_url: str | None = None,
        timeout: float | None = None,
        notification_url: str | None = None,
    ):
        if not credentials.access_token:
            raise GatewayUnavailable("no access token configured")
        self._credentials = credentials
        self._client = client
        self._breaker = breaker
        self._base_url = (base_url or settings.mercadopago_api_url).rstrip("/")
        self._timeout = timeout or settings.gateway_timeout_seconds
        self._notification_url = notification_url

    @property
    def credentials(self) -> GatewayCredentials:
        return self._credentials

    @property
    def device_id(self) -> str | None:
        return self._credentials.device_id

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await client.request(method, url, **kwargs)
        if response.status_code >= 500:
            raise _ServerError(response.status_code)
        return response

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """One breaker-guarded HTTP call. Non-5xx responses are returned as-is."""
        all_headers = {"Authorization": f"Bearer {self._credentials.access_token}"}
        if headers:
            all_headers.update(headers)
        url = f"{self._base_url}{path}"
        started = time.monotonic()

        try:
            async with self._breaker.call():
                if self._client is not None:
                    response = await self._send(
                        self._client, method, url, json=json, params=params, headers=all_headers
                    )
                else:
                    async with httpx.AsyncClient(timeout=self._timeout) as client:
                        response = await self._send(
                            client, method, url, json=json, params=params, headers=all_headers
                        )
        except CircuitBreakerError as e:
            raise GatewayUnavailable("circuit open", retry_after=e.retry_after) from e
        except _ServerError as e:
            logger.warning("Gateway server error", method=method, path=path, status_code=e.status_code)
            raise GatewayUnavailable(f"gateway returned {e.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("Gateway transport error", method=method, path=path, error=str(e))
            raise GatewayUnavailable(f"transport error: {type(e).__name__}") from e

        logger.debug(
            "Gateway call",
            method=method,
            path=path,
            status_code=response.status_code,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return response

    async def _get_json(self, path: str, params: dict | None = None) -> dict | None:
        """GET returning the JSON body, or None for any 4xx (resource not found / not ours)."""
        response = await self._request("GET", path, params=params)
        if response.status_code >= 400:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # Intent creation
    # -------------------------------------------------------------------------

    async def create_pix_intent(
        self,
        amount_cents: int,
        order_ref: str,
        payer_email: str | None = None,
        description: str | None = None,
    ) -> PixIntent:
        """Create an instant-transfer (PIX) charge; returns QR image and text."""
        payload: dict[str, Any] = {
            "transaction_amount": round(amount_cents / 100, 2),
            "description": description or f"Order {order_ref}",
            "payment_method_id": "pix",
            "external_reference": order_ref,
            "payer": {"email": payer_email or settings.mercadopago_payer_email},
        }
        if self._notification_url:
            payload["notification_url"] = self._notification_url

        response = await self._request(
            "POST",
            "/v1/payments",
            json=payload,
            headers={"X-Idempotency-Key": f"pix_{order_ref}"},
        )
        if response.status_code >= 400:
            raise GatewayRequestError(response.status_code, _error_message(response))

        body = response.json()
        transaction = (body.get("point_of_interaction") or {}).get("transaction_data") or {}
        intent = PixIntent(
            intent_id=str(body["id"]),
            qr_text=transaction.get("qr_code"),
            qr_image=transaction.get("qr_code_base64"),
            ticket_url=transaction.get("ticket_url"),
            raw_status=body.get("status"),
        )
        logger.info("PIX intent created", order_id=order_ref, payment_id=intent.intent_id)
        return intent

    async def create_card_intent(
        self,
        amount_cents: int,
        order_ref: str,
        device_id: str | None = None,
        method: str | None = None,
        description: str | None = None,
    ) -> CardIntent:
        """Queue a card payment on the store's terminal."""
        device = device_id or self._credentials.device_id
        if not device:
            raise GatewayUnavailable("no terminal configured for this store")

        payload: dict[str, Any] = {
            "amount": int(amount_cents),
            "description": description or f"Order {order_ref}",
            "additional_info": {
                "external_reference": order_ref,
                "print_on_terminal": True,
            },
        }
        if method in PaymentMethod.CARD:
            payload["payment"] = {
                "type": "debit_card" if method == PaymentMethod.DEBIT else "credit_card",
                "installments": 1,
                "installments_cost": "buyer",
            }

        response = await self._request(
            "POST",
            f"/point/integration-api/devices/{device}/payment-intents",
            json=payload,
        )
        if response.status_code == 409:
            # Terminal already has an intent queued
            raise GatewayConflict(order_ref)
        if response.status_code >= 400:
            raise GatewayRequestError(response.status_code, _error_message(response))

        body = response.json()
        intent = CardIntent(intent_id=str(body["id"]), device_id=device, raw=body)
        logger.info(
            "Card intent created",
            order_id=order_ref,
            payment_id=intent.intent_id,
            device_id=device,
            method=method,
        )
        return intent

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _observe_payment(
        self,
        payment: dict,
        intent_id: str | None = None,
        via_terminal: bool = False,
    ) -> PaymentObservation:
        raw = payment.get("status")
        payment_id = str(payment["id"]) if payment.get("id") is not None else None
        observation = PaymentObservation(
            status=GatewayStatus.PENDING,
            intent_id=intent_id or payment_id,
            external_reference=payment.get("external_reference"),
            amount_cents=_to_cents(payment.get("transaction_amount")),
            raw_status=raw,
        )
        if raw in MPPaymentStatus.SUCCESS:
            observation.status = GatewayStatus.APPROVED
            observation.settled_payment_id = payment_id
        elif raw == MPPaymentStatus.REJECTED:
            observation.status = GatewayStatus.REJECTED
            observation.reason = (
                CancelReason.REJECTED_BY_TERMINAL if via_terminal else CancelReason.REJECTED_BY_GATEWAY
            )
        elif raw in MPPaymentStatus.VOIDED:
            observation.status = GatewayStatus.CANCELED
            observation.reason = CancelReason.CANCELED_BY_SYSTEM
        return observation

    async def _observe_intent(self, intent_id: str, intent: dict) -> PaymentObservation:
        state = intent.get("state")
        settled_id = (intent.get("payment") or {}).get("id")
        external_reference = (intent.get("additional_info") or {}).get("external_reference")

        if settled_id:
            payment = await self._get_json(f"/v1/payments/{settled_id}")
            if payment is None:
                # Settlement id known but payment not readable yet
                return PaymentObservation(
                    status=GatewayStatus.PENDING,
                    intent_id=intent_id,
                    external_reference=external_reference,
                    raw_status=state,
                )
            observation = self._observe_payment(payment, intent_id=intent_id, via_terminal=True)
            observation.external_reference = observation.external_reference or external_reference
            return observation

        if state == PointIntentState.CANCELED:
            return PaymentObservation(
                status=GatewayStatus.CANCELED,
                reason=CancelReason.CANCELED_BY_USER,
                intent_id=intent_id,
                external_reference=external_reference,
                raw_status=state,
            )
        if state == PointIntentState.ERROR:
            return PaymentObservation(
                status=GatewayStatus.CANCELED,
                reason=CancelReason.PAYMENT_ERROR,
                intent_id=intent_id,
                external_reference=external_reference,
                raw_status=state,
            )
        if state == PointIntentState.FINISHED:
            raise AmbiguousGatewayState(intent_id, external_reference)

        return PaymentObservation(
            status=GatewayStatus.PENDING,
            intent_id=intent_id,
            external_reference=external_reference,
            raw_status=state,
        )

    async def get_status(self, intent_id: str) -> PaymentObservation:
        """
        Dual probe: terminal intent first, then the payments resource.

        Raises:
            AmbiguousGatewayState: intent FINISHED without a settled payment id
            GatewayUnavailable
        """
        intent = await self._get_json(f"/point/integration-api/payment-intents/{intent_id}")
        if intent is not None:
            return await self._observe_intent(intent_id, intent)

        payment = await self._get_json(f"/v1/payments/{intent_id}")
        if payment is not None:
            return self._observe_payment(payment, intent_id=intent_id)

        logger.info("Intent not found on either resource", payment_id=intent_id)
        return PaymentObservation(status=GatewayStatus.PENDING, intent_id=intent_id, raw_status="not_found")

    async def get_payment(self, payment_id: str) -> PaymentObservation | None:
        """Direct payment lookup (webhook path)."""
        payment = await self._get_json(f"/v1/payments/{payment_id}")
        if payment is None:
            return None
        return self._observe_payment(payment)

    async def search_by_reference(self, external_reference: str) -> PaymentObservation | None:
        """
        Secondary lookup by order reference.

        Prefers an approved payment when several exist, else the newest.
        """
        body = await self._get_json(
            "/v1/payments/search",
            params={
                "external_reference": external_reference,
                "sort": "date_created",
                "criteria": "desc",
            },
        )
        results = (body or {}).get("results") or []
        if not results:
            return None

        chosen = next(
            (r for r in results if r.get("status") in MPPaymentStatus.SUCCESS),
            results[0],
        )
        observation = self._observe_payment(chosen, via_terminal=True)
        observation.external_reference = observation.external_reference or external_reference
        return observation

    # -------------------------------------------------------------------------
    # Cancellation / terminal queue
    # -------------------------------------------------------------------------

    async def _cancel_payment(self, payment_id: str) -> bool:
        response = await self._request(
            "PUT", f"/v1/payments/{payment_id}", json={"status": "cancelled"}
        )
        if response.status_code < 400 or response.status_code == 404:
            return True
        logger.info(
            "Payment not cancellable",
            payment_id=payment_id,
            status_code=response.status_code,
            message=_error_message(response),
        )
        return False

    async def cancel(self, intent_id: str, method: str | None = None) -> bool:
        """
        Cancel an intent. Already-gone intents count as cancelled.

        Card intents are deleted from the terminal queue (409 means the
        customer is mid-payment: GatewayConflict). PIX charges, or intents
        the terminal does not know, are cancelled on the payments resource.
        """
        device = self._credentials.device_id
        if method != PaymentMethod.PIX and device:
            response = await self._request(
                "DELETE", f"/point/integration-api/devices/{device}/payment-intents/{intent_id}"
            )
            if response.status_code < 400:
                logger.info("Terminal intent cancelled", payment_id=intent_id, device_id=device)
                return True
            if response.status_code == 409:
                raise GatewayConflict(intent_id)
            if response.status_code == 404 and method in PaymentMethod.CARD:
                return True

        return await self._cancel_payment(intent_id)

    async def clear_pending_queue(self, device_id: str | None = None, delay: float | None = None) -> int:
        """
        Delete every intent queued on the terminal. Best-effort: failures are
        logged and the number actually removed is returned.
        """
        device = device_id or self._credentials.device_id
        if not device:
            return 0
        delay = settings.clear_queue_delay_seconds if delay is None else delay

        try:
            body = await self._get_json(f"/point/integration-api/devices/{device}/payment-intents")
        except GatewayUnavailable as e:
            logger.warning("Could not list terminal queue", device_id=device, error=str(e))
            return 0

        events = (body or {}).get("events") or []
        cleared = 0
        for event in events:
            intent_id = event.get("payment_intent_id") or event.get("id")
            if not intent_id:
                continue
            try:
                response = await self._request(
                    "DELETE", f"/point/integration-api/devices/{device}/payment-intents/{intent_id}"
                )
            except GatewayUnavailable as e:
                logger.warning("Queue cleanup aborted", device_id=device, error=str(e))
                break
            if response.status_code < 400 or response.status_code == 404:
                cleared += 1
            else:
                logger.info(
                    "Queued intent not removed",
                    device_id=device,
                    payment_id=intent_id,
                    status_code=response.status_code,
                )
            if delay:
                await asyncio.sleep(delay)

        if cleared:
            logger.info("Terminal queue cleared", device_id=device, cleared=cleared)
        return cleared

    # -------------------------------------------------------------------------
    # Terminal device
    # -------------------------------------------------------------------------

    async def get_device(self, device_id: str | None = None) -> dict:
        device = device_id or self._credentials.device_id
        if not device:
            raise GatewayUnavailable("no terminal configured for this store")
        response = await self._request("GET", f"/point/integration-api/devices/{device}")
        if response.status_code >= 400:
            raise GatewayRequestError(response.status_code, _error_message(response))
        return response.json()

    async def configure_device(self, device_id: str | None = None, mode: str = "PDV") -> dict:
        """Switch the terminal to integrated (PDV) mode so it accepts API intents."""
        device = device_id or self._credentials.device_id
        if not device:
            raise GatewayUnavailable("no terminal configured for this store")
        response = await self._request(
            "PATCH",
            f"/point/integration-api/devices/{device}",
            json={"operating_mode": mode},
        )
        if response.status_code >= 400:
            raise GatewayRequestError(response.status_code, _error_message(response))
        logger.info("Terminal configured", device_id=device, mode=mode)
        return response.json()
