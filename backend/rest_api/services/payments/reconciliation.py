"""
Payment reconciliation engine.

Three independent signals report payment outcomes: client polling,
gateway webhooks and IPN notifications. All of them end up in apply(),
the single transition function:

    approved            + order pending  ->  paid / active,     stock confirmed
    rejected | canceled + order pending  ->  canceled / canceled, stock released
    anything            + order terminal ->  no-op (logged)
    pending                              ->  no-op

The order's payment_status leaves "pending" only through a conditional
UPDATE guarded by the expected prior state, committed in the same
transaction as the ledger mutation. Whichever signal lands first wins;
the others observe a lost compare-and-swap and change nothing, so each
order gets exactly one of {confirm, release}.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.config.constants import (
    CancelReason,
    GatewayStatus,
    NotificationTopic,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    reason_message,
)
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.redis.constants import get_payment_fingerprint_key
from rest_api.models import Order, utcnow
from rest_api.repositories import OrderRepository
from rest_api.services.domain.inventory_ledger import InventoryLedger
from rest_api.services.domain.order_service import OrderNotFound
from .cache import PaymentCache
from .credentials import GatewayFactory
from .gateway import (
    AmbiguousGatewayState,
    GatewayConflict,
    GatewayError,
    GatewayUnavailable,
    MercadoPagoGateway,
    PaymentObservation,
)


class DoubleTransitionAttempt(Exception):
    """A second terminal transition was attempted on an order."""

    def __init__(self, order_id: str, attempted: str, current: str):
        self.order_id = order_id
        self.attempted = attempted
        self.current = current
        super().__init__(
            f"Order {order_id} already {current}; refusing transition to {attempted}"
        )


# =============================================================================
# Outcome
# =============================================================================


_VIEW_STATUS = {
    PaymentStatus.PENDING: GatewayStatus.PENDING,
    PaymentStatus.PAID: GatewayStatus.APPROVED,
    PaymentStatus.AUTHORIZED: GatewayStatus.APPROVED,
    PaymentStatus.REJECTED: GatewayStatus.REJECTED,
    PaymentStatus.CANCELED: GatewayStatus.CANCELED,
}


def view_status(payment_status: str, reason: str | None) -> str:
    """Four-state view of a persisted order; rejections are told apart by reason."""
    if payment_status == PaymentStatus.CANCELED and reason in CancelReason.REJECTIONS:
        return GatewayStatus.REJECTED
    return _VIEW_STATUS.get(payment_status, GatewayStatus.PENDING)


@dataclass
class ReconciliationOutcome:
    """Persisted state of an order after a reconciliation attempt."""

    order_id: str
    tenant_id: str
    payment_id: str | None
    payment_method: str | None
    order_status: str
    payment_status: str
    reason: str | None = None
    transitioned: bool = False
    processing: bool = False

    @property
    def status(self) -> str:
        """Four-state view (pending / approved / rejected / canceled)."""
        return view_status(self.payment_status, self.reason)

    @property
    def message(self) -> str | None:
        return reason_message(self.reason)

    @classmethod
    def from_order(cls, order: Order, transitioned: bool = False, processing: bool = False) -> "ReconciliationOutcome":
        return cls(
            order_id=order.id,
            tenant_id=order.tenant_id,
            payment_id=order.payment_id,
            payment_method=order.payment_method,
            order_status=order.status,
            payment_status=order.payment_status,
            reason=order.payment_reason,
            transitioned=transitioned,
            processing=processing,
        )


# =============================================================================
# Engine
# =============================================================================


class ReconciliationEngine:
    """
    Drives orders from pending to a terminal payment state.

    Args:
        session_factory: callable returning a new SQLAlchemy Session
        gateways: builds the gateway adapter for a store
        cache: ephemeral payment fingerprints
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        gateways: GatewayFactory,
        cache: PaymentCache,
    ):
        self._session_factory = session_factory
        self._gateways = gateways
        self._cache = cache

    # -------------------------------------------------------------------------
    # The transition function
    # -------------------------------------------------------------------------

    def _transition(self, db: Session, order: Order, observation: PaymentObservation, source: str) -> bool:
        repo = OrderRepository(db)
        ledger = InventoryLedger(db)
        lines = [(item.product_id, item.quantity) for item in order.items]
        now = utcnow()

        if observation.status == GatewayStatus.APPROVED:
            target = PaymentStatus.PAID
            changed = repo.transition(
                order.id,
                expected_payment_status=PaymentStatus.PENDING,
                payment_status=PaymentStatus.PAID,
                status=OrderStatus.ACTIVE,
                settled_payment_id=observation.settled_payment_id,
                payment_reason=None,
                paid_at=now,
            )
            if changed:
                ledger.confirm_lines(order.tenant_id, lines)
        else:
            target = PaymentStatus.CANCELED
            if observation.status == GatewayStatus.REJECTED:
                reason = observation.reason or CancelReason.REJECTED_BY_GATEWAY
            else:
                reason = observation.reason or CancelReason.CANCELED_BY_SYSTEM
            changed = repo.transition(
                order.id,
                expected_payment_status=PaymentStatus.PENDING,
                payment_status=target,
                status=OrderStatus.CANCELED,
                payment_reason=reason,
                canceled_at=now,
            )
            if changed:
                ledger.release_lines(order.tenant_id, lines)

        if not changed:
            db.rollback()
            raise DoubleTransitionAttempt(order.id, target, order.payment_status)

        safe_commit(db)
        logger.info(
            "Order payment transitioned",
            order_id=order.id,
            tenant_id=order.tenant_id,
            payment_status=target,
            reason=None if target == PaymentStatus.PAID else reason,
            source=source,
        )
        return True

    async def apply(self, order_id: str, observation: PaymentObservation, source: str) -> ReconciliationOutcome:
        """
        Apply one gateway observation to an order.

        Idempotent: replaying the same or a conflicting observation on a
        terminal order changes nothing and returns the persisted state.
        """
        with self._session_factory() as db:
            order = OrderRepository(db).get(order_id)
            if order is None:
                raise OrderNotFound(order_id)

            if observation.external_reference and observation.external_reference != order.id:
                logger.warning(
                    "Observation references a different order, ignoring",
                    order_id=order.id,
                    external_reference=observation.external_reference,
                    source=source,
                )
                return ReconciliationOutcome.from_order(order)

            if observation.status == GatewayStatus.PENDING:
                return ReconciliationOutcome.from_order(order)

            if order.payment_status != PaymentStatus.PENDING:
                self._log_ignored(order, observation, source)
                return ReconciliationOutcome.from_order(order)

            try:
                self._transition(db, order, observation, source)
                transitioned = True
            except DoubleTransitionAttempt as e:
                db.expire_all()
                order = OrderRepository(db).get(order_id)
                logger.warning(
                    "Concurrent payment transition lost",
                    order_id=e.order_id,
                    attempted=e.attempted,
                    current=order.payment_status,
                    source=source,
                )
                self._log_ignored(order, observation, source)
                transitioned = False
            else:
                order = OrderRepository(db).get(order_id)

            outcome = ReconciliationOutcome.from_order(order, transitioned=transitioned)

        if outcome.transitioned:
            await self._after_transition(outcome, observation)
        return outcome

    def _log_ignored(self, order: Order, observation: PaymentObservation, source: str) -> None:
        late_approval = (
            observation.status == GatewayStatus.APPROVED
            and order.payment_status not in PaymentStatus.SETTLED
        )
        if late_approval:
            # Money captured for an order that already released its stock
            logger.warning(
                "Approval received for an order that is no longer payable",
                order_id=order.id,
                tenant_id=order.tenant_id,
                payment_status=order.payment_status,
                settled_payment_id=observation.settled_payment_id,
                source=source,
            )
        else:
            logger.info(
                "Observation ignored, order already terminal",
                order_id=order.id,
                payment_status=order.payment_status,
                observed=observation.status,
                source=source,
            )

    async def _after_transition(self, outcome: ReconciliationOutcome, observation: PaymentObservation) -> None:
        """Best-effort side effects: fingerprint cache and terminal queue cleanup."""
        cache_ids = {i for i in (outcome.payment_id, observation.settled_payment_id) if i}
        for payment_id in cache_ids:
            key = get_payment_fingerprint_key(outcome.tenant_id, payment_id)
            if outcome.status == GatewayStatus.APPROVED:
                await self._cache.put(key, {"order_id": outcome.order_id, **observation.to_snapshot()})
            else:
                await self._cache.delete(key)

        if outcome.payment_method in PaymentMethod.CARD:
            try:
                gateway = self._gateway_for(outcome.tenant_id)
                await gateway.clear_pending_queue()
            except GatewayError as e:
                logger.warning("Terminal queue cleanup skipped", order_id=outcome.order_id, error=str(e))

    # -------------------------------------------------------------------------
    # Gateway helpers
    # -------------------------------------------------------------------------

    def _gateway_for(self, tenant_id: str | None) -> MercadoPagoGateway:
        with self._session_factory() as db:
            return self._gateways.for_tenant(db, tenant_id)

    async def _observe(self, gateway: MercadoPagoGateway, payment_id: str, order_ref: str) -> PaymentObservation:
        """get_status with the secondary lookup for FINISHED-without-settlement."""
        try:
            return await gateway.get_status(payment_id)
        except AmbiguousGatewayState as e:
            reference = e.external_reference or order_ref
            found = await gateway.search_by_reference(reference)
            if found is None or found.status == GatewayStatus.PENDING:
                logger.info(
                    "Intent finished without settlement, staying pending",
                    payment_id=payment_id,
                    external_reference=reference,
                )
                return PaymentObservation(
                    status=GatewayStatus.PENDING,
                    intent_id=payment_id,
                    external_reference=reference,
                    raw_status="FINISHED",
                )
            found.intent_id = payment_id
            return found

    async def cancel_at_gateway(self, tenant_id: str, payment_id: str, method: str | None = None) -> bool:
        """Best-effort cancel of an intent; gateway, transport and database failures are logged and return False."""
        try:
            gateway = self._gateway_for(tenant_id)
            cancelled = await gateway.cancel(payment_id, method=method)
            if method in PaymentMethod.CARD:
                await gateway.clear_pending_queue()
            return cancelled
        except GatewayConflict:
            logger.warning("Intent in processing on terminal, not cancelled", payment_id=payment_id)
        except GatewayError as e:
            logger.warning("Gateway cancel failed", payment_id=payment_id, error=str(e))
        except (httpx.HTTPError, SQLAlchemyError) as e:
            logger.error("Gateway cancel failed unexpectedly", payment_id=payment_id, error=str(e), exc_info=True)
        return False

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    async def poll(self, tenant_id: str, order_id: str) -> ReconciliationOutcome:
        """Client polling trigger for an order."""
        with self._session_factory() as db:
            order = OrderRepository(db).get(order_id, tenant_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.payment_status != PaymentStatus.PENDING or not order.payment_id:
                return ReconciliationOutcome.from_order(order)
            pending = ReconciliationOutcome.from_order(order)
            try:
                gateway = self._gateways.for_tenant(db, tenant_id)
            except GatewayUnavailable as e:
                logger.warning("Poll without gateway", order_id=order_id, error=str(e))
                pending.processing = True
                return pending

        try:
            observation = await self._observe(gateway, pending.payment_id, order_id)
        except GatewayUnavailable as e:
            logger.info("Gateway unavailable during poll", order_id=order_id, reason=e.reason)
            pending.processing = True
            return pending

        outcome = await self.apply(order_id, observation, source="poll")
        if observation.raw_status == "FINISHED" and outcome.status == GatewayStatus.PENDING:
            outcome.processing = True
        return outcome

    async def poll_payment(self, tenant_id: str, payment_id: str) -> tuple[ReconciliationOutcome | None, PaymentObservation | None]:
        """
        Poll by gateway id. When the id belongs to one of the store's orders
        the order is reconciled; otherwise only the observation is returned.
        """
        with self._session_factory() as db:
            order = OrderRepository(db).get_by_payment_id(payment_id, tenant_id)
            order_id = order.id if order is not None else None

        if order_id is not None:
            return await self.poll(tenant_id, order_id), None

        gateway = self._gateway_for(tenant_id)
        return None, await self._observe(gateway, payment_id, payment_id)

    async def cancel_by_client(self, tenant_id: str, order_id: str) -> ReconciliationOutcome:
        """
        Client pressed cancel: the order is cancelled locally, stock released.
        The gateway-side cancel is scheduled by the caller via cancel_at_gateway().
        """
        with self._session_factory() as db:
            order = OrderRepository(db).get(order_id, tenant_id)
            if order is None:
                raise OrderNotFound(order_id)
            payment_id = order.payment_id

        observation = PaymentObservation(
            status=GatewayStatus.CANCELED,
            reason=CancelReason.CANCELED_BY_USER,
            intent_id=payment_id,
        )
        return await self.apply(order_id, observation, source="client_cancel")

    def _resolve_tenant(self, db: Session, payment_id: str, store_hint: str | None) -> str | None:
        if store_hint:
            return store_hint
        order = OrderRepository(db).get_by_payment_id(payment_id)
        if order is not None:
            return order.tenant_id
        logger.info("Notification without store, using default credentials", payment_id=payment_id)
        return None

    async def process_payment_notification(
        self,
        payment_id: str,
        store_hint: str | None,
        source: str,
    ) -> ReconciliationOutcome | None:
        """Handle a 'payment' notification (webhook or IPN topic=payment)."""
        with self._session_factory() as db:
            tenant_id = self._resolve_tenant(db, payment_id, store_hint)
            known = OrderRepository(db).get_by_payment_id(payment_id, tenant_id)
            known_terminal = known is not None and known.payment_status != PaymentStatus.PENDING
            known_outcome = ReconciliationOutcome.from_order(known) if known is not None else None
            gateway = self._gateways.for_tenant(db, tenant_id)

        if known_terminal and tenant_id:
            cached = await self._cache.get(get_payment_fingerprint_key(tenant_id, payment_id))
            if cached is not None:
                logger.info("Duplicate notification for settled payment", payment_id=payment_id, source=source)
                return known_outcome

        observation = await gateway.get_payment(payment_id)
        if observation is None:
            logger.warning("Notified payment not found at gateway", payment_id=payment_id, source=source)
            return None

        order_id = observation.external_reference or (known_outcome.order_id if known_outcome else None)
        if not order_id:
            logger.warning("Notified payment has no order reference", payment_id=payment_id, source=source)
            return None

        with self._session_factory() as db:
            order = OrderRepository(db).get(order_id, tenant_id)
            if order is None:
                logger.warning(
                    "Notified payment references unknown order",
                    payment_id=payment_id,
                    order_id=order_id,
                    tenant_id=tenant_id,
                    source=source,
                )
                return None

        return await self.apply(order_id, observation, source=source)

    async def handle_webhook(self, payload: dict[str, Any], store_hint: str | None = None) -> ReconciliationOutcome | None:
        """Webhook body: {"action": "payment.updated", "data": {"id": ...}}."""
        action = payload.get("action")
        kind = payload.get("type") or payload.get("topic")
        if action not in NotificationTopic.PAYMENT_ACTIONS and kind != NotificationTopic.PAYMENT:
            logger.debug("Webhook ignored", action=action, type=kind)
            return None

        payment_id = (payload.get("data") or {}).get("id")
        if not payment_id:
            logger.warning("Webhook without payment id", action=action)
            return None
        return await self.process_payment_notification(str(payment_id), store_hint, source="webhook")

    async def handle_ipn(self, resource_id: str, topic: str | None, store_hint: str | None = None) -> ReconciliationOutcome | None:
        """IPN: topic point_integration_ipn (terminal intent) or payment (PIX)."""
        if topic == NotificationTopic.PAYMENT:
            return await self.process_payment_notification(resource_id, store_hint, source="ipn")

        if topic != NotificationTopic.POINT_INTENT:
            logger.debug("IPN ignored", topic=topic, resource_id=resource_id)
            return None

        with self._session_factory() as db:
            tenant_id = self._resolve_tenant(db, resource_id, store_hint)
            order = OrderRepository(db).get_by_payment_id(resource_id, tenant_id)
            if order is None:
                logger.warning("IPN for unknown terminal intent", payment_id=resource_id, tenant_id=tenant_id)
                return None
            order_id = order.id
            gateway = self._gateways.for_tenant(db, order.tenant_id)

        observation = await self._observe(gateway, resource_id, order_id)
        return await self.apply(order_id, observation, source="ipn")

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    async def expire_stale(self, now: datetime | None = None, timeout_minutes: int | None = None) -> list[str]:
        """
        Cancel orders still pending after the payment window, releasing their
        stock. Orders whose intent already settled at the gateway are
        reconciled instead. Returns the ids of the orders expired.
        """
        now = now or utcnow()
        minutes = timeout_minutes or settings.order_payment_timeout_minutes
        cutoff = now - timedelta(minutes=minutes)

        with self._session_factory() as db:
            stale = [
                (o.id, o.tenant_id, o.payment_id, o.payment_method)
                for o in OrderRepository(db).list_pending_older_than(cutoff)
            ]

        expired: list[str] = []
        for order_id, tenant_id, payment_id, method in stale:
            try:
                if payment_id:
                    try:
                        gateway = self._gateway_for(tenant_id)
                        observation = await self._observe(gateway, payment_id, order_id)
                    except GatewayError:
                        observation = None
                    if observation is not None and observation.is_terminal:
                        await self.apply(order_id, observation, source="expiry_check")
                        continue

                outcome = await self.apply(
                    order_id,
                    PaymentObservation(
                        status=GatewayStatus.CANCELED,
                        reason=CancelReason.TIMEOUT,
                        intent_id=payment_id,
                    ),
                    source="expiry",
                )
                if outcome.transitioned:
                    expired.append(order_id)
                    if payment_id:
                        await self.cancel_at_gateway(tenant_id, payment_id, method)
            except Exception as e:
                logger.error("Expiry failed for order", order_id=order_id, error=str(e), exc_info=True)

        if expired:
            logger.info("Expired stale orders", count=len(expired), cutoff=cutoff.isoformat())
        return expired


async def start_expiry_sweeper(engine: ReconciliationEngine, interval_seconds: float) -> None:
    """Background loop expiring orders past the payment window."""
    logger.info("Order expiry sweeper started", interval_seconds=interval_seconds)
    while True:
        try:
            await engine.expire_stale()
        except Exception as e:
            logger.error("Order expiry sweeper error", error=str(e))
        await asyncio.sleep(interval_seconds)
