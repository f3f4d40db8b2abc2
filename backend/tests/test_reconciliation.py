"""
Tests for the payment reconciliation engine.

Covers convergence of the three signals (poll, webhook, IPN), idempotent
replays, the ambiguous FINISHED intent, late approvals and the expiry
sweep.
"""

import asyncio
from datetime import timedelta

import httpx
import pytest

from rest_api.models import Order, utcnow
from rest_api.repositories import OrderRepository
from rest_api.services.domain import OrderNotFound, OrderService
from rest_api.services.payments.gateway import PaymentObservation
from rest_api.services.payments.reconciliation import (
    DoubleTransitionAttempt,
    ReconciliationOutcome,
    view_status,
)
from shared.config.constants import CancelReason, GatewayStatus, OrderStatus, PaymentMethod, PaymentStatus
from shared.infrastructure.redis.constants import get_payment_fingerprint_key


def approved(order_id, intent_id, settled="pay-900"):
    return PaymentObservation(
        status=GatewayStatus.APPROVED,
        intent_id=intent_id,
        settled_payment_id=settled,
        external_reference=order_id,
    )


@pytest.fixture
def pending_order(db_session, seed_products):
    """Order for 2 burgers with a card intent attached."""
    service = OrderService(db_session)
    order = service.create_order("store-1", "Ana", [(seed_products["burger"].id, 2)])
    service.attach_payment(order, "intent-1", PaymentMethod.CREDIT)
    return order


@pytest.fixture
def pix_order(db_session, seed_products):
    service = OrderService(db_session)
    order = service.create_order("store-1", "Bo", [(seed_products["soda"].id, 2)])
    service.attach_payment(order, "777", PaymentMethod.PIX)
    return order


def reload(db_session, order_id) -> Order:
    db_session.expire_all()
    return db_session.get(Order, order_id)


class TestApply:

    @pytest.mark.asyncio
    async def test_approval_confirms_stock(self, reconciliation, db_session, pending_order, seed_products, stock_of):
        outcome = await reconciliation.apply(pending_order.id, approved(pending_order.id, "intent-1"), source="poll")

        assert outcome.transitioned is True
        assert outcome.status == GatewayStatus.APPROVED
        order = reload(db_session, pending_order.id)
        assert order.payment_status == PaymentStatus.PAID
        assert order.status == OrderStatus.ACTIVE
        assert order.settled_payment_id == "pay-900"
        assert order.paid_at is not None
        assert stock_of(seed_products["burger"]) == (8, 0)

    @pytest.mark.asyncio
    async def test_rejection_releases_stock(self, reconciliation, db_session, pending_order, seed_products, stock_of):
        observation = PaymentObservation(
            status=GatewayStatus.REJECTED,
            reason=CancelReason.REJECTED_BY_TERMINAL,
            intent_id="intent-1",
        )
        outcome = await reconciliation.apply(pending_order.id, observation, source="webhook")

        assert outcome.status == GatewayStatus.REJECTED
        assert outcome.reason == CancelReason.REJECTED_BY_TERMINAL
        order = reload(db_session, pending_order.id)
        assert order.status == OrderStatus.CANCELED
        assert order.payment_status == PaymentStatus.CANCELED
        assert order.payment_reason == CancelReason.REJECTED_BY_TERMINAL
        assert stock_of(seed_products["burger"]) == (10, 0)

    @pytest.mark.asyncio
    async def test_cancel_without_reason_defaults_to_system(self, reconciliation, pending_order):
        outcome = await reconciliation.apply(
            pending_order.id, PaymentObservation(status=GatewayStatus.CANCELED), source="ipn"
        )
        assert outcome.reason == CancelReason.CANCELED_BY_SYSTEM
        assert outcome.message

    @pytest.mark.asyncio
    async def test_pending_observation_changes_nothing(self, reconciliation, pending_order, seed_products, stock_of):
        outcome = await reconciliation.apply(
            pending_order.id, PaymentObservation(status=GatewayStatus.PENDING), source="poll"
        )
        assert outcome.transitioned is False
        assert outcome.status == GatewayStatus.PENDING
        assert stock_of(seed_products["burger"]) == (10, 2)

    @pytest.mark.asyncio
    async def test_replayed_approval_is_idempotent(self, reconciliation, pending_order, seed_products, stock_of):
        observation = approved(pending_order.id, "intent-1")

        first = await reconciliation.apply(pending_order.id, observation, source="poll")
        second = await reconciliation.apply(pending_order.id, observation, source="webhook")
        third = await reconciliation.apply(pending_order.id, observation, source="ipn")

        assert first.transitioned is True
        assert second.transitioned is False
        assert third.transitioned is False
        assert third.status == GatewayStatus.APPROVED
        assert stock_of(seed_products["burger"]) == (8, 0)

    @pytest.mark.asyncio
    async def test_cancel_after_approval_is_ignored(self, reconciliation, db_session, pending_order, seed_products, stock_of):
        await reconciliation.apply(pending_order.id, approved(pending_order.id, "intent-1"), source="webhook")
        outcome = await reconciliation.apply(
            pending_order.id,
            PaymentObservation(status=GatewayStatus.CANCELED, reason=CancelReason.TIMEOUT),
            source="expiry",
        )

        assert outcome.transitioned is False
        assert outcome.status == GatewayStatus.APPROVED
        assert stock_of(seed_products["burger"]) == (8, 0)

    @pytest.mark.asyncio
    async def test_late_approval_does_not_resurrect_order(self, reconciliation, db_session, pending_order, seed_products, stock_of):
        await reconciliation.apply(
            pending_order.id,
            PaymentObservation(status=GatewayStatus.CANCELED, reason=CancelReason.TIMEOUT),
            source="expiry",
        )
        outcome = await reconciliation.apply(pending_order.id, approved(pending_order.id, "intent-1"), source="webhook")

        assert outcome.transitioned is False
        assert outcome.status == GatewayStatus.CANCELED
        assert reload(db_session, pending_order.id).status == OrderStatus.CANCELED
        assert stock_of(seed_products["burger"]) == (10, 0)

    @pytest.mark.asyncio
    async def test_observation_for_other_order_is_ignored(self, reconciliation, pending_order, seed_products, stock_of):
        outcome = await reconciliation.apply(
            pending_order.id, approved("order_someone_else", "intent-1"), source="webhook"
        )
        assert outcome.transitioned is False
        assert stock_of(seed_products["burger"]) == (10, 2)

    @pytest.mark.asyncio
    async def test_concurrent_signals_transition_once(self, reconciliation, pending_order, seed_products, stock_of):
        observation = approved(pending_order.id, "intent-1")

        outcomes = await asyncio.gather(
            reconciliation.apply(pending_order.id, observation, source="poll"),
            reconciliation.apply(pending_order.id, observation, source="webhook"),
            reconciliation.apply(pending_order.id, observation, source="ipn"),
        )

        assert sum(o.transitioned for o in outcomes) == 1
        assert stock_of(seed_products["burger"]) == (8, 0)

    @pytest.mark.asyncio
    async def test_rejection_without_reason_is_gateway_rejection(self, reconciliation, db_session, pending_order):
        outcome = await reconciliation.apply(
            pending_order.id, PaymentObservation(status=GatewayStatus.REJECTED), source="webhook"
        )

        assert outcome.status == GatewayStatus.REJECTED
        assert outcome.reason == CancelReason.REJECTED_BY_GATEWAY
        assert reload(db_session, pending_order.id).payment_status == PaymentStatus.CANCELED


class TestCompareAndSwap:

    @pytest.mark.asyncio
    async def test_stale_order_loses_transition(
        self, reconciliation, session_factory, pending_order, seed_products, stock_of
    ):
        stale_session = session_factory()
        try:
            stale = OrderRepository(stale_session).get(pending_order.id)
            assert stale.payment_status == PaymentStatus.PENDING

            await reconciliation.apply(pending_order.id, approved(pending_order.id, "intent-1"), source="webhook")
            assert stock_of(seed_products["burger"]) == (8, 0)

            rejection = PaymentObservation(status=GatewayStatus.REJECTED, intent_id="intent-1")
            with pytest.raises(DoubleTransitionAttempt) as exc_info:
                reconciliation._transition(stale_session, stale, rejection, source="poll")
        finally:
            stale_session.close()

        assert exc_info.value.order_id == pending_order.id
        assert exc_info.value.attempted == PaymentStatus.CANCELED
        assert stock_of(seed_products["burger"]) == (8, 0)

    @pytest.mark.asyncio
    async def test_apply_returns_winner_state_when_cas_lost(
        self, reconciliation, session_factory, db_session, pending_order, seed_products, stock_of, monkeypatch
    ):
        transition = reconciliation._transition

        def settled_by_another_signal(db, order, observation, source):
            with session_factory() as other:
                competing = OrderRepository(other).get(order.id)
                transition(other, competing, approved(order.id, "intent-1"), "webhook")
            return transition(db, order, observation, source)

        monkeypatch.setattr(reconciliation, "_transition", settled_by_another_signal)

        outcome = await reconciliation.apply(
            pending_order.id,
            PaymentObservation(status=GatewayStatus.CANCELED, reason=CancelReason.CANCELED_BY_USER),
            source="poll",
        )

        assert outcome.transitioned is False
        assert outcome.status == GatewayStatus.APPROVED
        assert reload(db_session, pending_order.id).payment_status == PaymentStatus.PAID
        assert stock_of(seed_products["burger"]) == (8, 0)


class TestViewStatus:

    def test_canceled_with_rejection_reason_reads_as_rejected(self):
        assert view_status(PaymentStatus.CANCELED, CancelReason.REJECTED_BY_TERMINAL) == GatewayStatus.REJECTED
        assert view_status(PaymentStatus.CANCELED, CancelReason.REJECTED_BY_GATEWAY) == GatewayStatus.REJECTED

    def test_other_cancellations_read_as_canceled(self):
        assert view_status(PaymentStatus.CANCELED, CancelReason.TIMEOUT) == GatewayStatus.CANCELED
        assert view_status(PaymentStatus.CANCELED, None) == GatewayStatus.CANCELED

    def test_settled_and_pending(self):
        assert view_status(PaymentStatus.PAID, None) == GatewayStatus.APPROVED
        assert view_status(PaymentStatus.PENDING, None) == GatewayStatus.PENDING

    @pytest.mark.asyncio
    async def test_approval_caches_fingerprint_and_clears_terminal(
        self, reconciliation, pending_order, payment_cache, fake_gateway
    ):
        await reconciliation.apply(pending_order.id, approved(pending_order.id, "intent-1"), source="poll")

        cached = await payment_cache.get(get_payment_fingerprint_key("store-1", "pay-900"))
        assert cached["order_id"] == pending_order.id
        assert await payment_cache.get(get_payment_fingerprint_key("store-1", "intent-1")) is not None
        assert fake_gateway.queue_clears == 1


class TestPoll:

    @pytest.mark.asyncio
    async def test_poll_reconciles_from_gateway(self, reconciliation, pending_order, fake_gateway):
        fake_gateway.statuses["intent-1"] = approved(pending_order.id, "intent-1")

        outcome = await reconciliation.poll("store-1", pending_order.id)

        assert outcome.status == GatewayStatus.APPROVED
        assert outcome.order_status == OrderStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_poll_of_terminal_order_skips_gateway(self, reconciliation, pending_order, fake_gateway):
        fake_gateway.statuses["intent-1"] = approved(pending_order.id, "intent-1")
        await reconciliation.poll("store-1", pending_order.id)
        calls = fake_gateway.status_calls

        outcome = await reconciliation.poll("store-1", pending_order.id)

        assert outcome.status == GatewayStatus.APPROVED
        assert fake_gateway.status_calls == calls

    @pytest.mark.asyncio
    async def test_gateway_outage_reports_processing(self, reconciliation, pending_order, fake_gateway):
        fake_gateway.unavailable = True

        outcome = await reconciliation.poll("store-1", pending_order.id)

        assert outcome.status == GatewayStatus.PENDING
        assert outcome.processing is True

    @pytest.mark.asyncio
    async def test_poll_without_intent_stays_pending(self, reconciliation, db_session, seed_products, fake_gateway):
        order = OrderService(db_session).create_order("store-1", "Ana", [(seed_products["burger"].id, 1)])

        outcome = await reconciliation.poll("store-1", order.id)

        assert outcome.status == GatewayStatus.PENDING
        assert fake_gateway.status_calls == 0

    @pytest.mark.asyncio
    async def test_poll_unknown_order(self, reconciliation, seed_store):
        with pytest.raises(OrderNotFound):
            await reconciliation.poll("store-1", "order_missing")


class TestAmbiguousIntent:

    @pytest.fixture
    def finished_intent(self, fake_gateway):
        """Intent reports FINISHED without a settled payment id."""
        from rest_api.services.payments.gateway import AmbiguousGatewayState

        async def get_status(intent_id):
            raise AmbiguousGatewayState(intent_id, None)

        fake_gateway.get_status = get_status
        return fake_gateway

    @pytest.mark.asyncio
    async def test_secondary_lookup_finds_approval(self, reconciliation, pending_order, finished_intent):
        finished_intent.by_reference[pending_order.id] = approved(pending_order.id, None, settled="pay-42")

        outcome = await reconciliation.poll("store-1", pending_order.id)

        assert outcome.status == GatewayStatus.APPROVED

    @pytest.mark.asyncio
    async def test_nothing_found_stays_pending_and_processing(self, reconciliation, pending_order, finished_intent, seed_products, stock_of):
        outcome = await reconciliation.poll("store-1", pending_order.id)

        assert outcome.status == GatewayStatus.PENDING
        assert outcome.processing is True
        assert stock_of(seed_products["burger"]) == (10, 2)


class TestClientCancel:

    @pytest.mark.asyncio
    async def test_cancel_by_client_releases_stock(self, reconciliation, pending_order, seed_products, stock_of):
        outcome = await reconciliation.cancel_by_client("store-1", pending_order.id)

        assert outcome.transitioned is True
        assert outcome.reason == CancelReason.CANCELED_BY_USER
        assert outcome.message == "Payment cancelled on the terminal by the customer"
        assert stock_of(seed_products["burger"]) == (10, 0)

    @pytest.mark.asyncio
    async def test_cancel_at_gateway_swallows_gateway_outage(self, reconciliation, fake_gateway):
        fake_gateway.unavailable = True

        assert await reconciliation.cancel_at_gateway("store-1", "intent-1", PaymentMethod.CREDIT) is False

    @pytest.mark.asyncio
    async def test_cancel_at_gateway_swallows_transport_error(self, reconciliation, fake_gateway, monkeypatch):
        async def broken_cancel(intent_id, method=None):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(fake_gateway, "cancel", broken_cancel)

        assert await reconciliation.cancel_at_gateway("store-1", "intent-1", PaymentMethod.PIX) is False

    @pytest.mark.asyncio
    async def test_cancel_at_gateway_propagates_programming_errors(self, reconciliation, fake_gateway, monkeypatch):
        async def broken_cancel(intent_id, method=None):
            raise TypeError("unexpected argument")

        monkeypatch.setattr(fake_gateway, "cancel", broken_cancel)

        with pytest.raises(TypeError):
            await reconciliation.cancel_at_gateway("store-1", "intent-1", PaymentMethod.PIX)


class TestNotifications:

    @pytest.mark.asyncio
    async def test_webhook_payment_updated(self, reconciliation, pix_order, fake_gateway, seed_products, stock_of):
        fake_gateway.payments["777"] = approved(pix_order.id, "777", settled="777")

        outcome = await reconciliation.handle_webhook(
            {"action": "payment.updated", "data": {"id": "777"}}, store_hint="store-1"
        )

        assert outcome.status == GatewayStatus.APPROVED
        assert stock_of(seed_products["soda"]) == (0, 0)

    @pytest.mark.asyncio
    async def test_webhook_other_topics_ignored(self, reconciliation, fake_gateway):
        assert await reconciliation.handle_webhook({"action": "merchant_order.updated", "data": {"id": "1"}}) is None
        assert fake_gateway.payment_calls == 0

    @pytest.mark.asyncio
    async def test_duplicate_notification_hits_cache(self, reconciliation, pix_order, fake_gateway):
        fake_gateway.payments["777"] = approved(pix_order.id, "777", settled="777")
        await reconciliation.process_payment_notification("777", "store-1", source="webhook")
        calls = fake_gateway.payment_calls

        outcome = await reconciliation.process_payment_notification("777", "store-1", source="ipn")

        assert outcome.status == GatewayStatus.APPROVED
        assert fake_gateway.payment_calls == calls

    @pytest.mark.asyncio
    async def test_notification_without_store_resolves_tenant(self, reconciliation, pix_order, fake_gateway, gateway_factory):
        fake_gateway.payments["777"] = approved(pix_order.id, "777", settled="777")

        outcome = await reconciliation.process_payment_notification("777", None, source="ipn")

        assert outcome.status == GatewayStatus.APPROVED
        assert gateway_factory.tenants[-1] == "store-1"

    @pytest.mark.asyncio
    async def test_unknown_payment_is_dropped(self, reconciliation, seed_store):
        assert await reconciliation.process_payment_notification("nope", "store-1", source="webhook") is None

    @pytest.mark.asyncio
    async def test_point_ipn_reads_intent(self, reconciliation, pending_order, fake_gateway):
        fake_gateway.statuses["intent-1"] = PaymentObservation(
            status=GatewayStatus.CANCELED, reason=CancelReason.CANCELED_BY_USER, intent_id="intent-1"
        )

        outcome = await reconciliation.handle_ipn("intent-1", "point_integration_ipn", "store-1")

        assert outcome.status == GatewayStatus.CANCELED
        assert outcome.reason == CancelReason.CANCELED_BY_USER

    @pytest.mark.asyncio
    async def test_ipn_unknown_topic_ignored(self, reconciliation):
        assert await reconciliation.handle_ipn("1", "merchant_order", "store-1") is None


class TestExpiry:

    def _age(self, db_session, order_id, minutes):
        order = db_session.get(Order, order_id)
        order.created_at = utcnow() - timedelta(minutes=minutes)
        db_session.commit()

    @pytest.mark.asyncio
    async def test_stale_order_expires_and_releases_stock(
        self, reconciliation, db_session, pending_order, fake_gateway, seed_products, stock_of
    ):
        self._age(db_session, pending_order.id, 45)

        expired = await reconciliation.expire_stale(timeout_minutes=30)

        assert expired == [pending_order.id]
        order = reload(db_session, pending_order.id)
        assert order.status == OrderStatus.CANCELED
        assert order.payment_reason == CancelReason.TIMEOUT
        assert stock_of(seed_products["burger"]) == (10, 0)
        assert "intent-1" in fake_gateway.cancelled

    @pytest.mark.asyncio
    async def test_fresh_order_is_kept(self, reconciliation, pending_order):
        assert await reconciliation.expire_stale(timeout_minutes=30) == []

    @pytest.mark.asyncio
    async def test_settled_intent_is_reconciled_instead_of_expired(
        self, reconciliation, db_session, pending_order, fake_gateway, seed_products, stock_of
    ):
        self._age(db_session, pending_order.id, 45)
        fake_gateway.statuses["intent-1"] = approved(pending_order.id, "intent-1")

        expired = await reconciliation.expire_stale(timeout_minutes=30)

        assert expired == []
        assert reload(db_session, pending_order.id).payment_status == PaymentStatus.PAID
        assert stock_of(seed_products["burger"]) == (8, 0)

    @pytest.mark.asyncio
    async def test_expiry_survives_gateway_outage(
        self, reconciliation, db_session, pending_order, fake_gateway, seed_products, stock_of
    ):
        self._age(db_session, pending_order.id, 45)
        fake_gateway.unavailable = True

        expired = await reconciliation.expire_stale(timeout_minutes=30)

        assert expired == [pending_order.id]
        assert stock_of(seed_products["burger"]) == (10, 0)


class TestOutcome:

    def test_view_status_maps_authorized_to_approved(self):
        outcome = ReconciliationOutcome(
            order_id="o", tenant_id="s", payment_id=None, payment_method=None,
            order_status=OrderStatus.ACTIVE, payment_status=PaymentStatus.AUTHORIZED,
        )
        assert outcome.status == GatewayStatus.APPROVED
        assert outcome.message is None
