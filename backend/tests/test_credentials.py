"""
Tests for per-store gateway credential resolution.
"""

import pytest

from rest_api.services.payments import credentials as credentials_module
from rest_api.services.payments.credentials import (
    CredentialResolver,
    GatewayFactory,
    notification_url_for,
)
from rest_api.services.payments.gateway import GatewayCredentials, GatewayUnavailable
from shared.config.logging import mask_token


def defaults():
    return GatewayCredentials(access_token="APP_USR-default", device_id="DEFAULT-DEVICE", is_default=True)


class TestCredentialResolver:

    def test_store_token_wins(self, db_session, seed_store):
        creds = CredentialResolver(db_session, defaults=defaults).resolve("store-1")

        assert creds.access_token == "TEST-store-token"
        assert creds.device_id == "DEVICE-1"
        assert creds.tenant_id == "store-1"
        assert creds.is_default is False

    def test_store_without_token_uses_defaults(self, db_session, other_store):
        creds = CredentialResolver(db_session, defaults=defaults).resolve("store-2")

        assert creds.access_token == "APP_USR-default"
        assert creds.device_id == "DEFAULT-DEVICE"
        assert creds.tenant_id == "store-2"
        assert creds.is_default is True

    def test_store_terminal_kept_with_default_token(self, db_session, other_store):
        other_store.mp_device_id = "STORE2-DEVICE"
        db_session.commit()

        creds = CredentialResolver(db_session, defaults=defaults).resolve("store-2")

        assert creds.access_token == "APP_USR-default"
        assert creds.device_id == "STORE2-DEVICE"

    def test_never_serves_another_stores_token(self, db_session, seed_store, other_store):
        creds = CredentialResolver(db_session, defaults=defaults).resolve("store-2")
        assert creds.access_token != seed_store.mp_access_token

    def test_no_credentials_anywhere(self, db_session, other_store):
        with pytest.raises(GatewayUnavailable):
            CredentialResolver(db_session, defaults=lambda: None).resolve("store-2")

    def test_unknown_store_falls_back(self, db_session):
        creds = CredentialResolver(db_session, defaults=defaults).resolve("nowhere")
        assert creds.is_default is True


class TestGatewayFactory:

    def test_for_tenant_builds_gateway_with_store_credentials(self, db_session, seed_store):
        gateway = GatewayFactory().for_tenant(db_session, "store-1")

        assert gateway.credentials.access_token == "TEST-store-token"
        assert gateway.device_id == "DEVICE-1"


class TestHelpers:

    def test_notification_url_carries_store(self, monkeypatch):
        monkeypatch.setattr(credentials_module.settings, "notification_base_url", "https://kiosk.example.com/")

        assert notification_url_for("store-1") == (
            "https://kiosk.example.com/api/notifications/mercadopago?storeId=store-1"
        )

    def test_notification_url_unset(self, monkeypatch):
        monkeypatch.setattr(credentials_module.settings, "notification_base_url", "")
        assert notification_url_for("store-1") is None

    def test_mask_token(self):
        masked = mask_token("APP_USR-1234567890-5678")

        assert "1234567890" not in masked
        assert masked.endswith("5678")
        assert mask_token(None) == "<no-token>"
