"""
Services module for business logic.

- domain/: order creation, inventory ledger, kitchen fulfilment
- payments/: gateway adapter, credentials, reconciliation, payment cache

Usage:
    from rest_api.services.domain import OrderService
    order = OrderService(db).create_order(tenant_id, "Ana", [(12, 2)])
"""
