"""
Kitchen router.
Feed of paid orders for the kitchen display and the fulfilment steps.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.utils.schemas import KitchenOrderOutput, KitchenQueueResponse
from rest_api.routers._common import build_kitchen_output, get_store_id, to_http_error
from rest_api.services.domain.kitchen_service import KitchenService
from rest_api.services.domain.order_service import InvalidOrderState, OrderNotFound


router = APIRouter(prefix="/api/kitchen", tags=["kitchen"])


@router.get("/orders", response_model=KitchenQueueResponse)
def get_kitchen_orders(
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
) -> KitchenQueueResponse:
    """
    Orders with payment settled and not yet completed, oldest first.

    Orders awaiting payment never appear here. The display re-fetches
    every poll_interval_seconds.
    """
    orders = KitchenService(db).list_queue(store_id)
    return KitchenQueueResponse(
        orders=[build_kitchen_output(o) for o in orders],
        poll_interval_seconds=settings.kitchen_poll_interval_seconds,
    )


@router.post("/orders/{order_id}/preparing", response_model=KitchenOrderOutput)
def start_preparing(
    order_id: str,
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
) -> KitchenOrderOutput:
    try:
        order = KitchenService(db).start_preparing(store_id, order_id)
    except (OrderNotFound, InvalidOrderState) as e:
        raise to_http_error(e, tenant_id=store_id) from e
    return build_kitchen_output(order)


@router.post("/orders/{order_id}/complete", response_model=KitchenOrderOutput)
def complete_order(
    order_id: str,
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
) -> KitchenOrderOutput:
    """Mark an order delivered; it leaves the kitchen feed."""
    try:
        order = KitchenService(db).complete(store_id, order_id)
    except (OrderNotFound, InvalidOrderState) as e:
        raise to_http_error(e, tenant_id=store_id) from e
    return build_kitchen_output(order)
