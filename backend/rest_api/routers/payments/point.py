"""
Point terminal router.
Reads the store's terminal and switches it to integrated (PDV) mode.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shared.infrastructure.db import get_db
from shared.utils.schemas import PointDeviceResponse
from rest_api.routers._common import get_store_id, to_http_error
from rest_api.services.payments.credentials import GatewayFactory, get_gateway_factory
from rest_api.services.payments.gateway import GatewayError


router = APIRouter(prefix="/api/point", tags=["point"])


def _device_response(gateway, body: dict) -> PointDeviceResponse:
    return PointDeviceResponse(
        device_id=str(body.get("id") or gateway.device_id),
        operating_mode=body.get("operating_mode"),
        raw=body,
    )


@router.get("/status", response_model=PointDeviceResponse)
async def point_status(
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(get_gateway_factory),
) -> PointDeviceResponse:
    try:
        gateway = gateways.for_tenant(db, store_id)
        body = await gateway.get_device()
    except GatewayError as e:
        raise to_http_error(e, tenant_id=store_id) from e
    return _device_response(gateway, body)


@router.post("/configure", response_model=PointDeviceResponse)
async def point_configure(
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(get_gateway_factory),
) -> PointDeviceResponse:
    """Put the terminal in PDV mode so it accepts integration intents."""
    try:
        gateway = gateways.for_tenant(db, store_id)
        body = await gateway.configure_device()
    except GatewayError as e:
        raise to_http_error(e, tenant_id=store_id) from e
    return _device_response(gateway, body)
