from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from controllers import (
    cancel_shipment,
    check_serviceability,
    create_bulk_shipments,
    create_shipment,
    get_shipment,
    update_shipment,
)
from serializers import (
    BulkShipmentRequest,
    ShipmentCancelRequest,
    ShipmentRequest,
    ShipmentUpdateRequest,
)
from utils.carrier import CarrierClient, get_carrier_client

router = APIRouter(
    prefix="/shipments",
    tags=["shipments"],
    responses={404: {"description": "Not found"}},
)


@router.post("", tags=["shipments"])
def handle_create_shipment(
    payload: ShipmentRequest, client: CarrierClient = Depends(get_carrier_client)
):
    return create_shipment(payload, client)


@router.post("/bulk", tags=["shipments"])
def handle_create_bulk_shipments(
    payload: BulkShipmentRequest, client: CarrierClient = Depends(get_carrier_client)
):
    return create_bulk_shipments(payload, client)


@router.get("/serviceability/{pincode}", tags=["shipments"])
def handle_check_serviceability(
    pincode: str, client: CarrierClient = Depends(get_carrier_client)
):
    return check_serviceability(pincode, client)


@router.get("/{order_id}", tags=["shipments"])
def handle_get_shipment(
    order_id: str,
    client: CarrierClient = Depends(get_carrier_client),
    db: Session = Depends(get_db),
):
    return get_shipment(order_id, client, db)


@router.patch("/{order_id}", tags=["shipments"])
def handle_update_shipment(
    order_id: str,
    payload: ShipmentUpdateRequest,
    client: CarrierClient = Depends(get_carrier_client),
):
    return update_shipment(order_id, payload, client)


@router.post("/{order_id}/cancel", tags=["shipments"])
def handle_cancel_shipment(
    order_id: str,
    payload: Optional[ShipmentCancelRequest] = None,
    client: CarrierClient = Depends(get_carrier_client),
):
    return cancel_shipment(order_id, payload, client)


shipping_router = router
