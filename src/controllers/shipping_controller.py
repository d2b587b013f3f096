import logging as log
from http import HTTPStatus
from typing import Optional

from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from config.app_vars import REQUEST_DEADLINE_SECONDS
from models import ShipmentRecord
from serializers import (
    BulkShipmentRequest,
    ShipmentCancelRequest,
    ShipmentRequest,
    ShipmentUpdateRequest,
)
from utils.carrier import CarrierClient
from utils.errors import ShippingError
from utils.helpers import deadline_after, error_response, success_response
from utils.shipping import ShipmentOrchestrator


def create_shipment(payload: ShipmentRequest, client: CarrierClient):
    try:
        record = ShipmentOrchestrator(client).create_shipment(
            payload.order_id, payload, deadline=deadline_after(REQUEST_DEADLINE_SECONDS)
        )
    except ShippingError as e:
        return error_response(e)

    if record.state == ShipmentRecord.StateChoices.FAILED:
        # Carrier logical failure: the attempt is kept and the order can be retried
        return ORJSONResponse(
            content={
                "success": False,
                "error": "Carrier rejected the shipment",
                "remark": record.remark,
                "data": record.to_dict(),
            },
            status_code=HTTPStatus.BAD_REQUEST,
        )
    return success_response(record.to_dict(), status_code=HTTPStatus.CREATED)


def create_bulk_shipments(payload: BulkShipmentRequest, client: CarrierClient):
    try:
        summary = ShipmentOrchestrator(client).create_bulk(
            payload, per_order_seconds=REQUEST_DEADLINE_SECONDS
        )
        return success_response(summary)
    except ShippingError as e:
        log.warning(f"Bulk shipment request rejected: {e.message}")
        return error_response(e)


def update_shipment(order_id: str, payload: ShipmentUpdateRequest, client: CarrierClient):
    try:
        record = ShipmentOrchestrator(client).update_shipment(
            order_id, payload, deadline=deadline_after(REQUEST_DEADLINE_SECONDS)
        )
        return success_response(record.to_dict())
    except ShippingError as e:
        log.warning(f"Edit of shipment for order {order_id} failed: {e.message}")
        return error_response(e)


def get_shipment(order_id: str, client: CarrierClient, db: Session):
    try:
        record = ShipmentOrchestrator(client).get_shipment(order_id, db=db)
        return success_response(record.to_dict())
    except ShippingError as e:
        return error_response(e)


def cancel_shipment(order_id: str, payload: Optional[ShipmentCancelRequest], client: CarrierClient):
    reason = payload.reason if payload else None
    try:
        record = ShipmentOrchestrator(client).cancel_shipment(
            order_id, reason=reason, deadline=deadline_after(REQUEST_DEADLINE_SECONDS)
        )
        return success_response(record.to_dict())
    except ShippingError as e:
        log.warning(f"Cancel of shipment for order {order_id} failed: {e.message}")
        return error_response(e)


def check_serviceability(pincode: str, client: CarrierClient):
    try:
        return success_response(ShipmentOrchestrator(client).check_serviceability(pincode))
    except ShippingError as e:
        return error_response(e)
