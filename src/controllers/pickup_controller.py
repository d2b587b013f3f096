from http import HTTPStatus
from typing import Optional

from sqlalchemy.orm import Session

from config.app_vars import REQUEST_DEADLINE_SECONDS
from serializers import PickupCancelRequest, PickupScheduleRequest
from utils.carrier import CarrierClient
from utils.errors import ShippingError
from utils.helpers import deadline_after, error_response, success_response
from utils.pickup import PickupScheduler


def schedule_pickup(payload: PickupScheduleRequest, client: CarrierClient):
    try:
        pickup = PickupScheduler(client).schedule(
            payload.waybill_numbers,
            payload.pickup_date,
            payload.pickup_time,
            payload.pickup_location,
            payload.contact_person,
            payload.contact_number,
            deadline=deadline_after(REQUEST_DEADLINE_SECONDS),
        )
        return success_response(pickup.to_dict(), status_code=HTTPStatus.CREATED)
    except ShippingError as e:
        return error_response(e)


def list_pickups(client: CarrierClient, db: Session, status: Optional[str] = None, limit: int = 50):
    pickups = PickupScheduler(client).list(status=status, limit=limit, db=db)
    return success_response([p.to_dict() for p in pickups])


def get_pickup(pickup_id: str, client: CarrierClient, db: Session):
    try:
        return success_response(PickupScheduler(client).get(pickup_id, db=db).to_dict())
    except ShippingError as e:
        return error_response(e)


def cancel_pickup(pickup_id: str, payload: Optional[PickupCancelRequest], client: CarrierClient):
    try:
        pickup = PickupScheduler(client).cancel(pickup_id, reason=payload.reason if payload else None)
        return success_response(pickup.to_dict())
    except ShippingError as e:
        return error_response(e)
