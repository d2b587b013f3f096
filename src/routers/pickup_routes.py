from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from controllers import cancel_pickup, get_pickup, list_pickups, schedule_pickup
from serializers import PickupCancelRequest, PickupScheduleRequest
from utils.carrier import CarrierClient, get_carrier_client

router = APIRouter(
    prefix="/pickups",
    tags=["pickups"],
    responses={404: {"description": "Not found"}},
)


@router.post("", tags=["pickups"])
def handle_schedule_pickup(
    payload: PickupScheduleRequest, client: CarrierClient = Depends(get_carrier_client)
):
    return schedule_pickup(payload, client)


@router.get("", tags=["pickups"])
def handle_list_pickups(
    status: Optional[str] = None,
    limit: int = 50,
    client: CarrierClient = Depends(get_carrier_client),
    db: Session = Depends(get_db),
):
    return list_pickups(client, db, status=status, limit=limit)


@router.get("/{pickup_id}", tags=["pickups"])
def handle_get_pickup(
    pickup_id: str,
    client: CarrierClient = Depends(get_carrier_client),
    db: Session = Depends(get_db),
):
    return get_pickup(pickup_id, client, db)


@router.post("/{pickup_id}/cancel", tags=["pickups"])
def handle_cancel_pickup(
    pickup_id: str,
    payload: Optional[PickupCancelRequest] = None,
    client: CarrierClient = Depends(get_carrier_client),
):
    return cancel_pickup(pickup_id, payload, client)


pickup_router = router
