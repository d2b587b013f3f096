from fastapi import APIRouter, Depends

from controllers import receive_scan, track_waybill
from serializers import ScanEvent
from utils.carrier import CarrierClient, get_carrier_client

router = APIRouter(
    prefix="/tracking",
    tags=["tracking"],
    responses={404: {"description": "Not found"}},
)


@router.post("/scans", tags=["tracking"])
def handle_receive_scan(payload: ScanEvent):
    return receive_scan(payload)


@router.get("/{waybill}", tags=["tracking"])
def handle_track_waybill(waybill: str, client: CarrierClient = Depends(get_carrier_client)):
    return track_waybill(waybill, client)


tracking_router = router
