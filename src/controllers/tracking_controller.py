import logging as log
from http import HTTPStatus

from config.app_vars import REQUEST_DEADLINE_SECONDS
from serializers import ScanEvent
from tasks import ingest_scan
from utils.carrier import CarrierClient
from utils.errors import ShippingError
from utils.helpers import deadline_after, error_response, success_response
from utils.tracking import TrackingReconciler


def track_waybill(waybill: str, client: CarrierClient):
    try:
        record = TrackingReconciler(client).reconcile(
            waybill, deadline=deadline_after(REQUEST_DEADLINE_SECONDS)
        )
        return success_response(record.to_dict())
    except ShippingError as e:
        return error_response(e)


def receive_scan(payload: ScanEvent):
    log.info(f"Scan pushed for {payload.waybill}: {payload.status}")
    ingest_scan.delay(payload.model_dump())
    return success_response({"queued": True, "waybill": payload.waybill}, status_code=HTTPStatus.ACCEPTED)
