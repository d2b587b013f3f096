import logging as log
from typing import Any, Dict

from config.worker import cel_app
from serializers import ScanEvent
from utils.carrier import get_carrier_client
from utils.errors import NotFound
from utils.tracking import TrackingReconciler


@cel_app.task(
    name="tasks.tracking.reconcile_open_shipments",
    retry_kwargs={"max_retries": 3, "countdown": 5},
    ack_late=True,
)
def reconcile_open_shipments():
    summary = TrackingReconciler(get_carrier_client()).reconcile_open()
    return summary


@cel_app.task(
    name="tasks.tracking.ingest_scan",
    queue="shipping_high_priority_queue",
    retry_kwargs={"max_retries": 3, "countdown": 5},
    ack_late=True,
)
def ingest_scan(data: Dict[str, Any]):
    event = ScanEvent(**data)
    try:
        record = TrackingReconciler(get_carrier_client()).ingest(event)
    except NotFound:
        log.warning(f"Dropping scan for unknown waybill {event.waybill}")
        return None
    return record.state
