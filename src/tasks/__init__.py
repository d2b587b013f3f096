from tasks.shipping_tasks import expire_abandoned_attempts
from tasks.tracking_tasks import ingest_scan, reconcile_open_shipments
from tasks.waybill_tasks import replenish_stock
