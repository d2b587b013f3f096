import logging as log

from config.app_vars import WAYBILL_MIN_STOCK
from config.worker import cel_app
from utils.allocator import WaybillAllocator
from utils.carrier import get_carrier_client
from utils.inventory import WaybillInventory


@cel_app.task(
    name="tasks.waybill.replenish_stock",
    retry_kwargs={"max_retries": 3, "countdown": 5},
    ack_late=True,
)
def replenish_stock(min_stock: int = WAYBILL_MIN_STOCK):
    client = get_carrier_client()
    if not client.is_configured():
        log.warning("Skipping waybill replenishment: carrier is not configured")
        return 0
    return WaybillAllocator(WaybillInventory(), client).replenish(min_stock)
