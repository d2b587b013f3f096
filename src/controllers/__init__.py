from controllers.pickup_controller import cancel_pickup, get_pickup, list_pickups, schedule_pickup
from controllers.shipping_controller import (
    cancel_shipment,
    check_serviceability,
    create_bulk_shipments,
    create_shipment,
    get_shipment,
    update_shipment,
)
from controllers.tracking_controller import receive_scan, track_waybill
from controllers.waybill_controller import (
    allocate_waybills,
    commit_waybills,
    generate_waybills,
    get_waybill_stats,
    list_waybills,
    release_waybills,
)
