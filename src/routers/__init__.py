from routers.pickup_routes import pickup_router
from routers.shipping_routes import shipping_router
from routers.tracking_routes import tracking_router
from routers.waybill_routes import waybill_router
