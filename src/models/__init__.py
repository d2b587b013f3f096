from models.order import Order
from models.pickup import PickupRequest, PickupWaybill
from models.shipment import INACTIVE_STATES, ShipmentRecord
from models.warehouse import Warehouse
from models.waybill import Waybill
