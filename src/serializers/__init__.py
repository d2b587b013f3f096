from serializers.pickup_serializer import PickupCancelRequest, PickupScheduleRequest
from serializers.shipping_serializer import (
    BulkShipmentRequest,
    Dimensions,
    PackageInfo,
    ShipmentCancelRequest,
    ShipmentRequest,
    ShipmentUpdateRequest,
)
from serializers.tracking_serializer import ScanEvent
from serializers.waybill_serializer import (
    WaybillAllocateRequest,
    WaybillCodesRequest,
    WaybillGenerateRequest,
)
