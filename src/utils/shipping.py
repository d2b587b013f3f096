import logging as log
import re
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.app_vars import (
    DEFAULT_HEIGHT_CM,
    DEFAULT_HSN_CODE,
    DEFAULT_LENGTH_CM,
    DEFAULT_WEIGHT_GRAMS,
    DEFAULT_WIDTH_CM,
    PENDING_ATTEMPT_TTL_SECONDS,
    SELLER_NAME,
)
from models import INACTIVE_STATES, Order, ShipmentRecord, Waybill
from serializers import BulkShipmentRequest, Dimensions, ShipmentRequest, ShipmentUpdateRequest
from utils.allocator import WaybillAllocator
from utils.carrier import CarrierClient
from utils.errors import (
    AlreadyExists,
    CarrierValidationError,
    InvalidArgument,
    NotFound,
    ShippingError,
)
from utils.helpers import (
    deadline_after,
    format_phone_number,
    round_amount,
    session_scope,
    today,
    utcnow,
)
from utils.inventory import WaybillInventory
from utils.pickup import PickupScheduler
from utils.warehouses import WarehouseDetails, WarehouseRegistry

STATE = ShipmentRecord.StateChoices
SHIPMENT_TYPE = ShipmentRecord.TypeChoices

PINCODE_PATTERN = re.compile(r"^\d{6}$")
BALANCE_MARKERS = ("insufficient balance", "wallet balance")
DELIVERY_WINDOW_DAYS = 7
MAX_BULK_ORDERS = 100

# Carrier edits are only accepted before the parcel leaves the warehouse
EDITABLE_STATES = (STATE.CREATED,)

# Payment mode a live shipment may be switched to, by current mode
PAYMENT_MODE_CONVERSIONS = {
    "COD": ("Prepaid",),
    "Prepaid": (),
    "Pickup": ("COD", "Prepaid"),
    "REPL": (),
}

# Carrier payment_mode per shipment type; forward and MPS keep the order's mode
PAYMENT_MODE_OVERRIDES = {
    SHIPMENT_TYPE.REVERSE: "Pickup",
    SHIPMENT_TYPE.REPLACEMENT: "REPL",
}


def _first(data: Dict[str, Any], *keys) -> str:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def resolve_address(order: Order) -> Dict[str, str]:
    """Consignee fields from the order, with the alternate key spellings resolved."""
    address = order.shipping_address or {}
    first_name = _first(address, "firstName", "first_name")
    last_name = _first(address, "lastName", "last_name")
    name = f"{first_name} {last_name}".strip() or _first(address, "name", "fullName")
    line1 = _first(address, "address1", "line1", "address")
    line2 = _first(address, "address2", "line2")
    if not name or not line1:
        raise InvalidArgument("Invalid shipping address: name and address line 1 are required")

    pincode = _first(address, "zipCode", "postalCode", "pincode", "pin")
    if not PINCODE_PATTERN.match(pincode):
        raise InvalidArgument(f"Invalid or missing pincode in shipping address: '{pincode}'")

    phone = format_phone_number(
        _first(address, "phoneNumber", "phone", "mobile") or order.customer_phone
    )
    if not phone:
        raise InvalidArgument("Missing or invalid phone number for the consignee")

    return {
        "name": name,
        "add": f"{line1}, {line2}" if line2 else line1,
        "pin": pincode,
        "city": _first(address, "city"),
        "state": _first(address, "state"),
        "country": _first(address, "country") or "India",
        "phone": phone,
    }


def order_total(line_items: List[Dict[str, Any]]) -> Decimal:
    total = Decimal("0")
    for item in line_items:
        price = Decimal(str(item.get("price", item.get("unit_price", 0)) or 0))
        total += price * int(item.get("quantity", item.get("qty", 1)) or 1)
    return round_amount(total)


def _package_measurements(request: ShipmentRequest):
    weight = request.weight
    if weight is None and request.packages and all(p.weight for p in request.packages):
        weight = sum(p.weight for p in request.packages)
    dimensions = request.dimensions
    if dimensions is None:
        dimensions = next((p.dimensions for p in request.packages if p.dimensions), None)
    if dimensions is None:
        dimensions = Dimensions(length=DEFAULT_LENGTH_CM, width=DEFAULT_WIDTH_CM, height=DEFAULT_HEIGHT_CM)
    return weight or DEFAULT_WEIGHT_GRAMS, dimensions


def _num(value: float) -> str:
    return f"{value:g}"


class ShipmentOrchestrator:
    """Creates carrier shipments for orders.

    Each attempt is recorded before the carrier is called: a PENDING
    ShipmentRecord takes the order's single live slot (guarded by a partial
    unique index), and ends as CREATED or FAILED. A FAILED record frees the
    slot so the operator can retry. A PENDING record left behind by a dead
    process is failed once it outlives the attempt TTL.
    """

    def __init__(
        self,
        client: CarrierClient,
        allocator: Optional[WaybillAllocator] = None,
        inventory: Optional[WaybillInventory] = None,
        warehouses: Optional[WarehouseRegistry] = None,
        session_factory=None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.inventory = inventory or WaybillInventory(session_factory)
        self.allocator = allocator or WaybillAllocator(self.inventory, client)
        self.warehouses = warehouses or WarehouseRegistry(session_factory=session_factory)

    def _scope(self, db: Optional[Session] = None):
        return session_scope(db, self.session_factory)

    @staticmethod
    def validate_order(order: Order) -> None:
        if (order.status or "").lower() not in Order.SHIPPABLE_STATUSES:
            raise InvalidArgument(
                f"Order must be in one of these statuses: {', '.join(Order.SHIPPABLE_STATUSES)} "
                f"for shipment creation. Current status: {order.status}"
            )
        if not order.line_items:
            raise InvalidArgument("No line items found in order")

    @staticmethod
    def payment_mode(order: Order, request: ShipmentRequest) -> str:
        if request.shipment_type in PAYMENT_MODE_OVERRIDES:
            return PAYMENT_MODE_OVERRIDES[request.shipment_type]
        if request.payment_mode:
            return request.payment_mode
        return "COD" if (order.payment_mode or "cod").lower() == "cod" else "Prepaid"

    def build_payload(
        self,
        order: Order,
        request: ShipmentRequest,
        warehouse: WarehouseDetails,
        waybills: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        consignee = resolve_address(order)
        total = order_total(order.line_items)
        payment_mode = self.payment_mode(order, request)
        cod_amount = str(total) if payment_mode == "COD" else "0"
        weight, dimensions = _package_measurements(request)
        quantity = sum(int(i.get("quantity", i.get("qty", 1)) or 1) for i in order.line_items)
        products_desc = ", ".join(i.get("name") or "Product" for i in order.line_items)

        base = {
            **consignee,
            "order": order.order_id,
            "payment_mode": payment_mode,
            **warehouse.to_return_fields(),
            "products_desc": products_desc,
            "hsn_code": DEFAULT_HSN_CODE,
            "cod_amount": cod_amount,
            "order_date": today(),
            "total_amount": str(total),
            "seller_add": warehouse.address,
            "seller_name": SELLER_NAME or warehouse.name,
            "seller_inv": f"INV-{order.order_id}",
            "quantity": str(quantity),
            "shipment_width": _num(dimensions.width),
            "shipment_height": _num(dimensions.height),
            "shipment_length": _num(dimensions.length),
            "weight": _num(weight),
            "shipping_mode": request.shipping_mode,
            "address_type": "home",
            "fragile_shipment": False,
            "dangerous_good": False,
            "send_date": today(),
            "end_date": today(DELIVERY_WINDOW_DAYS),
            "invoice_no": f"INV-{order.order_id}",
            "invoice_amount": str(total),
            "waybill": "",
        }

        if request.shipment_type == SHIPMENT_TYPE.MPS:
            shipments = []
            for index, package in enumerate(request.packages):
                shipment = dict(base)
                shipment.update(
                    {
                        "shipment_type": "MPS",
                        "mps_amount": cod_amount,
                        "mps_children": str(len(request.packages)),
                        "order": f"{order.order_id}-{index + 1}",
                    }
                )
                if package.weight:
                    shipment["weight"] = _num(package.weight)
                if package.dimensions:
                    shipment["shipment_width"] = _num(package.dimensions.width)
                    shipment["shipment_height"] = _num(package.dimensions.height)
                    shipment["shipment_length"] = _num(package.dimensions.length)
                if package.description:
                    shipment["products_desc"] = package.description
                shipments.append(shipment)
        else:
            shipments = [base]

        payload = {"shipments": shipments, "pickup_location": {"name": warehouse.name}}
        if waybills:
            self.bind_waybills(payload, waybills)
        return payload

    @staticmethod
    def bind_waybills(payload: Dict[str, Any], waybills: List[str]) -> None:
        shipments = payload["shipments"]
        if len(waybills) != len(shipments):
            raise InvalidArgument(f"Expected {len(shipments)} waybill(s), got {len(waybills)}")
        for shipment, code in zip(shipments, waybills):
            shipment["waybill"] = code
            if shipment.get("shipment_type") == "MPS":
                shipment["master_id"] = waybills[0]

    @staticmethod
    def validate_payload(payload: Dict[str, Any]) -> None:
        """Catch what the carrier would reject outright, before it is sent."""
        if not payload.get("shipments"):
            raise InvalidArgument("Payload has no shipments")
        for shipment in payload["shipments"]:
            if shipment.get("payment_mode") == "COD":
                cod_amount = shipment.get("cod_amount")
                if cod_amount in (None, "") or Decimal(cod_amount) <= 0:
                    raise InvalidArgument("COD shipment requires a positive cod_amount")
            for field in ("name", "add", "pin", "phone", "order"):
                if not shipment.get(field):
                    raise InvalidArgument(f"Payload is missing '{field}'")
        if not payload.get("pickup_location", {}).get("name"):
            raise InvalidArgument("Payload is missing the pickup location")

    def waybills_needed(self, request: ShipmentRequest) -> int:
        if request.shipment_type == SHIPMENT_TYPE.MPS:
            if len(request.packages) < 2:
                raise InvalidArgument("MPS shipments need at least two packages")
            return len(request.packages)
        return 1

    def create_shipment(
        self, order_id: str, request: ShipmentRequest, deadline: Optional[float] = None
    ) -> ShipmentRecord:
        if request.order_id != order_id:
            raise InvalidArgument("order_id in the request does not match the order")
        count = self.waybills_needed(request)

        record_id, payload = self._open_attempt(order_id, request)
        log.info(f"Shipment attempt {record_id} opened for order {order_id}")

        codes: List[str] = []
        try:
            allocation = self.allocator.allocate(
                count, prefer_stored=True, reserved_for=order_id, allow_fallback=False, deadline=deadline
            )
            codes = allocation.codes
            if allocation.is_local_fallback:
                raise InvalidArgument("Local fallback waybills cannot be used to manifest a shipment")
            self.bind_waybills(payload, codes)
            response = self.client.create_shipment(payload, deadline=deadline)
        except ShippingError as e:
            log.error(f"Shipment for order {order_id} failed: {e.message}")
            self._fail_attempt(record_id, codes, e.remark or e.message, e.response)
            raise
        except Exception as e:
            log.error(f"Shipment for order {order_id} failed unexpectedly: {e}", exc_info=True)
            self._fail_attempt(record_id, codes, str(e))
            raise

        if not response.success:
            remark = response.remark or "Carrier rejected the shipment"
            log.warning(f"Carrier rejected shipment for order {order_id}: {remark}")
            record = self._fail_attempt(record_id, codes, remark, response.model_dump())
            if any(marker in remark.lower() for marker in BALANCE_MARKERS):
                raise CarrierValidationError("Carrier account balance is insufficient", remark=remark)
            return record

        return self._complete_attempt(record_id, order_id, request, codes, response)

    def _open_attempt(self, order_id: str, request: ShipmentRequest):
        with self._scope() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            self.validate_order(order)
            self.expire_abandoned(order_id, db=session)
            if order.shipment_created or self._live_record(session, order_id):
                raise AlreadyExists(f"Shipment already created for order {order_id}")

            warehouse = self.warehouses.resolve(request.pickup_location, db=session)
            payload = self.build_payload(order, request, warehouse)
            self.validate_payload(payload)

            record = ShipmentRecord(
                order_id=order_id,
                waybill_numbers=[],
                pickup_location=warehouse.name,
                shipping_mode=request.shipping_mode,
                shipment_type=request.shipment_type,
                payment_mode=payload["shipments"][0]["payment_mode"],
                state=STATE.PENDING,
                scans=[],
                created_at=utcnow(),
            )
            session.add(record)
            try:
                session.flush()
            except IntegrityError as e:
                # A concurrent attempt took the live slot after our read check
                raise AlreadyExists(f"Shipment already created for order {order_id}") from e
            return record.id, payload

    def _fail_attempt(
        self, record_id: int, codes: List[str], remark: str, response: Any = None
    ) -> ShipmentRecord:
        with self._scope() as session:
            if codes:
                self.inventory.release(codes, db=session)
            record = session.get(ShipmentRecord, record_id)
            record.state = STATE.FAILED
            record.remark = remark
            record.carrier_response = response if isinstance(response, (dict, list)) else None
            return record

    def expire_abandoned(self, order_id: Optional[str] = None, db: Optional[Session] = None) -> int:
        """Fail PENDING attempts whose process died before recording an outcome.

        Carrier I/O for an attempt is bounded by the request deadline, so a
        PENDING record older than ``PENDING_ATTEMPT_TTL_SECONDS`` has nobody
        left to finish it. Its waybills go back to the pool and the order's
        live slot is freed.
        """
        cutoff = utcnow() - timedelta(seconds=PENDING_ATTEMPT_TTL_SECONDS)
        with self._scope(db) as session:
            query = session.query(ShipmentRecord).filter(
                ShipmentRecord.state == STATE.PENDING,
                ShipmentRecord.created_at < cutoff,
            )
            if order_id is not None:
                query = query.filter(ShipmentRecord.order_id == order_id)
            stale = query.all()

            for record in stale:
                codes = [
                    code
                    for (code,) in session.query(Waybill.code).filter(
                        Waybill.reserved_for == record.order_id,
                        Waybill.status == Waybill.StatusChoices.RESERVED,
                        Waybill.reserved_at >= record.created_at,
                    )
                ]
                self.inventory.release(codes, db=session)
                record.state = STATE.FAILED
                record.remark = "Attempt abandoned before an outcome was recorded"
                log.warning(
                    f"Expired abandoned shipment attempt {record.id} for order {record.order_id}, "
                    f"released {len(codes)} waybill(s)"
                )
            return len(stale)

    def _complete_attempt(self, record_id, order_id, request, codes, response) -> ShipmentRecord:
        details = {
            "waybill_numbers": codes,
            "pickup_location": request.pickup_location,
            "shipping_mode": request.shipping_mode,
            "shipment_type": request.shipment_type,
        }
        try:
            with self._scope() as session:
                self.inventory.commit(codes, order_ref=order_id, db=session)

                record = session.get(ShipmentRecord, record_id)
                record.state = STATE.CREATED
                record.waybill_numbers = codes
                record.carrier_status = response.packages[0].status if response.packages else None
                record.remark = response.remark or None
                record.carrier_response = response.model_dump()

                order = session.get(Order, order_id)
                order.status = Order.StatusChoices.PROCESSING
                order.shipment_created = True
                order.shipment_status = "created"
                order.waybill_number = codes[0]
                order.shipment_details = details

                self.warehouses.mark_state(record.pickup_location, STATE.CREATED, db=session)
        except Exception:
            # The carrier has these codes now. The record stays live so the
            # order cannot be manifested a second time.
            log.error(
                f"Carrier created shipment {codes} for order {order_id} but saving it failed",
                exc_info=True,
            )
            with self._scope() as session:
                self.inventory.commit(codes, order_ref=order_id, db=session)
                record = session.get(ShipmentRecord, record_id)
                record.state = STATE.CREATED
                record.waybill_numbers = codes
                record.remark = "Carrier accepted the shipment but it could not be saved locally"
            raise

        log.info(f"Shipment created for order {order_id} with waybill(s) {codes}")
        return record

    @staticmethod
    def _live_record(session: Session, order_id: str) -> Optional[ShipmentRecord]:
        return (
            session.query(ShipmentRecord)
            .filter(
                ShipmentRecord.order_id == order_id,
                ShipmentRecord.state.notin_(INACTIVE_STATES),
            )
            .first()
        )

    def get_shipment(self, order_id: str, db: Optional[Session] = None) -> ShipmentRecord:
        with self._scope(db) as session:
            record = (
                session.query(ShipmentRecord)
                .filter(ShipmentRecord.order_id == order_id)
                .order_by(ShipmentRecord.id.desc())
                .first()
            )
            if record is None:
                raise NotFound(f"No shipment found for order {order_id}")
            return record

    def create_bulk(
        self, settings: BulkShipmentRequest, per_order_seconds: Optional[float] = None
    ) -> Dict[str, Any]:
        """Create one shipment per order with shared settings.

        Each order goes through ``create_shipment`` on its own, so an order
        that already has a live shipment is reported and left alone, and one
        order failing does not stop the rest. Every order gets its own
        carrier deadline of ``per_order_seconds``.
        """
        order_ids = list(dict.fromkeys(o.strip() for o in settings.order_ids if o and o.strip()))
        if not order_ids:
            raise InvalidArgument("Order IDs are required")
        if len(order_ids) > MAX_BULK_ORDERS:
            raise InvalidArgument(f"At most {MAX_BULK_ORDERS} orders can be shipped in one request")
        self.warehouses.resolve(settings.pickup_location)

        results = []
        for order_id in order_ids:
            try:
                record = self.create_shipment(
                    order_id, settings.request_for(order_id), deadline=deadline_after(per_order_seconds)
                )
            except ShippingError as e:
                results.append(
                    {"order_id": order_id, "success": False, "error": e.message, "remark": e.remark}
                )
                continue
            if record.state == STATE.FAILED:
                results.append(
                    {
                        "order_id": order_id,
                        "success": False,
                        "state": record.state,
                        "error": "Carrier rejected the shipment",
                        "remark": record.remark,
                    }
                )
            else:
                results.append(
                    {
                        "order_id": order_id,
                        "success": True,
                        "state": record.state,
                        "waybill_numbers": list(record.waybill_numbers),
                    }
                )

        created = sum(1 for result in results if result["success"])
        log.info(f"Bulk shipment run: {created} created, {len(results) - created} failed")
        return {"created": created, "failed": len(results) - created, "results": results}

    def update_shipment(
        self, order_id: str, changes: ShipmentUpdateRequest, deadline: Optional[float] = None
    ) -> ShipmentRecord:
        """Edit a manifested shipment that has not been picked up yet."""
        with self._scope() as session:
            record = self._live_record(session, order_id)
            if record is None:
                raise NotFound(f"No live shipment found for order {order_id}")
            if record.state not in EDITABLE_STATES:
                raise InvalidArgument(f"Shipment in state {record.state} can no longer be edited")
            record_id, waybill, current_mode = record.id, record.primary_waybill, record.payment_mode
            in_pickup = bool(PickupScheduler.held_waybills(session, list(record.waybill_numbers or [])))

        payload = self.edit_payload(waybill, current_mode, changes, in_pickup)
        response = self.client.edit_shipment(payload, deadline=deadline)
        if not response.accepted:
            remark = response.note or str(response.error or "")
            raise CarrierValidationError("Carrier refused the shipment edit", remark=remark)

        with self._scope() as session:
            record = session.get(ShipmentRecord, record_id)
            if changes.payment_mode:
                record.payment_mode = changes.payment_mode
            record.remark = response.note or record.remark
        log.info(f"Shipment {waybill} for order {order_id} edited")
        return record

    @staticmethod
    def edit_payload(
        waybill: str, current_mode: str, changes: ShipmentUpdateRequest, in_pickup: bool = False
    ) -> Dict[str, Any]:
        """Carrier edit body for ``changes``, after the edit rules are checked."""
        fields = changes.model_dump(exclude_none=True)
        if not fields:
            raise InvalidArgument("No changes requested")

        target_mode = changes.payment_mode
        if target_mode and target_mode != current_mode:
            allowed = PAYMENT_MODE_CONVERSIONS.get(current_mode, ())
            if target_mode not in allowed:
                raise InvalidArgument(
                    f"Payment mode conversion from {current_mode} to {target_mode} is not allowed. "
                    f"Allowed conversions from {current_mode}: {', '.join(allowed) or 'None'}"
                )
        mode = target_mode or current_mode
        cod_amount = changes.cod_amount
        if mode == "Prepaid" and cod_amount:
            raise InvalidArgument("COD amount must be 0 for Prepaid shipments")
        if mode == "COD" and cod_amount is not None and cod_amount <= 0:
            raise InvalidArgument("COD amount must be greater than 0 for COD shipments")
        if target_mode == "COD" and current_mode != "COD" and cod_amount is None:
            raise InvalidArgument("cod_amount is required when converting to COD")
        if in_pickup and (changes.weight or changes.dimensions):
            raise InvalidArgument("Weight and dimensions cannot change once a pickup is scheduled")

        payload: Dict[str, Any] = {"waybill": waybill}
        for field in ("name", "add", "city", "state", "products_desc"):
            if fields.get(field):
                payload[field] = fields[field].strip()
        if changes.pin is not None:
            if not PINCODE_PATTERN.match(changes.pin):
                raise InvalidArgument("pin must be 6 digits")
            payload["pin"] = changes.pin
        if changes.phone is not None:
            phone = format_phone_number(changes.phone)
            if not phone:
                raise InvalidArgument("Invalid phone number")
            payload["phone"] = phone
        if target_mode:
            payload["payment_mode"] = target_mode
        if cod_amount is not None:
            payload["cod_amount"] = str(round_amount(cod_amount)) if cod_amount else "0"
        elif target_mode == "Prepaid":
            payload["cod_amount"] = "0"
        if changes.weight:
            payload["weight"] = _num(changes.weight)
        if changes.dimensions:
            payload["shipment_length"] = _num(changes.dimensions.length)
            payload["shipment_width"] = _num(changes.dimensions.width)
            payload["shipment_height"] = _num(changes.dimensions.height)
        return payload

    def cancel_shipment(
        self, order_id: str, reason: Optional[str] = None, deadline: Optional[float] = None
    ) -> ShipmentRecord:
        with self._scope() as session:
            record = self._live_record(session, order_id)
            if record is None:
                raise NotFound(f"No live shipment found for order {order_id}")
            if record.state == STATE.PENDING:
                raise InvalidArgument("Shipment creation is still in progress")
            if record.state in (STATE.DELIVERED, STATE.RTO):
                raise InvalidArgument(f"Shipment in state {record.state} can no longer be cancelled")
            record_id, waybill = record.id, record.primary_waybill

        response = self.client.cancel_shipment(waybill, deadline=deadline)
        if not response.accepted:
            remark = response.note or str(response.error or "")
            raise CarrierValidationError("Carrier refused to cancel the shipment", remark=remark)

        with self._scope() as session:
            record = session.get(ShipmentRecord, record_id)
            record.state = STATE.CANCELLED
            record.carrier_status = "Cancelled"
            record.remark = reason or response.note or record.remark

            order = session.get(Order, order_id)
            if order is not None:
                order.shipment_created = False
                order.shipment_status = "cancelled"
        log.info(f"Shipment {waybill} for order {order_id} cancelled")
        return record

    def check_serviceability(self, pincode: str, deadline: Optional[float] = None) -> Dict[str, Any]:
        if not PINCODE_PATTERN.match(pincode or ""):
            raise InvalidArgument("pincode must be 6 digits")
        response = self.client.check_serviceability(pincode, deadline=deadline)
        data = {"pincode": pincode, "serviceable": response.serviceable}
        if response.serviceable:
            postal = response.delivery_codes[0].postal_code
            data.update(
                {
                    "city": postal.city,
                    "state_code": postal.state_code,
                    "cod": (postal.cod or "").upper() == "Y",
                    "prepaid": (postal.pre_paid or "").upper() == "Y",
                }
            )
        return data
