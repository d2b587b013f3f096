import logging as log
import re
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from models import Order, ShipmentRecord, Waybill
from serializers import ScanEvent
from utils.carrier import CarrierClient
from utils.errors import NotFound, ShippingError
from utils.helpers import session_scope
from utils.warehouses import WarehouseRegistry

STATE = ShipmentRecord.StateChoices

# Checked in order: the first pattern found in the carrier's wording wins
STATUS_PATTERNS = [
    (re.compile(r"\brto\b|\breturned\b"), STATE.RTO),
    (re.compile(r"\bcancel+ed\b"), STATE.CANCELLED),
    (re.compile(r"\bnot picked\b|\bpickup scheduled\b|\bmanifested\b"), STATE.CREATED),
    (re.compile(r"\bout for delivery\b|\bin transit\b|\bpending\b"), STATE.IN_TRANSIT),
    (re.compile(r"\bnot delivered\b|\bundelivered\b"), STATE.IN_TRANSIT),
    (re.compile(r"\bdelivered\b"), STATE.DELIVERED),
    (re.compile(r"\bpicked up\b|\bdispatched\b"), STATE.DISPATCHED),
]

TERMINAL_STATES = (STATE.DELIVERED, STATE.CANCELLED)
OPEN_STATES = (STATE.CREATED, STATE.DISPATCHED, STATE.IN_TRANSIT, STATE.RTO)

# Scans may arrive out of order; a record only moves forward
STATE_RANK = {
    STATE.PENDING: 0,
    STATE.CREATED: 1,
    STATE.DISPATCHED: 2,
    STATE.IN_TRANSIT: 3,
    STATE.RTO: 4,
    STATE.DELIVERED: 5,
    STATE.CANCELLED: 5,
}


def map_status(carrier_status: Optional[str]) -> str:
    text = " ".join((carrier_status or "").lower().replace("-", " ").replace("_", " ").split())
    for pattern, state in STATUS_PATTERNS:
        if pattern.search(text):
            return state
    return STATE.UNKNOWN


class TrackingReconciler:
    def __init__(
        self,
        client: CarrierClient,
        warehouses: Optional[WarehouseRegistry] = None,
        session_factory=None,
    ):
        self.client = client
        self.warehouses = warehouses or WarehouseRegistry(session_factory=session_factory)
        self.session_factory = session_factory

    def _scope(self, db: Optional[Session] = None):
        return session_scope(db, self.session_factory)

    @staticmethod
    def _find_record(session: Session, waybill: str) -> ShipmentRecord:
        code = session.get(Waybill, waybill)
        if code is not None and code.reserved_for:
            records = (
                session.query(ShipmentRecord)
                .filter(
                    ShipmentRecord.order_id == code.reserved_for,
                    ShipmentRecord.state != STATE.FAILED,
                )
                .order_by(ShipmentRecord.id.desc())
                .all()
            )
            for record in records:
                if waybill in (record.waybill_numbers or []):
                    return record
        raise NotFound(f"No shipment found for waybill {waybill}")

    def next_state(self, current: str, carrier_status: str) -> str:
        mapped = map_status(carrier_status)
        if current in TERMINAL_STATES or mapped == STATE.UNKNOWN:
            return current
        if STATE_RANK.get(mapped, 0) < STATE_RANK.get(current, 0):
            return current
        return mapped

    def _apply(self, session: Session, record: ShipmentRecord, events: List[ScanEvent], carrier_status: str):
        history = list(record.scans or [])
        seen = {(h.get("waybill"), h.get("timestamp"), h.get("status")) for h in history}
        added = 0
        for event in events:
            if event.key in seen:
                continue
            seen.add(event.key)
            history.append(event.to_history_entry())
            added += 1
        if added:
            history.sort(key=lambda h: h.get("timestamp") or "")
            record.scans = history

        previous = record.state
        if previous in TERMINAL_STATES:
            log.info(f"Shipment {record.primary_waybill} is {previous}; ignoring '{carrier_status}'")
            return record

        record.carrier_status = carrier_status or record.carrier_status
        record.state = self.next_state(previous, carrier_status)
        if record.state != previous:
            log.info(f"Shipment {record.primary_waybill}: {previous} -> {record.state} ('{carrier_status}')")
            self._sync_order(session, record)
            self.warehouses.mark_state(record.pickup_location, record.state, db=session)
        elif map_status(carrier_status) == STATE.UNKNOWN:
            log.warning(f"Unrecognised carrier status '{carrier_status}' for {record.primary_waybill}")
        return record

    @staticmethod
    def _sync_order(session: Session, record: ShipmentRecord) -> None:
        order = session.get(Order, record.order_id)
        if order is None:
            return
        if record.state in (STATE.DISPATCHED, STATE.IN_TRANSIT, STATE.RTO):
            order.shipment_status = record.state.lower()
            if order.status == Order.StatusChoices.PROCESSING:
                order.status = Order.StatusChoices.DISPATCHED
        elif record.state == STATE.DELIVERED:
            order.shipment_status = "delivered"
            order.status = Order.StatusChoices.DELIVERED
        elif record.state == STATE.CANCELLED:
            order.shipment_status = "cancelled"

    def ingest(self, event: ScanEvent) -> ShipmentRecord:
        """Apply a pushed scan. Replaying the same scan changes nothing."""
        with self._scope() as session:
            record = self._find_record(session, event.waybill)
            return self._apply(session, record, [event], event.status)

    def reconcile(self, waybill: str, deadline: Optional[float] = None) -> ShipmentRecord:
        """Pull the carrier's tracking for a waybill and merge it."""
        response = self.client.track(waybill, deadline=deadline)
        if response.error or not response.shipment_track:
            raise NotFound(f"Carrier has no tracking for waybill {waybill}", remark=response.error)

        shipment = response.shipment_track[0].shipment
        events = [
            ScanEvent(
                waybill=waybill,
                status=scan.detail.scan,
                timestamp=scan.detail.scan_date_time,
                location=scan.detail.scan_location,
                instructions=scan.detail.instructions,
            )
            for scan in shipment.scans
        ]
        current = shipment.status
        if current.status:
            events.append(
                ScanEvent(
                    waybill=waybill,
                    status=current.status,
                    timestamp=current.status_date_time,
                    location=current.status_location,
                    instructions=current.instructions,
                )
            )

        with self._scope() as session:
            record = self._find_record(session, waybill)
            return self._apply(session, record, events, current.status)

    def reconcile_open(self) -> Dict[str, int]:
        with self._scope() as session:
            waybills = [
                record.primary_waybill
                for record in session.query(ShipmentRecord)
                .filter(ShipmentRecord.state.in_(OPEN_STATES))
                .order_by(ShipmentRecord.updated_at.asc())
                if record.primary_waybill
            ]

        summary = {"checked": 0, "updated": 0, "failed": 0}
        for waybill in waybills:
            summary["checked"] += 1
            try:
                before = self._state_of(waybill)
                after = self.reconcile(waybill).state
            except ShippingError as e:
                summary["failed"] += 1
                log.warning(f"Could not reconcile {waybill}: {e.message}")
                continue
            if after != before:
                summary["updated"] += 1
        log.info(f"Reconciled open shipments: {summary}")
        return summary

    def _state_of(self, waybill: str) -> str:
        with self._scope() as session:
            return self._find_record(session, waybill).state
