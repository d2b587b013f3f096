import logging as log
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import PickupRequest, PickupWaybill
from utils.carrier import CarrierClient
from utils.errors import (
    AlreadyExists,
    CarrierDegraded,
    CarrierValidationError,
    InvalidArgument,
    NotFound,
)
from utils.helpers import (
    DATE_PATTERN,
    TIME_PATTERN,
    format_phone_number,
    generate_pickup_id,
    session_scope,
    utcnow,
)
from utils.warehouses import WarehouseRegistry

STATUS = PickupRequest.StatusChoices

MAX_PACKAGES = 1000
WALLET_MARKERS = ("wallet balance", "insufficient balance")
TEST_MODE_NOTE = "Recorded locally only: the carrier requires a minimum wallet balance to schedule pickups"


def is_wallet_failure(text: Optional[str]) -> bool:
    text = (text or "").lower()
    return any(marker in text for marker in WALLET_MARKERS)


class PickupScheduler:
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
    def validate(waybills: List[str], date: str, time: str, contact_number: str) -> str:
        if not waybills or len(waybills) > MAX_PACKAGES:
            raise InvalidArgument(f"Package count must be between 1 and {MAX_PACKAGES}")
        if len(set(waybills)) != len(waybills):
            raise InvalidArgument("Duplicate waybill numbers in pickup request")
        if not DATE_PATTERN.match(date or ""):
            raise InvalidArgument("Invalid date format. Use YYYY-MM-DD")
        try:
            datetime.strptime(date, "%Y-%m-%d")
        except ValueError as e:
            raise InvalidArgument(f"Invalid pickup date: {date}") from e
        if not TIME_PATTERN.match(time or ""):
            raise InvalidArgument("Invalid time format. Use HH:MM (24-hour format)")
        phone = format_phone_number(contact_number)
        if not phone:
            raise InvalidArgument("Invalid contact number")
        return phone

    @staticmethod
    def held_waybills(session: Session, waybills: List[str]) -> List[str]:
        """The given waybills that already sit in an open pickup."""
        held = session.query(PickupWaybill.waybill).filter(
            PickupWaybill.waybill.in_(waybills),
            PickupWaybill.is_open.is_(True),
        )
        return sorted(code for (code,) in held)

    def _hold(self, waybills: List[str], hold_id: str) -> None:
        """Take the waybills for one pickup; the partial unique index settles races."""
        with self._scope() as session:
            taken = self.held_waybills(session, waybills)
            if taken:
                raise AlreadyExists(f"Waybill(s) already in an open pickup: {', '.join(taken)}")
            session.add_all(PickupWaybill(waybill=code, pickup_id=hold_id) for code in waybills)
            try:
                session.flush()
            except IntegrityError as e:
                raise AlreadyExists("Waybill(s) were taken by a concurrent pickup request") from e

    def _release(self, pickup_id: str, db: Optional[Session] = None) -> None:
        with self._scope(db) as session:
            session.query(PickupWaybill).filter(
                PickupWaybill.pickup_id == pickup_id,
                PickupWaybill.is_open.is_(True),
            ).update({PickupWaybill.is_open: False}, synchronize_session=False)

    def _request_pickup(self, payload, deadline):
        """Ask the carrier for a pickup. Wallet balance rejections become CarrierDegraded."""
        try:
            response = self.client.create_pickup(payload, deadline=deadline)
        except CarrierValidationError as e:
            if is_wallet_failure(e.remark) or is_wallet_failure(e.message):
                raise CarrierDegraded("Insufficient wallet balance", remark=e.remark) from e
            raise
        if response.failed:
            text = response.failure_text
            if is_wallet_failure(text):
                raise CarrierDegraded("Insufficient wallet balance", remark=text, response=response.model_dump())
            raise CarrierValidationError(
                "Carrier rejected the pickup request", remark=text, response=response.model_dump()
            )
        return response

    def schedule(
        self,
        waybills: List[str],
        date: str,
        time: str,
        location: str,
        contact_person: str,
        contact_number: str,
        deadline: Optional[float] = None,
    ) -> PickupRequest:
        waybills = [str(w).strip() for w in waybills or [] if str(w).strip()]
        phone = self.validate(waybills, date, time, contact_number)
        warehouse = self.warehouses.resolve(location)

        hold_id = generate_pickup_id()
        self._hold(waybills, hold_id)

        payload = {
            "pickup_time": f"{time}:00",
            "pickup_date": date,
            "pickup_location": warehouse.name,
            "expected_package_count": len(waybills),
        }
        status, notes, carrier_response, pickup_id = STATUS.SCHEDULED, "", None, None
        try:
            try:
                response = self._request_pickup(payload, deadline)
                carrier_response = response.model_dump()
                pickup_id = str(response.pickup_id) if response.pickup_id is not None else None
            except CarrierDegraded as e:
                log.warning(f"Pickup for {warehouse.name} recorded in test mode: {e.remark or e.message}")
                status, notes = STATUS.SCHEDULED_TEST, TEST_MODE_NOTE
                carrier_response = e.response if isinstance(e.response, dict) else {"error": e.remark}

            pickup_id = pickup_id or hold_id
            with self._scope() as session:
                pickup = PickupRequest(
                    pickup_id=pickup_id,
                    waybill_numbers=waybills,
                    scheduled_date=f"{date} {time}",
                    pickup_date=date,
                    pickup_time=time,
                    pickup_location=warehouse.name,
                    contact_person=contact_person,
                    contact_number=phone,
                    status=status,
                    carrier_response=carrier_response,
                    notes=notes,
                )
                session.add(pickup)
                session.query(PickupWaybill).filter(PickupWaybill.pickup_id == hold_id).update(
                    {PickupWaybill.pickup_id: pickup_id}, synchronize_session=False
                )
        except Exception:
            log.error(f"Pickup for {warehouse.name} failed, releasing {len(waybills)} waybill(s)")
            self._release(hold_id)
            raise

        log.info(f"Pickup {pickup.pickup_id} {status} for {len(waybills)} package(s) at {warehouse.name}")
        return pickup

    def cancel(self, pickup_id: str, reason: Optional[str] = None) -> PickupRequest:
        with self._scope() as session:
            pickup = session.query(PickupRequest).filter(PickupRequest.pickup_id == pickup_id).first()
            if pickup is None:
                raise NotFound(f"Pickup request {pickup_id} not found")
            if pickup.status == STATUS.CANCELLED:
                return pickup
            if pickup.status == STATUS.COMPLETED:
                raise InvalidArgument("A completed pickup cannot be cancelled")
            note = f"Cancelled at {utcnow().isoformat(timespec='seconds')}"
            if reason:
                note += f": {reason}"
            pickup.status = STATUS.CANCELLED
            self._release(pickup_id, db=session)
            pickup.notes = f"{pickup.notes} - {note}" if pickup.notes else note
        log.info(f"Pickup {pickup_id} cancelled")
        return pickup

    def get(self, pickup_id: str, db: Optional[Session] = None) -> PickupRequest:
        with self._scope(db) as session:
            pickup = session.query(PickupRequest).filter(PickupRequest.pickup_id == pickup_id).first()
            if pickup is None:
                raise NotFound(f"Pickup request {pickup_id} not found")
            return pickup

    def list(
        self, status: Optional[str] = None, limit: int = 50, db: Optional[Session] = None
    ) -> List[PickupRequest]:
        with self._scope(db) as session:
            query = session.query(PickupRequest)
            if status:
                query = query.filter(PickupRequest.status == status.upper())
            return query.order_by(PickupRequest.id.desc()).limit(limit).all()
