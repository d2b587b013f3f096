import logging as log
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from config.app_vars import (
    DEFAULT_PICKUP_ADDRESS,
    DEFAULT_PICKUP_CITY,
    DEFAULT_PICKUP_NAME,
    DEFAULT_PICKUP_PHONE,
    DEFAULT_PICKUP_PINCODE,
    DEFAULT_PICKUP_STATE,
)
from models import Warehouse
from utils.errors import InvalidArgument
from utils.helpers import session_scope


@dataclass
class WarehouseDetails:
    name: str
    address: str
    city: str
    state: str
    pincode: str
    phone: str

    def to_return_fields(self):
        """Return-address block of a shipment payload."""
        return {
            "return_name": self.name,
            "return_add": self.address,
            "return_city": self.city,
            "return_state": self.state,
            "return_pin": self.pincode,
            "return_phone": self.phone,
            "return_country": "India",
        }

    def to_dict(self):
        return asdict(self)


class WarehouseSource(ABC):
    name = "source"

    @abstractmethod
    def lookup(self, name: str, db: Session) -> Optional[WarehouseDetails]:
        ...


class StoredWarehouseSource(WarehouseSource):
    name = "stored"

    def lookup(self, name, db):
        warehouse = (
            db.query(Warehouse)
            .filter(Warehouse.name == name, Warehouse.is_active.is_(True))
            .first()
        )
        if not warehouse:
            return None
        return WarehouseDetails(
            name=warehouse.name,
            address=warehouse.address,
            city=warehouse.city or "",
            state=warehouse.state or "",
            pincode=warehouse.pincode,
            phone=warehouse.phone or "",
        )


class ConfiguredWarehouseSource(WarehouseSource):
    """The default pickup warehouse from the environment."""

    name = "configured"

    def lookup(self, name, db):
        if name != DEFAULT_PICKUP_NAME:
            return None
        return WarehouseDetails(
            name=DEFAULT_PICKUP_NAME,
            address=DEFAULT_PICKUP_ADDRESS,
            city=DEFAULT_PICKUP_CITY,
            state=DEFAULT_PICKUP_STATE,
            pincode=DEFAULT_PICKUP_PINCODE,
            phone=DEFAULT_PICKUP_PHONE,
        )


class WarehouseRegistry:
    def __init__(self, sources: Optional[List[WarehouseSource]] = None, session_factory=None):
        self.sources = sources or [StoredWarehouseSource(), ConfiguredWarehouseSource()]
        self.session_factory = session_factory

    def resolve(self, name: str, db: Optional[Session] = None) -> WarehouseDetails:
        if not name or not name.strip():
            raise InvalidArgument("pickup_location is required")
        name = name.strip()
        with session_scope(db, self.session_factory) as session:
            for source in self.sources:
                details = source.lookup(name, session)
                if details:
                    log.info(f"Pickup location '{name}' resolved from {source.name} warehouses")
                    return details
        raise InvalidArgument(f"Unknown pickup location: {name}")

    def mark_state(self, name: str, state: str, db: Optional[Session] = None) -> None:
        """Record the last state the carrier reported for a warehouse's shipments."""
        with session_scope(db, self.session_factory) as session:
            warehouse = session.get(Warehouse, name)
            if warehouse is None:
                return
            warehouse.last_known_state = state
