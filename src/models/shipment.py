from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.sql import func

from config.database import Base

# States that do not hold the order's single live-shipment slot
INACTIVE_STATES = ("CANCELLED", "FAILED")


class ShipmentRecord(Base):
    __tablename__ = "shipments"
    # Fetch func.now() values at flush so detached rows stay readable
    __mapper_args__ = {"eager_defaults": True}

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    order_id = Column(String(64), nullable=False, index=True)
    waybill_numbers = Column(JSON, default=list)
    pickup_location = Column(String(128))
    shipping_mode = Column(String(16))
    shipment_type = Column(String(16))
    payment_mode = Column(String(16))
    state = Column(String(16), nullable=False, default="PENDING", index=True)
    carrier_status = Column(String(64))
    remark = Column(Text)
    carrier_response = Column(JSON)
    scans = Column(JSON, default=list)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        # One live shipment per order; cancelled and failed attempts stay as history
        Index(
            "uq_shipments_live_order",
            "order_id",
            unique=True,
            postgresql_where=text("state NOT IN ('CANCELLED', 'FAILED')"),
            sqlite_where=text("state NOT IN ('CANCELLED', 'FAILED')"),
        ),
    )

    class StateChoices:
        PENDING = "PENDING"
        CREATED = "CREATED"
        FAILED = "FAILED"
        DISPATCHED = "DISPATCHED"
        IN_TRANSIT = "IN_TRANSIT"
        DELIVERED = "DELIVERED"
        CANCELLED = "CANCELLED"
        RTO = "RTO"
        UNKNOWN = "UNKNOWN"

    class TypeChoices:
        FORWARD = "FORWARD"
        REVERSE = "REVERSE"
        REPLACEMENT = "REPLACEMENT"
        MPS = "MPS"

    @property
    def is_live(self) -> bool:
        return self.state not in INACTIVE_STATES

    @property
    def primary_waybill(self):
        return self.waybill_numbers[0] if self.waybill_numbers else None

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "waybill_numbers": list(self.waybill_numbers or []),
            "pickup_location": self.pickup_location,
            "shipping_mode": self.shipping_mode,
            "shipment_type": self.shipment_type,
            "payment_mode": self.payment_mode,
            "state": self.state,
            "carrier_status": self.carrier_status,
            "remark": self.remark,
            "scans": list(self.scans or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
