from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.sql import func

from config.database import Base


class PickupRequest(Base):
    __tablename__ = "pickup_requests"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    pickup_id = Column(String(64), nullable=False, unique=True, index=True)
    waybill_numbers = Column(JSON, default=list)
    scheduled_date = Column(String(32), nullable=False)
    pickup_date = Column(String(10), nullable=False)
    pickup_time = Column(String(5), nullable=False)
    pickup_location = Column(String(128), nullable=False)
    contact_person = Column(String(128))
    contact_number = Column(String(32))
    status = Column(String(16), nullable=False, default="SCHEDULED", index=True)
    carrier_response = Column(JSON)
    notes = Column(Text, default="")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    class StatusChoices:
        SCHEDULED = "SCHEDULED"
        SCHEDULED_TEST = "SCHEDULED_TEST"
        IN_PROGRESS = "IN_PROGRESS"
        COMPLETED = "COMPLETED"
        CANCELLED = "CANCELLED"

    def to_dict(self):
        return {
            "pickup_id": self.pickup_id,
            "waybill_numbers": list(self.waybill_numbers or []),
            "scheduled_date": self.scheduled_date,
            "pickup_location": self.pickup_location,
            "contact_person": self.contact_person,
            "contact_number": self.contact_number,
            "status": self.status,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PickupWaybill(Base):
    """A waybill held by a pickup. Open holds are unique per waybill."""

    __tablename__ = "pickup_waybills"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    waybill = Column(String(32), nullable=False, index=True)
    pickup_id = Column(String(64), nullable=False, index=True)
    is_open = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        # A waybill can sit in one open pickup at a time; cancelled holds stay as history
        Index(
            "uq_pickup_waybills_open",
            "waybill",
            unique=True,
            postgresql_where=text("is_open"),
            sqlite_where=text("is_open = 1"),
        ),
    )
