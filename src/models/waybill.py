from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.sql import func

from config.database import Base


class Waybill(Base):
    __tablename__ = "waybills"
    __mapper_args__ = {"eager_defaults": True}

    code = Column(String(32), primary_key=True, nullable=False, index=True)
    status = Column(String(16), nullable=False, default="AVAILABLE", index=True)
    source = Column(String(16), nullable=False, default="CARRIER_BULK")
    generated_at = Column(DateTime, default=func.now(), index=True)
    reserved_for = Column(String(64), nullable=True, index=True)
    reserved_at = Column(DateTime, nullable=True)
    used_at = Column(DateTime, nullable=True)
    waybill_metadata = Column(JSON, default=dict)

    __table_args__ = (Index("ix_waybills_status_generated", "status", "generated_at"),)

    class StatusChoices:
        AVAILABLE = "AVAILABLE"
        RESERVED = "RESERVED"
        USED = "USED"

    class SourceChoices:
        CARRIER_BULK = "CARRIER_BULK"
        CARRIER_SINGLE = "CARRIER_SINGLE"
        LOCAL_FALLBACK = "LOCAL_FALLBACK"

    @property
    def is_local_fallback(self) -> bool:
        return self.source == Waybill.SourceChoices.LOCAL_FALLBACK

    def to_dict(self):
        return {
            "code": self.code,
            "status": self.status,
            "source": self.source,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "reserved_for": self.reserved_for,
            "used_at": self.used_at.isoformat() if self.used_at else None,
        }
