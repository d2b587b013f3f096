from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from config.database import Base


class Warehouse(Base):
    __tablename__ = "warehouses"
    __mapper_args__ = {"eager_defaults": True}

    # Registered pickup location name, used as an opaque key by the carrier
    name = Column(String(128), primary_key=True, nullable=False, index=True)
    address = Column(String(512), nullable=False)
    city = Column(String(128))
    state = Column(String(128))
    pincode = Column(String(12), nullable=False)
    phone = Column(String(32))
    is_active = Column(Boolean, nullable=False, default=True)
    last_known_state = Column(String(64))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
