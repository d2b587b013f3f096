from sqlalchemy import JSON, Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from config.database import Base


class Order(Base):
    """The order lifecycle collaborator's row, as far as shipping reads and writes it."""

    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}

    order_id = Column(String(64), primary_key=True, nullable=False, index=True)
    status = Column(String(32), nullable=False, default="pending")
    payment_mode = Column(String(16), default="cod")
    line_items = Column(JSON, default=list)
    shipping_address = Column(JSON, default=dict)
    customer_phone = Column(String(32))

    shipment_created = Column(Boolean, nullable=False, default=False)
    shipment_status = Column(String(32))
    waybill_number = Column(String(32))
    shipment_details = Column(JSON)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    class StatusChoices:
        PENDING = "pending"
        CONFIRMED = "confirmed"
        PROCESSING = "processing"
        DISPATCHED = "dispatched"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    SHIPPABLE_STATUSES = (StatusChoices.CONFIRMED, StatusChoices.PROCESSING)
