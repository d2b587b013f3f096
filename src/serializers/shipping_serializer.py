from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class Dimensions(BaseModel):
    length: float = Field(gt=0)  # centimetres
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class PackageInfo(BaseModel):
    weight: Optional[float] = Field(None, gt=0)
    dimensions: Optional[Dimensions] = None
    description: Optional[str] = None


class ShipmentRequest(BaseModel):
    order_id: str
    shipment_type: Literal["FORWARD", "REVERSE", "REPLACEMENT", "MPS"] = "FORWARD"
    pickup_location: str
    shipping_mode: Literal["Surface", "Express"] = "Surface"
    # Taken from the order when omitted
    payment_mode: Optional[Literal["COD", "Prepaid"]] = None
    weight: Optional[float] = Field(None, gt=0)  # grams
    dimensions: Optional[Dimensions] = None
    packages: List[PackageInfo] = []


class ShipmentCancelRequest(BaseModel):
    reason: Optional[str] = None


class BulkShipmentRequest(BaseModel):
    """Settings shared by every order in a bulk create."""

    order_ids: List[str]
    # One waybill per order, so multi-package shipments are created one at a time
    shipment_type: Literal["FORWARD", "REVERSE", "REPLACEMENT"] = "FORWARD"
    pickup_location: str
    shipping_mode: Literal["Surface", "Express"] = "Surface"
    payment_mode: Optional[Literal["COD", "Prepaid"]] = None
    weight: Optional[float] = Field(None, gt=0)
    dimensions: Optional[Dimensions] = None

    def request_for(self, order_id: str) -> ShipmentRequest:
        return ShipmentRequest(
            order_id=order_id,
            shipment_type=self.shipment_type,
            pickup_location=self.pickup_location,
            shipping_mode=self.shipping_mode,
            payment_mode=self.payment_mode,
            weight=self.weight,
            dimensions=self.dimensions,
        )


class ShipmentUpdateRequest(BaseModel):
    name: Optional[str] = None
    add: Optional[str] = None
    pin: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    phone: Optional[str] = None
    products_desc: Optional[str] = None
    payment_mode: Optional[Literal["COD", "Prepaid"]] = None
    cod_amount: Optional[float] = Field(None, ge=0)
    weight: Optional[float] = Field(None, gt=0)  # grams
    dimensions: Optional[Dimensions] = None
