"""Typed shapes of the carrier (Delhivery) API responses.

Every carrier body is decoded exactly once, in ``utils.carrier``, into one of
these models. Schemas:

* bulk waybills   -- a JSON string of comma separated codes, or a JSON array
* single waybill  -- a JSON string holding one code
* shipment create -- ``{"success": bool, "rmk": str, "packages": [...]}``
* pickup create   -- ``{"pickup_id": int|str, ...}``; failures carry
                     ``success: false`` plus ``error``/``message``
* tracking        -- ``{"ShipmentTrack": [{"Shipment": {...}}]}`` or
                     ``{"Error": "..."}``
* serviceability  -- ``{"delivery_codes": [{"postal_code": {...}}]}``
* edit, cancel    -- ``{"status": bool|str, "remark": str}`` or
                     ``{"success": bool, "rmk": str}``
"""
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, model_validator


class WaybillBatch(RootModel[List[str]]):
    @model_validator(mode="before")
    @classmethod
    def split_codes(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, list):
            raise ValueError(f"expected a list or comma separated string, got {type(value).__name__}")
        return [str(code).strip() for code in value if str(code).strip()]


class SingleWaybill(RootModel[str]):
    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, value):
        if isinstance(value, (int, str)) and str(value).strip():
            return str(value).strip()
        raise ValueError(f"expected a waybill string, got {value!r}")


class PackageResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    waybill: Optional[str] = None
    status: Optional[str] = None
    refnum: Optional[str] = None
    remarks: Union[List[str], str, None] = None

    @property
    def remark_text(self) -> str:
        if isinstance(self.remarks, list):
            return "; ".join(str(r) for r in self.remarks if r)
        return self.remarks or ""


class CreateShipmentResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    rmk: Optional[str] = None
    packages: List[PackageResult] = Field(default_factory=list)
    package_count: Optional[int] = None
    upload_wbn: Optional[str] = None

    @property
    def remark(self) -> str:
        """Carrier diagnostics: top level ``rmk`` followed by per-package remarks."""
        parts = [self.rmk] if self.rmk else []
        parts.extend(p.remark_text for p in self.packages if p.remark_text)
        return " | ".join(parts)


class PickupResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    pickup_id: Union[int, str, None] = None
    success: Optional[bool] = None
    error: Any = None
    message: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.success is False or (self.error is not None and self.pickup_id is None)

    @property
    def failure_text(self) -> str:
        if isinstance(self.error, dict):
            return "; ".join(str(v) for v in self.error.values())
        return str(self.error or self.message or "")


class ScanDetail(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    scan: str = Field("", alias="Scan")
    scan_date_time: str = Field("", alias="ScanDateTime")
    scan_location: str = Field("", alias="ScannedLocation")
    instructions: str = Field("", alias="Instructions")


class Scan(BaseModel):
    model_config = ConfigDict(extra="allow")

    detail: ScanDetail = Field(alias="ScanDetail")


class TrackStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str = Field("", alias="Status")
    status_date_time: str = Field("", alias="StatusDateTime")
    status_location: str = Field("", alias="StatusLocation")
    instructions: str = Field("", alias="Instructions")


class TrackedShipment(BaseModel):
    model_config = ConfigDict(extra="allow")

    awb: str = Field(alias="AWB")
    reference_no: Optional[str] = Field(None, alias="ReferenceNo")
    status: TrackStatus = Field(default_factory=TrackStatus, alias="Status")
    scans: List[Scan] = Field(default_factory=list, alias="Scans")


class ShipmentTrack(BaseModel):
    model_config = ConfigDict(extra="allow")

    shipment: TrackedShipment = Field(alias="Shipment")


class TrackingResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    shipment_track: List[ShipmentTrack] = Field(default_factory=list, alias="ShipmentTrack")
    error: Optional[str] = Field(None, alias="Error")


class PostalCode(BaseModel):
    model_config = ConfigDict(extra="allow")

    pin: Union[int, str]
    city: Optional[str] = None
    state_code: Optional[str] = None
    cod: Optional[str] = None
    pre_paid: Optional[str] = None


class DeliveryCode(BaseModel):
    postal_code: PostalCode


class ServiceabilityResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    delivery_codes: List[DeliveryCode] = Field(default_factory=list)

    @property
    def serviceable(self) -> bool:
        return len(self.delivery_codes) > 0


class EditResponse(BaseModel):
    """Reply of the edit endpoint, which also carries cancellations."""

    model_config = ConfigDict(extra="allow")

    status: Union[bool, str, None] = None
    success: Union[bool, str, None] = None
    remark: Optional[str] = None
    rmk: Optional[str] = None
    error: Any = None

    @property
    def accepted(self) -> bool:
        if self.error:
            return False
        for flag in (self.status, self.success):
            if isinstance(flag, str):
                return flag.lower() in ("true", "success")
            if flag is not None:
                return bool(flag)
        return True

    @property
    def note(self) -> Optional[str]:
        return self.remark or self.rmk
