from typing import Optional

from pydantic import BaseModel, model_validator


class ScanEvent(BaseModel):
    """A single carrier scan, pushed by webhook or extracted from a tracking pull."""

    waybill: str
    status: str
    timestamp: str
    location: Optional[str] = ""
    instructions: Optional[str] = ""

    @model_validator(mode="before")
    def from_carrier_push(cls, values):
        # Carrier push payloads wrap the scan as {"Shipment": {"AWB", "Status": {...}}}
        if isinstance(values, dict) and "Shipment" in values:
            shipment = values["Shipment"] or {}
            status = shipment.get("Status") or {}
            return {
                "waybill": shipment.get("AWB", ""),
                "status": status.get("Status", ""),
                "timestamp": status.get("StatusDateTime", ""),
                "location": status.get("StatusLocation", ""),
                "instructions": status.get("Instructions", ""),
            }
        return values

    @property
    def key(self):
        return (self.waybill, self.timestamp, self.status)

    def to_history_entry(self):
        return {
            "waybill": self.waybill,
            "status": self.status,
            "timestamp": self.timestamp,
            "location": self.location or "",
            "instructions": self.instructions or "",
        }
