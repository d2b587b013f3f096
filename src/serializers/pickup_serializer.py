from typing import List, Optional

from pydantic import BaseModel


class PickupScheduleRequest(BaseModel):
    waybill_numbers: List[str]
    pickup_date: str  # YYYY-MM-DD
    pickup_time: str  # HH:MM
    pickup_location: str
    contact_person: str
    contact_number: str


class PickupCancelRequest(BaseModel):
    reason: Optional[str] = None
