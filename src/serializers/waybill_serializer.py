from typing import List, Optional

from pydantic import BaseModel


class WaybillAllocateRequest(BaseModel):
    # Range is checked by the allocator so the error maps to the allocator's codes
    count: int
    prefer_stored: bool = True
    reserved_for: Optional[str] = None
    allow_fallback: bool = True


class WaybillGenerateRequest(BaseModel):
    min_stock: int


class WaybillCodesRequest(BaseModel):
    codes: List[str]
    # Commit only: the order the codes were used for
    order_ref: Optional[str] = None
