import logging as log
from typing import Optional

from sqlalchemy.orm import Session

from config.app_vars import REQUEST_DEADLINE_SECONDS
from serializers import WaybillAllocateRequest, WaybillCodesRequest, WaybillGenerateRequest
from utils.allocator import WaybillAllocator
from utils.carrier import CarrierClient
from utils.errors import InvalidArgument, ShippingError
from utils.helpers import deadline_after, error_response, success_response
from utils.inventory import WaybillInventory


def allocate_waybills(payload: WaybillAllocateRequest, client: CarrierClient):
    try:
        allocator = WaybillAllocator(WaybillInventory(), client)
        allocation = allocator.allocate(
            payload.count,
            prefer_stored=payload.prefer_stored,
            reserved_for=payload.reserved_for,
            allow_fallback=payload.allow_fallback,
            deadline=deadline_after(REQUEST_DEADLINE_SECONDS),
        )
        return success_response(allocation.to_dict())
    except ShippingError as e:
        log.warning(f"Waybill allocation of {payload.count} failed: {e.message}")
        return error_response(e)


def _codes(payload: WaybillCodesRequest):
    codes = [c.strip() for c in payload.codes if c and c.strip()]
    if not codes:
        raise InvalidArgument("At least one waybill code is required")
    return codes


def commit_waybills(payload: WaybillCodesRequest):
    try:
        codes = _codes(payload)
        committed = WaybillInventory().commit(codes, order_ref=payload.order_ref)
        return success_response({"requested": len(codes), "committed": committed})
    except ShippingError as e:
        log.warning(f"Waybill commit failed: {e.message}")
        return error_response(e)


def release_waybills(payload: WaybillCodesRequest):
    try:
        codes = _codes(payload)
        released = WaybillInventory().release(codes)
        return success_response({"requested": len(codes), "released": released})
    except ShippingError as e:
        log.warning(f"Waybill release failed: {e.message}")
        return error_response(e)


def generate_waybills(payload: WaybillGenerateRequest, client: CarrierClient):
    try:
        inventory = WaybillInventory()
        stored = WaybillAllocator(inventory, client).replenish(payload.min_stock)
        return success_response({"generated": stored, "stats": inventory.stats()})
    except ShippingError as e:
        log.warning(f"Waybill replenishment failed: {e.message}")
        return error_response(e)


def list_waybills(db: Session, status: Optional[str] = None, limit: int = 50):
    waybills = WaybillInventory().list(status=status, limit=limit, db=db)
    return success_response([w.to_dict() for w in waybills])


def get_waybill_stats(db: Session):
    return success_response(WaybillInventory().stats(db=db))
