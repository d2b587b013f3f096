from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from controllers import (
    allocate_waybills,
    commit_waybills,
    generate_waybills,
    get_waybill_stats,
    list_waybills,
    release_waybills,
)
from serializers import WaybillAllocateRequest, WaybillCodesRequest, WaybillGenerateRequest
from utils.carrier import CarrierClient, get_carrier_client

router = APIRouter(
    prefix="/waybills",
    tags=["waybills"],
    responses={404: {"description": "Not found"}},
)


@router.post("/allocate", tags=["waybills"])
def handle_allocate_waybills(
    payload: WaybillAllocateRequest, client: CarrierClient = Depends(get_carrier_client)
):
    return allocate_waybills(payload, client)


@router.post("/commit", tags=["waybills"])
def handle_commit_waybills(payload: WaybillCodesRequest):
    return commit_waybills(payload)


@router.post("/release", tags=["waybills"])
def handle_release_waybills(payload: WaybillCodesRequest):
    return release_waybills(payload)


@router.post("/generate", tags=["waybills"])
def handle_generate_waybills(
    payload: WaybillGenerateRequest, client: CarrierClient = Depends(get_carrier_client)
):
    return generate_waybills(payload, client)


@router.get("/stats", tags=["waybills"])
def handle_get_waybill_stats(db: Session = Depends(get_db)):
    return get_waybill_stats(db)


@router.get("", tags=["waybills"])
def handle_list_waybills(
    status: Optional[str] = None, limit: int = 50, db: Session = Depends(get_db)
):
    return list_waybills(db, status=status, limit=limit)


waybill_router = router
