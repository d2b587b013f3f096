import logging
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware

from config.app_vars import LOG_LEVEL
from config.database import SessionLocal, close_db, init_db
from routers import pickup_router, shipping_router, tracking_router, waybill_router
from utils.carrier import get_carrier_client

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("fastapi")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Shipping service started")
    yield
    close_db()
    logger.info("Shipping service stopped")


app = FastAPI(lifespan=lifespan, default_response_class=ORJSONResponse)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def health_check():
    resp = {}
    resp["server_health"] = "Shipping Service API health OK"
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        resp["database_health"] = "OK"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        resp["database_health"] = "disconnected"
    resp["carrier"] = get_carrier_client().status()

    return ORJSONResponse(content=resp, status_code=HTTPStatus.OK)


app.include_router(waybill_router)
app.include_router(shipping_router)
app.include_router(pickup_router)
app.include_router(tracking_router)
