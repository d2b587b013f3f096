import random
import re
import string
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from http import HTTPStatus
from typing import Optional

from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from config.database import SessionLocal
from utils.errors import ShippingError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today(offset_days: int = 0) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=offset_days)).strftime("%Y-%m-%d")


def round_amount(value) -> Decimal:
    """Round a money amount to 2 decimals, half up."""
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    """Normalise an Indian phone number to its 10 digit form, or None if it can't be."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", str(phone))
    if len(digits) == 10:
        return digits
    if len(digits) == 11 and digits.startswith("0"):
        return digits[1:]
    if len(digits) == 12 and digits.startswith("91"):
        return digits[2:]
    return None


def generate_pickup_id() -> str:
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(9))
    return f"PU{int(time.time() * 1000)}_{suffix}"


def deadline_after(seconds: Optional[float]) -> Optional[float]:
    """Monotonic deadline ``seconds`` from now, for carrier calls."""
    if seconds is None:
        return None
    return time.monotonic() + seconds


@contextmanager
def session_scope(db: Optional[Session] = None, session_factory=None):
    """Yield ``db`` as-is, or a fresh session that is committed on success.

    When the caller passes its own session it owns the transaction; changes
    are only flushed here.
    """
    if db is not None:
        yield db
        db.flush()
        return

    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def success_response(data, status_code=HTTPStatus.OK) -> ORJSONResponse:
    return ORJSONResponse(content={"success": True, "data": data}, status_code=status_code)


def error_response(error: ShippingError) -> ORJSONResponse:
    return ORJSONResponse(content=error.to_dict(), status_code=error.status_code)
