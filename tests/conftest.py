"""Shared fixtures: an in-memory database and a scripted carrier."""

import json
from datetime import datetime
from unittest.mock import MagicMock
from urllib.parse import urlparse

import pytest
import requests
from config.database import Base, SessionLocal, close_db, create_db_engine, init_db
from models import Order, ShipmentRecord, Warehouse, Waybill
from utils.allocator import RateWindow, WaybillAllocator
from utils.carrier import CarrierClient
from utils.inventory import WaybillInventory

PRIMARY_URL = "https://carrier.test"
BACKUP_URL = "https://backup.carrier.test"
WAREHOUSE = "Main Warehouse"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeCarrier:
    """Answers carrier calls by URL path.

    Responses queued for a path are served in order; the last one repeats.
    A queued exception is raised, a queued callable is called with the
    request's keyword arguments.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, path, *responses):
        self.routes[path] = list(responses)

    def request(self, method, url, **kwargs):
        path = urlparse(url).path
        self.calls.append({"method": method, "url": url, "path": path, **kwargs})
        queue = self.routes.get(path)
        if not queue:
            raise AssertionError(f"Unexpected carrier call: {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(**kwargs)
        return response

    def calls_to(self, path):
        return [call for call in self.calls if call["path"] == path]


@pytest.fixture(autouse=True)
def db_engine():
    engine = init_db(create_db_engine("sqlite://"))
    yield engine
    Base.metadata.drop_all(bind=engine)
    close_db()


@pytest.fixture()
def file_db(db_engine, tmp_path):
    """Rebind sessions to an on-disk database.

    Threads each get their own connection here, so concurrent writers
    contend on real locks instead of sharing one in-memory connection.
    Request it before any fixture that opens a session.
    """
    engine = init_db(create_db_engine(f"sqlite:///{tmp_path}/shipping.db"))
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def carrier():
    return FakeCarrier()


@pytest.fixture()
def http_session(carrier):
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = carrier.request
    return session


@pytest.fixture()
def sleep():
    return MagicMock()


@pytest.fixture()
def client(http_session, sleep):
    return CarrierClient(
        token="test-token",
        base_urls=[PRIMARY_URL, BACKUP_URL],
        session=http_session,
        timeout=5,
        max_attempts=3,
        backoff=0.5,
        rate_limit_cooldown=2,
        sleep=sleep,
    )


@pytest.fixture()
def inventory():
    return WaybillInventory()


@pytest.fixture()
def allocator(inventory, client):
    return WaybillAllocator(
        inventory,
        client,
        bulk_window=RateWindow(50000),
        single_window=RateWindow(750),
    )


@pytest.fixture()
def warehouse(db):
    warehouse = Warehouse(
        name=WAREHOUSE,
        address="12 Park Street, Kolkata",
        city="Kolkata",
        state="West Bengal",
        pincode="700016",
        phone="9830012345",
    )
    db.add(warehouse)
    db.commit()
    return warehouse


@pytest.fixture()
def make_order(db):
    def _make_order(order_id="ORD1", **overrides):
        values = {
            "order_id": order_id,
            "status": "confirmed",
            "payment_mode": "cod",
            "line_items": [{"name": "Cotton Tee", "price": 599, "quantity": 1}],
            "shipping_address": {
                "firstName": "Asha",
                "lastName": "Roy",
                "address1": "4 Lake Road",
                "city": "Kolkata",
                "state": "West Bengal",
                "zipCode": "700029",
                "phoneNumber": "+91 98300 11111",
            },
        }
        values.update(overrides)
        order = Order(**values)
        db.add(order)
        db.commit()
        return order

    return _make_order


@pytest.fixture()
def shipped(db, make_order):
    """A manifested shipment for ORD1 on waybill WB1."""

    def _shipped(state="CREATED", order_id="ORD1", waybill="WB1"):
        make_order(order_id, status="processing", shipment_created=True, waybill_number=waybill)
        db.add(
            Waybill(
                code=waybill,
                status=Waybill.StatusChoices.USED,
                source=Waybill.SourceChoices.CARRIER_BULK,
                generated_at=datetime(2024, 1, 1),
                reserved_for=order_id,
            )
        )
        record = ShipmentRecord(
            order_id=order_id,
            waybill_numbers=[waybill],
            pickup_location=WAREHOUSE,
            shipping_mode="Surface",
            shipment_type="FORWARD",
            payment_mode="COD",
            state=state,
            scans=[],
        )
        db.add(record)
        db.commit()
        return record

    return _shipped
