"""Tests for waybill allocation across stored, carrier and fallback sources."""

from unittest.mock import MagicMock

import pytest
from models import Waybill
from utils.allocator import LOCAL_FALLBACK, RateWindow, WaybillAllocator
from utils.carrier import BULK_WAYBILL_PATH, SINGLE_WAYBILL_PATH, CarrierClient
from utils.errors import (
    CarrierValidationError,
    ConfigurationError,
    InvalidArgument,
    RateLimited,
    Transient,
)

from conftest import PRIMARY_URL, FakeResponse

STATUS = Waybill.StatusChoices
SOURCE = Waybill.SourceChoices


def _batch(prefix, n):
    return ",".join(f"{prefix}{i:04d}" for i in range(n))


class TestLimits:
    def test_beyond_the_window_is_rate_limited_without_io(self, allocator, http_session):
        with pytest.raises(RateLimited):
            allocator.allocate(60000, prefer_stored=False)
        http_session.request.assert_not_called()

    @pytest.mark.parametrize("count", [0, -3, 10001])
    def test_count_out_of_range(self, allocator, http_session, count):
        with pytest.raises(InvalidArgument):
            allocator.allocate(count)
        http_session.request.assert_not_called()

    def test_rolling_window_expires(self):
        now = MagicMock(return_value=1000.0)
        window = RateWindow(100, seconds=300, clock=now)

        window.acquire(60, "test")
        with pytest.raises(RateLimited):
            window.acquire(50, "test")
        assert window.used() == 60

        now.return_value = 1301.0
        window.acquire(50, "test")
        assert window.used() == 50

    def test_window_checked_before_calling_carrier(self, inventory, client, carrier):
        carrier.on(BULK_WAYBILL_PATH, FakeResponse(200, _batch("B", 30)))
        allocator = WaybillAllocator(
            inventory, client, bulk_window=RateWindow(40), single_window=RateWindow(750)
        )

        allocator.allocate(30, prefer_stored=False)
        with pytest.raises(RateLimited):
            allocator.allocate(30, prefer_stored=False)
        assert len(carrier.calls) == 1


class TestStrategies:
    def test_stored_codes_are_preferred(self, allocator, inventory, http_session):
        inventory.store(["S1", "S2", "S3"])

        allocation = allocator.allocate(2, reserved_for="ORD1")

        assert allocation.codes == ["S1", "S2"]
        assert allocation.source == "carrier"
        assert all(w.status == STATUS.RESERVED for w in allocation.waybills)
        http_session.request.assert_not_called()

    def test_partial_carrier_batches_request_only_the_shortfall(self, allocator, carrier, inventory):
        carrier.on(
            BULK_WAYBILL_PATH,
            FakeResponse(200, _batch("B", 25)),
            FakeResponse(200, _batch("C", 5)),
        )

        allocation = allocator.allocate(30, prefer_stored=False)

        assert len(allocation.codes) == 30
        assert [c["data"] for c in carrier.calls] == [{"count": 30}, {"count": 5}]
        assert inventory.stats()["reserved"] == 30

    def test_single_endpoint_for_one_remaining_code(self, allocator, carrier, inventory):
        inventory.store(["S1", "S2"])
        carrier.on(SINGLE_WAYBILL_PATH, FakeResponse(200, "12345678901234"))

        allocation = allocator.allocate(3)

        assert allocation.codes == ["S1", "S2", "12345678901234"]
        assert inventory.get("12345678901234").source == SOURCE.CARRIER_SINGLE

    def test_persistent_shortfall_releases_everything(self, allocator, carrier, inventory):
        inventory.store(["S1"])
        carrier.on(BULK_WAYBILL_PATH, FakeResponse(200, "B0001"))

        with pytest.raises(Transient):
            allocator.allocate(4)

        # Stored and freshly generated codes are all back in the pool
        assert inventory.stats()["reserved"] == 0
        assert inventory.count_available() == 2


class TestFallback:
    def test_unconfigured_carrier_falls_back_to_local_codes(self, inventory, http_session):
        client = CarrierClient(token="", base_urls=[PRIMARY_URL], session=http_session)
        allocator = WaybillAllocator(inventory, client)

        allocation = allocator.allocate(2, reserved_for="ORD9")

        assert allocation.source == LOCAL_FALLBACK
        assert len(allocation.codes) == 2
        for waybill in allocation.waybills:
            assert len(waybill.code) == 14 and waybill.code.isdigit()
            assert waybill.status == STATUS.RESERVED
            assert waybill.source == SOURCE.LOCAL_FALLBACK
            assert waybill.reserved_for == "ORD9"
        http_session.request.assert_not_called()

    def test_fallback_codes_never_return_through_claim(self, inventory, http_session):
        client = CarrierClient(token="", base_urls=[PRIMARY_URL], session=http_session)
        allocation = WaybillAllocator(inventory, client).allocate(2)

        inventory.release(allocation.codes)

        assert inventory.claim(5) == []

    def test_fallback_can_be_refused(self, inventory, http_session):
        client = CarrierClient(token="", base_urls=[PRIMARY_URL], session=http_session)

        with pytest.raises(ConfigurationError):
            WaybillAllocator(inventory, client).allocate(1, allow_fallback=False)

    def test_carrier_outage_falls_back(self, allocator, carrier):
        carrier.on(BULK_WAYBILL_PATH, FakeResponse(503, text="maintenance"))

        allocation = allocator.allocate(2, prefer_stored=False)

        assert allocation.source == LOCAL_FALLBACK
        assert len(carrier.calls) == 6

    def test_carrier_rejection_does_not_fall_back(self, allocator, carrier, inventory):
        inventory.store(["S1"])
        carrier.on(BULK_WAYBILL_PATH, FakeResponse(400, text="count too large"))

        with pytest.raises(CarrierValidationError):
            allocator.allocate(3)

        assert inventory.get("S1").status == STATUS.AVAILABLE
        assert inventory.stats()["by_source"] == {SOURCE.CARRIER_BULK: 1}


class TestReplenish:
    def test_tops_up_to_minimum(self, allocator, carrier, inventory):
        inventory.store(["S1", "S2", "S3"])
        carrier.on(BULK_WAYBILL_PATH, FakeResponse(200, "N1,N2"))

        assert allocator.replenish(5) == 2
        assert carrier.calls[0]["data"] == {"count": 2}
        assert inventory.count_available() == 5

    def test_sufficient_stock_makes_no_call(self, allocator, inventory, http_session):
        inventory.store(["S1", "S2"])

        assert allocator.replenish(2) == 0
        http_session.request.assert_not_called()
