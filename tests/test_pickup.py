"""Tests for pickup scheduling and its wallet-balance degraded mode."""

import itertools
import threading
from unittest.mock import patch

import pytest
from models import PickupRequest, PickupWaybill
from utils.carrier import PICKUP_PATH
from utils.errors import AlreadyExists, CarrierValidationError, InvalidArgument, NotFound
from utils.pickup import PickupScheduler, is_wallet_failure

from conftest import WAREHOUSE, FakeResponse

STATUS = PickupRequest.StatusChoices


@pytest.fixture()
def scheduler(client, warehouse):
    return PickupScheduler(client)


def schedule(scheduler, waybills=("WB1", "WB2"), date="2024-06-01", time="10:30"):
    return scheduler.schedule(list(waybills), date, time, WAREHOUSE, "Ravi", "9830012345")


class TestSchedule:
    def test_scheduled_with_carrier_id(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 4417, "pickup_date": "2024-06-01"}))

        pickup = schedule(scheduler)

        assert pickup.status == STATUS.SCHEDULED
        assert pickup.pickup_id == "4417"
        assert pickup.scheduled_date == "2024-06-01 10:30"
        assert carrier.calls[0]["json"] == {
            "pickup_time": "10:30:00",
            "pickup_date": "2024-06-01",
            "pickup_location": WAREHOUSE,
            "expected_package_count": 2,
        }

    def test_generated_id_when_carrier_omits_one(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"success": True}))

        assert schedule(scheduler).pickup_id.startswith("PU")

    def test_wallet_rejection_degrades_to_test_record(self, scheduler, carrier):
        carrier.on(
            PICKUP_PATH,
            FakeResponse(400, text='{"error": "Insufficient wallet balance. Minimum 500.0 required"}'),
        )

        pickup = schedule(scheduler)

        assert pickup.status == STATUS.SCHEDULED_TEST
        assert pickup.pickup_id.startswith("PU")
        assert "wallet balance" in pickup.notes

    def test_wallet_failure_in_success_body(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"success": False, "error": "Insufficient balance"}))

        assert schedule(scheduler).status == STATUS.SCHEDULED_TEST

    def test_other_rejections_propagate(self, scheduler, carrier, db):
        carrier.on(PICKUP_PATH, FakeResponse(400, text="Invalid pickup location"))

        with pytest.raises(CarrierValidationError) as exc:
            schedule(scheduler)

        assert exc.value.remark == "Invalid pickup location"
        assert db.query(PickupRequest).count() == 0

    @pytest.mark.parametrize(
        "waybills, date, time",
        [
            ((), "2024-06-01", "10:30"),
            (tuple(f"WB{i}" for i in range(1001)), "2024-06-01", "10:30"),
            (("WB1",), "01/06/2024", "10:30"),
            (("WB1",), "2024-02-30", "10:30"),
            (("WB1",), "2024-06-01", "24:00"),
            (("WB1",), "2024-06-01", "10:5"),
        ],
    )
    def test_invalid_input_fails_before_io(self, scheduler, carrier, waybills, date, time):
        with pytest.raises(InvalidArgument):
            schedule(scheduler, waybills, date, time)
        assert carrier.calls == []

    def test_waybill_in_open_pickup(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 1}), FakeResponse(200, {"pickup_id": 2}))
        schedule(scheduler, ("WB1", "WB2"))

        with pytest.raises(AlreadyExists):
            schedule(scheduler, ("WB2", "WB3"))
        assert len(carrier.calls) == 1

    def test_waybill_free_again_after_cancel(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 1}), FakeResponse(200, {"pickup_id": 2}))
        first = schedule(scheduler, ("WB1",))
        scheduler.cancel(first.pickup_id)

        assert schedule(scheduler, ("WB1",)).pickup_id == "2"

    def test_rejected_pickup_frees_its_waybills(self, scheduler, carrier):
        carrier.on(
            PICKUP_PATH,
            FakeResponse(400, text="Invalid pickup location"),
            FakeResponse(200, {"pickup_id": 2}),
        )
        with pytest.raises(CarrierValidationError):
            schedule(scheduler, ("WB1",))

        assert schedule(scheduler, ("WB1",)).pickup_id == "2"

    def test_guard_holds_across_scheduler_instances(self, client, warehouse, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 1}), FakeResponse(200, {"pickup_id": 2}))
        schedule(PickupScheduler(client), ("WB1",))

        with pytest.raises(AlreadyExists):
            schedule(PickupScheduler(client), ("WB1",))

    def test_index_rejects_a_hold_the_read_check_missed(self, scheduler, carrier, db):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 1}), FakeResponse(200, {"pickup_id": 2}))
        schedule(scheduler, ("WB1", "WB2"))

        with patch.object(PickupScheduler, "held_waybills", return_value=[]):
            with pytest.raises(AlreadyExists):
                schedule(scheduler, ("WB2", "WB3"))

        assert len(carrier.calls) == 1
        assert db.query(PickupWaybill).filter(PickupWaybill.waybill == "WB3").count() == 0

    def test_concurrent_requests_take_a_waybill_once(self, file_db, client, warehouse, carrier, db):
        ids = itertools.count(1)
        carrier.on(PICKUP_PATH, lambda **_: FakeResponse(200, {"pickup_id": next(ids)}))
        barrier = threading.Barrier(2)
        outcomes = []

        def request_pickup():
            barrier.wait()
            try:
                outcomes.append(schedule(PickupScheduler(client), ("WB1",)).status)
            except AlreadyExists:
                outcomes.append("conflict")

        threads = [threading.Thread(target=request_pickup) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == [STATUS.SCHEDULED, "conflict"]
        assert db.query(PickupRequest).count() == 1
        assert db.query(PickupWaybill).filter(PickupWaybill.is_open.is_(True)).count() == 1


class TestCancel:
    def test_cancel_appends_note(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 7}))
        schedule(scheduler)

        pickup = scheduler.cancel("7", reason="Warehouse closed")

        assert pickup.status == STATUS.CANCELLED
        assert "Warehouse closed" in pickup.notes

    def test_cancelling_twice_is_a_no_op(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 7}))
        schedule(scheduler)
        notes = scheduler.cancel("7").notes

        assert scheduler.cancel("7").notes == notes

    def test_unknown_pickup(self, scheduler):
        with pytest.raises(NotFound):
            scheduler.cancel("missing")

    def test_list_and_get(self, scheduler, carrier):
        carrier.on(PICKUP_PATH, FakeResponse(200, {"pickup_id": 7}))
        schedule(scheduler)

        assert scheduler.get("7").pickup_location == WAREHOUSE
        assert [p.pickup_id for p in scheduler.list(status="scheduled")] == ["7"]
        assert scheduler.list(status="cancelled") == []


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Insufficient wallet balance", True),
        ("INSUFFICIENT BALANCE", True),
        ("Invalid pickup location", False),
        (None, False),
    ],
)
def test_wallet_failure_detection(text, expected):
    assert is_wallet_failure(text) is expected
