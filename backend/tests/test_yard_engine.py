"""Workflow tests for check-in, assignment and status transitions."""
from __future__ import annotations

import os
import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest


TMP = Path(__file__).resolve().parent / ".tmp_engine"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["YARD_DB_PATH"] = str(TMP / "yard_state.db")
os.environ["SMS_WEBHOOK_URL"] = ""

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dockdesk.core.config import Settings  # noqa: E402
from dockdesk.core.errors import (  # noqa: E402
    DockBlocked,
    DuplicateCheckIn,
    InvalidPickupNumber,
    RequiresConfirmation,
    StaleWrite,
)
from dockdesk.models.yard import (  # noqa: E402
    AppointmentCreateRequest,
    CheckInRequest,
    DockAssignmentRequest,
    DockStatus,
    LoadStatus,
    LoadStatusTransitionRequest,
)
from dockdesk.services.notifications import DockNotifier  # noqa: E402
from dockdesk.services.yard_engine import YardEngine  # noqa: E402
from dockdesk.services.yard_state import YardStateStore  # noqa: E402


YARD = "engine_test"


@pytest.fixture
def engine(tmp_path):
    settings = Settings(sms_webhook_url="", dock_numbers="1-20")
    store = YardStateStore(db_path=str(tmp_path / "yard.db"))
    return YardEngine(store=store, notifier=DockNotifier(store, settings), settings=settings)


def _request(pickup: str = "2123456", **overrides) -> CheckInRequest:
    payload = {
        "driver_name": "Sam Hauler",
        "driver_phone": "+15555550100",
        "carrier_name": "Acme Freight",
        "trailer_number": "TR-88",
        "trailer_length": "53",
        "pickup_number": pickup,
        "destination_city": "Columbus",
        "destination_state": "oh",
        "appointment_time": "8:00 AM",
    }
    payload.update(overrides)
    return CheckInRequest(**payload)


def _at(hour: int, minute: int = 0, day: int = 15) -> datetime:
    return datetime(2026, 7, day, hour, minute, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2123456", "2123456"),
        ("4 123 456", "4123456"),
        ("4412345678", "4412345678"),
        ("81234567", "81234567"),
        ("tlna-so-001234", "TLNA-SO-001234"),
        ("123456", "123456"),
    ],
)
def test_pickup_number_formats(raw, expected):
    assert YardEngine.normalize_pickup_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "1234567", "ABC", "12345"])
def test_pickup_number_rejected(raw):
    with pytest.raises(InvalidPickupNumber):
        YardEngine.normalize_pickup_number(raw)


def test_check_in_creates_pending_record(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 50))
    assert load.load_id == "CHK-000001"
    assert load.status == LoadStatus.PENDING
    assert load.appointment_time == "0800"
    assert load.destination_state == "OH"
    assert load.dock_number is None

    events = engine.timeline(YARD, load.load_id)["events"]
    assert [event["event_type"] for event in events] == ["checked_in"]


def test_same_day_duplicate_is_rejected_by_local_date(engine):
    engine.check_in(_request(), YARD, actor="kiosk", now=_at(12, 0))
    # 03:30Z on the 16th is 23:30 on the 15th in the yard.
    with pytest.raises(DuplicateCheckIn):
        engine.check_in(_request(), YARD, actor="kiosk", now=_at(3, 30, day=16))

    next_day = engine.check_in(_request(), YARD, actor="kiosk", now=_at(12, 0, day=16))
    assert next_day.load_id == "CHK-000002"


def test_assign_blocked_dock_then_unblock(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 50))
    engine.block_dock(YARD, "12", "forklift down", actor="csr")

    with pytest.raises(DockBlocked):
        engine.assign_dock(DockAssignmentRequest(load_id=load.load_id, dock_number="12"), YARD, actor="csr")

    assert engine.unblock_dock(YARD, "12", actor="csr") == {"dock_number": "12", "was_blocked": True}
    assert engine.unblock_dock(YARD, "12", actor="csr")["was_blocked"] is False

    result = engine.assign_dock(DockAssignmentRequest(load_id=load.load_id, dock_number="12"), YARD, actor="csr")
    assert result["load"]["status"] == "assigned"
    assert result["load"]["dock_number"] == "12"
    assert result["load"]["version"] == 2
    assert result["assignment"]["prior_status"] == "available"
    assert result["notification"]["status"] == "queued"
    assert "Dock 12" in result["notification"]["payload"]["body"]


def test_double_booking_requires_confirmation(engine):
    first = engine.check_in(_request("2111111"), YARD, actor="kiosk", now=_at(11, 0))
    second = engine.check_in(_request("2222222"), YARD, actor="kiosk", now=_at(11, 5))
    engine.assign_dock(DockAssignmentRequest(load_id=first.load_id, dock_number="4"), YARD, actor="csr")

    with pytest.raises(RequiresConfirmation) as excinfo:
        engine.assign_dock(DockAssignmentRequest(load_id=second.load_id, dock_number="4"), YARD, actor="csr")
    assert excinfo.value.conflicts[0]["load_id"] == first.load_id

    result = engine.assign_dock(
        DockAssignmentRequest(load_id=second.load_id, dock_number="4", confirm_double_booking=True),
        YARD,
        actor="csr",
    )
    assert result["assignment"]["double_booked"] is True
    assert engine.check_dock(YARD, "4").status == DockStatus.DOUBLE_BOOKED


def test_reassigning_to_own_dock_does_not_conflict_with_itself(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 0))
    engine.assign_dock(DockAssignmentRequest(load_id=load.load_id, dock_number="3"), YARD, actor="csr")
    again = engine.assign_dock(
        DockAssignmentRequest(load_id=load.load_id, dock_number="3", appointment_time="work in"),
        YARD,
        actor="csr",
    )
    assert again["assignment"]["prior_status"] == "available"
    assert again["load"]["appointment_time"] == "work_in"


def test_assign_with_stale_version_is_rejected(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 0))
    with pytest.raises(StaleWrite):
        engine.assign_dock(
            DockAssignmentRequest(load_id=load.load_id, dock_number="3", expected_version=3),
            YARD,
            actor="csr",
        )


def test_status_transitions_stamp_and_revert_timestamps(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 50))
    engine.assign_dock(DockAssignmentRequest(load_id=load.load_id, dock_number="5"), YARD, actor="csr")

    loading = engine.transition_load_status(
        load.load_id, LoadStatusTransitionRequest(status=LoadStatus.LOADING, at=_at(12, 10)), YARD, actor="csr"
    )
    assert loading.start_time == _at(12, 10)

    completed = engine.transition_load_status(
        load.load_id, LoadStatusTransitionRequest(status=LoadStatus.COMPLETED, at=_at(14, 30)), YARD, actor="csr"
    )
    assert completed.end_time == _at(14, 30)
    assert engine.check_dock(YARD, "5").status == DockStatus.AVAILABLE

    metrics = engine.load_metrics(completed, now=_at(15, 0))
    assert metrics.adherence.on_time is True
    assert metrics.detention.detention_minutes == 30
    assert metrics.dwell_minutes == 190

    reverted = engine.transition_load_status(
        load.load_id, LoadStatusTransitionRequest(status=LoadStatus.LOADING), YARD, actor="csr"
    )
    assert reverted.end_time is None
    assert reverted.start_time == _at(12, 10)

    departed = engine.transition_load_status(
        load.load_id, LoadStatusTransitionRequest(status=LoadStatus.DEPARTED, at=_at(16, 0)), YARD, actor="csr"
    )
    assert departed.check_out_time == _at(16, 0)
    event_types = [event["event_type"] for event in engine.timeline(YARD, load.load_id)["events"]]
    assert "status_reverted" in event_types


def test_transition_to_same_status_is_a_no_op(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 50))
    same = engine.transition_load_status(
        load.load_id, LoadStatusTransitionRequest(status=LoadStatus.PENDING), YARD, actor="csr"
    )
    assert same.version == load.version


def test_daily_log_lists_local_day(engine):
    engine.check_in(_request("2111111"), YARD, actor="kiosk", now=_at(11, 0))
    engine.check_in(_request("2222222", appointment_time="LTL"), YARD, actor="kiosk", now=_at(13, 0))
    engine.check_in(_request("2333333"), YARD, actor="kiosk", now=_at(12, 0, day=16))

    log = engine.daily_log(YARD, day=date(2026, 7, 15), now=_at(18, 0))
    assert log["count"] == 2
    assert log["counts_by_status"]["pending"] == 2
    assert [item["load"]["pickup_number"] for item in log["items"]] == ["2222222", "2111111"]
    assert log["items"][0]["appointment_display"] == "LTL"


def test_dock_board_filter(engine):
    load = engine.check_in(_request(), YARD, actor="kiosk", now=_at(11, 0))
    engine.assign_dock(DockAssignmentRequest(load_id=load.load_id, dock_number="Ramp"), YARD, actor="csr")
    engine.block_dock(YARD, "2", "dock plate", actor="csr")

    board = engine.dock_board(YARD)
    assert len(board.docks) == 21
    assert board.counts_by_status == {"blocked": 1, "double-booked": 0, "in-use": 1, "available": 19}

    blocked = engine.dock_board(YARD, status=DockStatus.BLOCKED)
    assert [state.dock_number for state in blocked.docks] == ["2"]
    assert blocked.counts_by_status["available"] == 19


def _finish(engine, load_id: str, dock_number: str):
    engine.assign_dock(DockAssignmentRequest(load_id=load_id, dock_number=dock_number), YARD, actor="csr")
    engine.transition_load_status(
        load_id, LoadStatusTransitionRequest(status=LoadStatus.LOADING, at=_at(12, 0)), YARD, actor="csr"
    )
    return engine.transition_load_status(
        load_id, LoadStatusTransitionRequest(status=LoadStatus.COMPLETED, at=_at(13, 0)), YARD, actor="csr"
    )


def test_reopening_a_finished_load_rechecks_its_dock(engine):
    first = engine.check_in(_request("2111111"), YARD, actor="kiosk", now=_at(11, 0))
    second = engine.check_in(_request("2222222"), YARD, actor="kiosk", now=_at(11, 5))
    _finish(engine, first.load_id, "3")
    engine.assign_dock(DockAssignmentRequest(load_id=second.load_id, dock_number="3"), YARD, actor="csr")
    engine.block_dock(YARD, "3", "forklift down", actor="csr")

    with pytest.raises(DockBlocked):
        engine.transition_load_status(
            first.load_id, LoadStatusTransitionRequest(status=LoadStatus.LOADING), YARD, actor="csr"
        )
    assert engine.get_load(YARD, first.load_id).status == LoadStatus.COMPLETED

    engine.unblock_dock(YARD, "3", actor="csr")
    with pytest.raises(RequiresConfirmation) as excinfo:
        engine.transition_load_status(
            first.load_id, LoadStatusTransitionRequest(status=LoadStatus.LOADING), YARD, actor="csr"
        )
    assert excinfo.value.conflicts[0]["load_id"] == second.load_id
    assert engine.check_dock(YARD, "3").status == DockStatus.IN_USE

    reopened = engine.transition_load_status(
        first.load_id,
        LoadStatusTransitionRequest(status=LoadStatus.LOADING, confirm_double_booking=True),
        YARD,
        actor="csr",
    )
    assert reopened.status == LoadStatus.LOADING
    assert reopened.end_time is None
    assert engine.check_dock(YARD, "3").status == DockStatus.DOUBLE_BOOKED

    reverted = engine.timeline(YARD, first.load_id)["events"][0]
    assert reverted["event_type"] == "status_reverted"
    assert reverted["details"]["dock_number"] == "3"
    assert reverted["details"]["double_booked"] is True


def test_moving_between_finished_statuses_skips_dock_check(engine):
    first = engine.check_in(_request("2111111"), YARD, actor="kiosk", now=_at(11, 0))
    _finish(engine, first.load_id, "6")
    engine.block_dock(YARD, "6", "door jammed", actor="csr")

    departed = engine.transition_load_status(
        first.load_id, LoadStatusTransitionRequest(status=LoadStatus.DEPARTED, at=_at(14, 0)), YARD, actor="csr"
    )
    assert departed.check_out_time == _at(14, 0)


def test_check_in_takes_appointment_from_todays_schedule(engine):
    booked = engine.schedule.create(
        YARD,
        AppointmentCreateRequest(scheduled_date=date(2026, 7, 15), scheduled_time="1:30 PM", sales_order="2123456"),
        actor="csr",
    )
    engine.schedule.create(
        YARD,
        AppointmentCreateRequest(scheduled_date=date(2026, 7, 16), scheduled_time="0900", delivery="2222222"),
        actor="csr",
    )

    load = engine.check_in(_request(appointment_time=None), YARD, actor="kiosk", now=_at(11, 50))
    assert load.appointment_time == "1330"
    assert load.scheduled_appointment_id == booked.appointment_id

    # Tomorrow's booking is not today's visit.
    early = engine.check_in(_request("2222222", appointment_time=None), YARD, actor="kiosk", now=_at(11, 55))
    assert early.appointment_time is None
    assert early.scheduled_appointment_id is None


def test_entered_appointment_time_overrides_the_schedule(engine):
    booked = engine.schedule.create(
        YARD,
        AppointmentCreateRequest(scheduled_date=date(2026, 7, 15), scheduled_time="1400", sales_order="2123456"),
        actor="csr",
    )
    load = engine.check_in(_request(appointment_time="work in"), YARD, actor="kiosk", now=_at(11, 50))
    assert load.appointment_time == "work_in"
    assert load.scheduled_appointment_id == booked.appointment_id
