"""Unit tests for yard state persistence and conditional writes."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
import os
import sys
from pathlib import Path

import pytest


TMP = Path(__file__).resolve().parent / ".tmp_state"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["YARD_DB_PATH"] = str(TMP / "yard_state.db")
os.environ["SMS_WEBHOOK_URL"] = ""

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dockdesk.core.errors import StaleWrite  # noqa: E402
from dockdesk.models.yard import LoadRecord, LoadStatus, ScheduledAppointment  # noqa: E402
from dockdesk.services.yard_state import YardStateStore  # noqa: E402


YARD = "store_test"
BASE = datetime(2026, 7, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return YardStateStore(db_path=str(tmp_path / "yard.db"))


def _insert(store: YardStateStore, pickup: str, dock: str | None = None, status=LoadStatus.PENDING, minutes=0):
    load = LoadRecord(
        load_id=store.generate_load_id(YARD),
        pickup_number=pickup,
        driver_name="Pat Driver",
        dock_number=dock,
        status=status,
        check_in_time=BASE + timedelta(minutes=minutes),
    )
    return store.insert_load(YARD, load)


def test_load_ids_are_sequential_per_yard(store):
    assert store.generate_load_id("yard_a") == "CHK-000001"
    assert store.generate_load_id("yard_a") == "CHK-000002"
    assert store.generate_load_id("yard_b") == "CHK-000001"


def test_insert_and_read_back(store):
    load = _insert(store, "2123456")
    row = store.get_load(YARD, load.load_id)
    assert row is not None
    assert row.pickup_number == "2123456"
    assert row.check_in_time == load.check_in_time
    assert store.get_load(YARD, "CHK-999999") is None


def test_duplicate_insert_is_rejected(store):
    load = _insert(store, "2123456")
    with pytest.raises(ValueError):
        store.insert_load(YARD, load)


def test_update_bumps_version_and_rejects_stale_writer(store):
    load = _insert(store, "2123456")
    first = store.update_load(YARD, load.model_copy(update={"status": LoadStatus.CHECKED_IN}), expected_version=1)
    assert first.version == 2

    with pytest.raises(StaleWrite):
        store.update_load(YARD, load.model_copy(update={"status": LoadStatus.ASSIGNED}), expected_version=1)

    assert store.get_load(YARD, load.load_id).status == LoadStatus.CHECKED_IN


def test_update_of_missing_load_raises_key_error(store):
    ghost = LoadRecord(load_id="CHK-404404", pickup_number="2123456", driver_name="Nobody")
    with pytest.raises(KeyError):
        store.update_load(YARD, ghost, expected_version=1)


def test_dock_assignment_rejected_when_occupancy_changed(store):
    occupant = _insert(store, "2111111", dock="5", status=LoadStatus.ASSIGNED)
    mover = _insert(store, "2222222", minutes=5)
    placed = mover.model_copy(update={"dock_number": "5", "status": LoadStatus.ASSIGNED})

    # Validator saw an empty dock, but another load landed there first.
    with pytest.raises(StaleWrite):
        store.commit_dock_assignment(YARD, placed, expected_version=1, expected_occupant_ids=[])
    assert store.get_load(YARD, mover.load_id).dock_number is None

    saved = store.commit_dock_assignment(YARD, placed, expected_version=1, expected_occupant_ids=[occupant.load_id])
    assert saved.version == 2
    assert {row.load_id for row in store.list_active_docked_loads(YARD)} == {occupant.load_id, mover.load_id}


def test_dock_assignment_rejected_when_dock_blocked_meanwhile(store):
    mover = _insert(store, "2222222")
    store.set_block(YARD, "7", "dock plate broken", blocked_by="csr")
    placed = mover.model_copy(update={"dock_number": "7", "status": LoadStatus.ASSIGNED})
    with pytest.raises(StaleWrite):
        store.commit_dock_assignment(YARD, placed, expected_version=1, expected_occupant_ids=[])


def test_active_docked_loads_exclude_finished_and_undocked(store):
    _insert(store, "2000001", dock="1", status=LoadStatus.LOADING)
    _insert(store, "2000002", dock="2", status=LoadStatus.COMPLETED)
    _insert(store, "2000003", status=LoadStatus.PENDING)
    docks = [row.dock_number for row in store.list_active_docked_loads(YARD)]
    assert docks == ["1"]


def test_find_check_in_respects_day_window(store):
    load = _insert(store, "2123456")
    found = store.find_check_in(YARD, "2123456", BASE - timedelta(hours=1), BASE + timedelta(hours=1))
    assert found is not None and found.load_id == load.load_id
    assert store.find_check_in(YARD, "2123456", BASE + timedelta(hours=1), BASE + timedelta(hours=2)) is None


def test_block_set_replace_and_delete(store):
    store.set_block(YARD, "12", "forklift down", blocked_by="csr")
    store.set_block(YARD, "12", "door jammed", blocked_by="lead")
    assert store.block_map(YARD) == {"12": "door jammed"}
    assert [entry.blocked_by for entry in store.list_blocks(YARD)] == ["lead"]

    assert store.delete_block(YARD, "12") is True
    assert store.delete_block(YARD, "12") is False
    assert store.block_map(YARD) == {}


def test_timeline_and_outbound_messages_roundtrip(store):
    store.record_timeline_event(YARD, "CHK-000001", event_type="checked_in", actor="kiosk", details={"a": 1})
    events = store.list_timeline(YARD, load_id="CHK-000001")
    assert events[0]["event_type"] == "checked_in"
    assert events[0]["details"] == {"a": 1}

    message = store.add_outbound_message(YARD, channel="driver_sms", recipient="+15555550100", payload={"x": 1})
    assert message["message_id"].startswith("MSG-")
    assert store.list_outbound_messages(YARD, channel="driver_sms")[0]["payload"] == {"x": 1}


def _appointment(appointment_id: str, scheduled_date: date, scheduled_time: str = "0800", **fields):
    return ScheduledAppointment(
        appointment_id=appointment_id,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        **fields,
    )


def test_find_appointment_prefers_sales_order_then_earliest_date(store):
    today = date(2026, 7, 15)
    store.save_appointment(YARD, _appointment("APT-000001", today - timedelta(days=1), sales_order="2123456"))
    store.save_appointment(YARD, _appointment("APT-000002", today + timedelta(days=2), sales_order="2123456"))
    store.save_appointment(YARD, _appointment("APT-000003", today, "1300", sales_order="2123456"))
    store.save_appointment(YARD, _appointment("APT-000004", today, "0600", delivery="2123456"))

    found = store.find_appointment(YARD, "2123456", on_or_after=today)
    assert found is not None and found.appointment_id == "APT-000003"

    by_delivery = store.find_appointment(YARD, "2123456", on_or_after=today + timedelta(days=3))
    assert by_delivery is None
    store.save_appointment(YARD, _appointment("APT-000005", today, "0700", delivery="81234567"))
    assert store.find_appointment(YARD, "81234567", on_or_after=today).appointment_id == "APT-000005"
    assert store.find_appointment("other_yard", "2123456", on_or_after=today) is None


def test_appointment_duplicate_check_and_purge(store):
    today = date(2026, 7, 15)
    store.save_appointment(YARD, _appointment("APT-000001", today, sales_order="2123456"))
    store.save_appointment(YARD, _appointment("APT-000002", today - timedelta(days=10), sales_order="2999999"))

    assert store.has_appointment(YARD, today, "0800", sales_order="2123456") is True
    assert store.has_appointment(YARD, today, "0900", sales_order="2123456") is False
    assert store.has_appointment(YARD, today, "0800", sales_order="2123456", exclude_appointment_id="APT-000001") is False

    assert store.purge_appointments_before(YARD, today - timedelta(days=7)) == 1
    assert store.get_appointment(YARD, "APT-000002") is None
    assert [row.appointment_id for row in store.list_appointments(YARD, today)] == ["APT-000001"]

    assert store.delete_appointment(YARD, "APT-000001") is True
    assert store.delete_appointment(YARD, "APT-000001") is False


def test_concurrent_sequence_generation_is_unique(store):
    yard = "concurrency_yard"

    def _next(_):
        return store.generate_load_id(yard)

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(_next, range(60)))

    assert len(ids) == len(set(ids))
