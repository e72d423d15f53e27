"""Orchestration for check-in, dock assignment, blocking and daily-log workflows."""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from dockdesk.core.config import Settings, get_settings
from dockdesk.core.errors import DuplicateCheckIn, InvalidPickupNumber, StaleWrite
from dockdesk.core.logging import logger
from dockdesk.models.yard import (
    ACTIVE_STATUSES,
    BlockEntry,
    CheckInRequest,
    DockAssignmentRequest,
    DockBoardResponse,
    DockState,
    DockStatus,
    LoadMetrics,
    LoadRecord,
    LoadStatus,
    LoadStatusTransitionRequest,
    NotificationSummary,
)
from dockdesk.services.appointments import AppointmentPolicy, dwell_minutes
from dockdesk.services.assignment import AssignmentValidator
from dockdesk.services.dock_occupancy import YardLayout, count_by_status, resolve_dock, resolve_dock_board
from dockdesk.services.notifications import DockNotifier
from dockdesk.services.schedule import AppointmentBook
from dockdesk.services.yard_state import YardStateStore, yard_state_store


class YardEngine:
    """Business orchestration layer for the dock check-in desk."""

    PICKUP_PATTERNS = (
        re.compile(r"^2\d{6}$"),
        re.compile(r"^4\d{6}$"),
        re.compile(r"^44\d{8}$"),
        re.compile(r"^8\d{7}$"),
        re.compile(r"^TLNA-SO-00\d{4}$"),
        re.compile(r"^\d{6}$"),
    )
    STATUS_ORDER = [
        LoadStatus.PENDING,
        LoadStatus.CHECKED_IN,
        LoadStatus.ASSIGNED,
        LoadStatus.LOADING,
        LoadStatus.COMPLETED,
        LoadStatus.CHECKED_OUT,
        LoadStatus.DEPARTED,
    ]
    # Timestamp stamped on entry to a stage; cleared when a CSR reverts before it.
    STAGE_TIMESTAMPS = (
        (LoadStatus.LOADING, "start_time"),
        (LoadStatus.COMPLETED, "end_time"),
        (LoadStatus.CHECKED_OUT, "check_out_time"),
    )

    def __init__(
        self,
        store: Optional[YardStateStore] = None,
        notifier: Optional[DockNotifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or yard_state_store
        self.notifier = notifier or DockNotifier(self.store, self.settings)
        self.layout = YardLayout.from_settings(self.settings)
        self.policy = AppointmentPolicy.from_settings(self.settings)
        self.validator = AssignmentValidator(self.layout)
        self.schedule = AppointmentBook(self.store, self.policy, self.settings)

    # ------------------------------------------------------------- helpers

    @classmethod
    def normalize_pickup_number(cls, value: str) -> str:
        cleaned = re.sub(r"\s", "", value or "").upper()
        if not any(pattern.match(cleaned) for pattern in cls.PICKUP_PATTERNS):
            raise InvalidPickupNumber(
                "Invalid pickup number. Must match: 2xxxxxx, 4xxxxxx, 44xxxxxxxx, "
                "8xxxxxxx, TLNA-SO-00xxxx, or xxxxxx"
            )
        return cleaned

    def local_day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """UTC instants bounding one yard-local calendar day."""
        zone = self.policy.zone
        start = datetime.combine(day, time(0, 0), tzinfo=zone)
        end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=zone)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def _stage_rank(self, status: LoadStatus) -> int:
        return self.STATUS_ORDER.index(status)

    # ------------------------------------------------------------ check-in

    def check_in(
        self,
        request: CheckInRequest,
        yard_id: str,
        actor: str,
        now: Optional[datetime] = None,
    ) -> LoadRecord:
        pickup_number = self.normalize_pickup_number(request.pickup_number)
        appointment = self.policy.normalize(request.appointment_time)
        now = now or datetime.now(timezone.utc)
        today = self.policy.to_local(now).date()

        day_start, day_end = self.local_day_bounds(today)
        existing = self.store.find_check_in(yard_id, pickup_number, day_start, day_end)
        if existing is not None:
            raise DuplicateCheckIn(
                f"Pickup number {pickup_number} has already checked in today ({existing.load_id})"
            )

        # Only today's booking applies; a later one belongs to a future visit.
        scheduled = self.schedule.find(yard_id, pickup_number, now=now)
        if scheduled is not None and scheduled.scheduled_date != today:
            scheduled = None
        if appointment is None and scheduled is not None:
            appointment = scheduled.scheduled_time

        record = LoadRecord(
            load_id=self.store.generate_load_id(yard_id),
            pickup_number=pickup_number,
            driver_name=request.driver_name,
            driver_phone=request.driver_phone,
            carrier_name=request.carrier_name,
            trailer_number=request.trailer_number,
            trailer_length=request.trailer_length,
            load_type=request.load_type,
            destination_city=request.destination_city,
            destination_state=request.destination_state.upper(),
            notes=request.notes,
            appointment_time=appointment,
            scheduled_appointment_id=scheduled.appointment_id if scheduled is not None else None,
            status=LoadStatus.PENDING,
            check_in_time=now,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_load(yard_id, record)
        self.store.record_timeline_event(
            yard_id,
            record.load_id,
            event_type="checked_in",
            actor=actor,
            details={
                "pickup_number": pickup_number,
                "appointment_time": appointment,
                "scheduled_appointment_id": record.scheduled_appointment_id,
            },
        )
        logger.info("Driver checked in", load_id=record.load_id, pickup_number=pickup_number)
        return record

    # --------------------------------------------------------------- reads

    def get_load(self, yard_id: str, load_id: str) -> LoadRecord:
        load = self.store.get_load(yard_id, load_id)
        if load is None:
            raise KeyError(load_id)
        return load

    def dock_board(self, yard_id: str, status: Optional[DockStatus] = None) -> DockBoardResponse:
        states = resolve_dock_board(
            self.layout,
            self.store.list_active_docked_loads(yard_id),
            self.store.block_map(yard_id),
        )
        counts = count_by_status(states)
        if status is not None:
            states = [state for state in states if state.status == status]
        return DockBoardResponse(counts_by_status=counts, docks=states)

    def check_dock(self, yard_id: str, dock_number: str, exclude_load_id: Optional[str] = None) -> DockState:
        """Side-effect-free availability check; safe to call at any cadence."""
        return resolve_dock(
            self.layout,
            dock_number,
            self.store.list_active_docked_loads(yard_id),
            self.store.block_map(yard_id),
            exclude_load_id=exclude_load_id,
        )

    def load_metrics(self, load: LoadRecord, now: Optional[datetime] = None) -> LoadMetrics:
        return LoadMetrics(
            load_id=load.load_id,
            adherence=self.policy.adherence(load.appointment_time, load.check_in_time),
            detention=self.policy.detention(load.appointment_time, load.check_in_time, load.end_time),
            dwell_minutes=dwell_minutes(load.check_in_time, load.check_out_time, now),
        )

    def daily_log(self, yard_id: str, day: Optional[date] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        day = day or self.policy.to_local(now).date()
        day_start, day_end = self.local_day_bounds(day)
        loads = self.store.list_loads(yard_id, checked_in_from=day_start, checked_in_before=day_end)
        loads.sort(key=lambda row: row.check_in_time, reverse=True)

        counts = {status.value: 0 for status in LoadStatus}
        items: List[Dict[str, Any]] = []
        for load in loads:
            counts[load.status.value] += 1
            items.append(
                {
                    "load": load.model_dump(mode="json"),
                    "metrics": self.load_metrics(load, now=now).model_dump(mode="json"),
                    "appointment_display": self.policy.display(load.appointment_time),
                }
            )
        return {"date": day.isoformat(), "counts_by_status": counts, "items": items, "count": len(items)}

    def timeline(self, yard_id: str, load_id: str) -> Dict[str, Any]:
        self.get_load(yard_id, load_id)
        return {"load_id": load_id, "events": self.store.list_timeline(yard_id, load_id=load_id)}

    # -------------------------------------------------------------- writes

    def assign_dock(self, request: DockAssignmentRequest, yard_id: str, actor: str) -> Dict[str, Any]:
        load = self.get_load(yard_id, request.load_id)
        if request.expected_version is not None and request.expected_version != load.version:
            raise StaleWrite(
                f"Version conflict for {load.load_id}. expected={request.expected_version} current={load.version}"
            )
        if load.status not in ACTIVE_STATUSES:
            raise ValueError(f"Load {load.load_id} is {load.status.value}; only active loads can take a dock")

        appointment = load.appointment_time
        if request.appointment_time is not None:
            appointment = self.policy.normalize(request.appointment_time)
        dock_number = self.layout.require(request.dock_number)

        dock_state = self.check_dock(yard_id, dock_number, exclude_load_id=load.load_id)
        approved = self.validator.check(
            load.load_id,
            dock_state,
            confirm_double_booking=request.confirm_double_booking,
            appointment_time=appointment,
        )

        next_status = load.status
        if load.status in {LoadStatus.PENDING, LoadStatus.CHECKED_IN}:
            next_status = LoadStatus.ASSIGNED
        updated = load.model_copy(
            update={
                "dock_number": dock_number,
                "appointment_time": appointment,
                "status": next_status,
                "notes": request.notes if request.notes is not None else load.notes,
            }
        )
        saved = self.store.commit_dock_assignment(
            yard_id,
            updated,
            expected_version=load.version,
            expected_occupant_ids=approved.occupant_ids,
        )
        self.store.record_timeline_event(
            yard_id,
            saved.load_id,
            event_type="dock_assigned",
            actor=actor,
            details={
                "dock_number": dock_number,
                "previous_dock": load.dock_number,
                "prior_dock_status": approved.prior_status.value,
                "double_booked": approved.double_booked,
                "appointment_time": appointment,
                "version": saved.version,
            },
        )
        logger.info(
            "Dock assigned",
            load_id=saved.load_id,
            dock_number=dock_number,
            double_booked=approved.double_booked,
        )

        notification = self._notify_driver(yard_id, saved) if request.notify_driver else None
        return {
            "assignment": approved.model_dump(mode="json"),
            "load": saved.model_dump(mode="json"),
            "notification": notification,
        }

    def _notify_driver(self, yard_id: str, load: LoadRecord) -> Dict[str, Any]:
        summary = NotificationSummary(
            load_id=load.load_id,
            dock_display=self.layout.display_name(load.dock_number or ""),
            driver_name=load.driver_name,
            driver_phone=load.driver_phone,
            reference_number=load.pickup_number,
            appointment_display=self.policy.display(load.appointment_time),
        )
        try:
            return self.notifier.notify_assignment(yard_id, summary)
        except Exception as exc:
            logger.error("Driver notification could not be recorded", load_id=load.load_id, error=str(exc))
            return {"status": "failed", "error": str(exc)}

    def transition_load_status(
        self,
        load_id: str,
        request: LoadStatusTransitionRequest,
        yard_id: str,
        actor: str,
    ) -> LoadRecord:
        existing = self.get_load(yard_id, load_id)
        current_version = existing.version
        if request.expected_version is not None and request.expected_version != current_version:
            raise StaleWrite(
                f"Version conflict for {load_id}. expected={request.expected_version} current={current_version}"
            )

        current_status = existing.status
        next_status = request.status
        if current_status == next_status:
            return existing

        at = request.at or datetime.now(timezone.utc)
        next_rank = self._stage_rank(next_status)
        changes: Dict[str, Any] = {"status": next_status}
        for stage, field_name in self.STAGE_TIMESTAMPS:
            if next_rank < self._stage_rank(stage):
                changes[field_name] = None
            elif next_status == stage and getattr(existing, field_name) is None:
                changes[field_name] = at
        if next_status == LoadStatus.DEPARTED and existing.check_out_time is None:
            changes["check_out_time"] = at

        updated = existing.model_copy(update=changes)
        details: Dict[str, Any] = {"from_status": current_status.value, "to_status": next_status.value}
        reopens_dock = (
            existing.status not in ACTIVE_STATUSES and next_status in ACTIVE_STATUSES and bool(existing.dock_number)
        )
        if reopens_dock:
            # The dock was released when the load finished; claim it again.
            dock_number = self.layout.require(existing.dock_number)
            approved = self.validator.check(
                load_id,
                self.check_dock(yard_id, dock_number, exclude_load_id=load_id),
                confirm_double_booking=request.confirm_double_booking,
                appointment_time=existing.appointment_time,
            )
            row = self.store.commit_dock_assignment(
                yard_id,
                updated,
                expected_version=current_version,
                expected_occupant_ids=approved.occupant_ids,
            )
            details.update(dock_number=dock_number, double_booked=approved.double_booked)
        else:
            row = self.store.update_load(yard_id, updated, expected_version=current_version)

        reverted = next_rank < self._stage_rank(current_status)
        details["version"] = row.version
        self.store.record_timeline_event(
            yard_id,
            load_id,
            event_type="status_reverted" if reverted else "status_changed",
            actor=actor,
            details=details,
        )
        if reverted:
            logger.info("Load status reverted", load_id=load_id, from_status=current_status.value, to_status=next_status.value)
        return row

    def block_dock(self, yard_id: str, dock_number: str, reason: Optional[str], actor: str) -> BlockEntry:
        dock_number = self.layout.require(dock_number)
        cleaned = self.validator.block_reason(reason)
        entry = self.store.set_block(yard_id, dock_number, cleaned, blocked_by=actor)
        self.store.record_timeline_event(
            yard_id,
            f"dock:{dock_number}",
            event_type="dock_blocked",
            actor=actor,
            details={"reason": cleaned},
        )
        logger.info("Dock blocked", dock_number=dock_number, reason=cleaned)
        return entry

    def unblock_dock(self, yard_id: str, dock_number: str, actor: str) -> Dict[str, Any]:
        dock_number = self.layout.require(dock_number)
        removed = self.store.delete_block(yard_id, dock_number)
        if removed:
            self.store.record_timeline_event(
                yard_id,
                f"dock:{dock_number}",
                event_type="dock_unblocked",
                actor=actor,
            )
            logger.info("Dock unblocked", dock_number=dock_number)
        return {"dock_number": dock_number, "was_blocked": removed}


yard_engine = YardEngine()
