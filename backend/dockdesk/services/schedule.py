"""Appointment schedule: booked pickup slots matched to drivers at check-in."""
from __future__ import annotations

import re
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from dockdesk.core.config import Settings, get_settings
from dockdesk.core.errors import (
    AppointmentLocked,
    DuplicateAppointment,
    InvalidAppointmentCode,
    MissingAppointmentReference,
)
from dockdesk.core.logging import logger
from dockdesk.models.yard import (
    AppointmentCreateRequest,
    AppointmentSource,
    AppointmentUpdateRequest,
    ScheduledAppointment,
)
from dockdesk.services.appointments import AppointmentPolicy
from dockdesk.services.yard_state import YardStateStore, yard_state_store


def _reference(value: Optional[str]) -> Optional[str]:
    cleaned = re.sub(r"\s", "", value or "").upper()
    return cleaned or None


def _text(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


class AppointmentBook:
    """
    Per-yard schedule of appointments keyed by date and slot.

    Rows entered by a CSR are ``manual`` and may be edited or deleted.
    Imported rows are read-only here.
    """

    def __init__(
        self,
        store: Optional[YardStateStore] = None,
        policy: Optional[AppointmentPolicy] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or yard_state_store
        self.policy = policy or AppointmentPolicy.from_settings(self.settings)

    def today(self, now: Optional[datetime] = None) -> date:
        return self.policy.to_local(now or datetime.now(timezone.utc)).date()

    def _slot_key(self, appointment: ScheduledAppointment) -> Tuple[bool, int, str, str]:
        # Timed slots in clock order, then symbolic slots such as Work In.
        parsed = self.policy.parse(appointment.scheduled_time)
        return (not parsed.timed, parsed.minutes or 0, appointment.sales_order or "", appointment.appointment_id)

    def _slot(self, value: Optional[str]) -> str:
        slot = self.policy.normalize(value)
        if slot is None:
            raise InvalidAppointmentCode(value)
        return slot

    # --------------------------------------------------------------- reads

    def list_day(self, yard_id: str, day: Optional[date] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        today = self.today(now)
        day = day or today
        cutoff = today - timedelta(days=self.settings.appointment_retention_days)
        purged = self.store.purge_appointments_before(yard_id, cutoff)
        if purged:
            logger.info("Purged old appointments", yard_id=yard_id, cutoff=cutoff.isoformat(), count=purged)

        rows = sorted(self.store.list_appointments(yard_id, day), key=self._slot_key)
        return {
            "date": day.isoformat(),
            "appointments": [
                {**row.model_dump(mode="json"), "display_time": self.policy.display(row.scheduled_time)}
                for row in rows
            ],
            "count": len(rows),
        }

    def slot_counts(self, yard_id: str, day: Optional[date] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        day = day or self.today(now)
        rows = sorted(self.store.list_appointments(yard_id, day), key=self._slot_key)
        counts = Counter(row.scheduled_time for row in rows)
        return {"date": day.isoformat(), "counts": dict(counts), "total": len(rows)}

    def find(self, yard_id: str, reference: str, now: Optional[datetime] = None) -> Optional[ScheduledAppointment]:
        key = _reference(reference)
        if key is None:
            return None
        return self.store.find_appointment(yard_id, key, self.today(now))

    def get(self, yard_id: str, appointment_id: str) -> ScheduledAppointment:
        appointment = self.store.get_appointment(yard_id, appointment_id)
        if appointment is None:
            raise KeyError(appointment_id)
        return appointment

    # -------------------------------------------------------------- writes

    def _check_entry(self, yard_id: str, appointment: ScheduledAppointment, exclude_id: Optional[str] = None) -> None:
        if not appointment.sales_order and not appointment.delivery:
            raise MissingAppointmentReference("Either a sales order or a delivery number must be provided")
        if self.store.has_appointment(
            yard_id,
            appointment.scheduled_date,
            appointment.scheduled_time,
            sales_order=appointment.sales_order,
            delivery=appointment.delivery,
            exclude_appointment_id=exclude_id,
        ):
            raise DuplicateAppointment(
                f"An appointment for {appointment.sales_order or appointment.delivery} already exists at "
                f"{self.policy.display(appointment.scheduled_time)} on {appointment.scheduled_date.isoformat()}"
            )

    def _require_manual(self, appointment: ScheduledAppointment) -> None:
        if appointment.source != AppointmentSource.MANUAL:
            raise AppointmentLocked(appointment.appointment_id, appointment.source.value)

    def create(self, yard_id: str, request: AppointmentCreateRequest, actor: str) -> ScheduledAppointment:
        candidate = ScheduledAppointment(
            appointment_id="pending",
            scheduled_date=request.scheduled_date,
            scheduled_time=self._slot(request.scheduled_time),
            sales_order=_reference(request.sales_order),
            delivery=_reference(request.delivery),
            carrier=_text(request.carrier),
            notes=_text(request.notes),
            source=request.source,
        )
        self._check_entry(yard_id, candidate)
        appointment = candidate.model_copy(update={"appointment_id": self.store.generate_appointment_id(yard_id)})
        self.store.save_appointment(yard_id, appointment)
        self.store.record_timeline_event(
            yard_id,
            f"appointment:{appointment.appointment_id}",
            event_type="appointment_created",
            actor=actor,
            details={"scheduled_date": appointment.scheduled_date.isoformat(), "scheduled_time": appointment.scheduled_time},
        )
        logger.info("Appointment created", appointment_id=appointment.appointment_id, source=appointment.source.value)
        return appointment

    def update(
        self,
        yard_id: str,
        appointment_id: str,
        request: AppointmentUpdateRequest,
        actor: str,
    ) -> ScheduledAppointment:
        existing = self.get(yard_id, appointment_id)
        self._require_manual(existing)

        changes: Dict[str, Any] = {}
        for field_name, value in request.model_dump(exclude_unset=True).items():
            if field_name == "scheduled_time":
                changes[field_name] = self._slot(value)
            elif field_name in ("sales_order", "delivery"):
                changes[field_name] = _reference(value)
            elif field_name in ("carrier", "notes"):
                changes[field_name] = _text(value)
            elif value is not None:
                changes[field_name] = value
        updated = existing.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
        self._check_entry(yard_id, updated, exclude_id=appointment_id)

        self.store.save_appointment(yard_id, updated)
        self.store.record_timeline_event(
            yard_id,
            f"appointment:{appointment_id}",
            event_type="appointment_updated",
            actor=actor,
            details={key: value for key, value in updated.model_dump(mode="json").items() if key in changes},
        )
        return updated

    def delete(self, yard_id: str, appointment_id: str, actor: str) -> Dict[str, Any]:
        existing = self.get(yard_id, appointment_id)
        self._require_manual(existing)
        self.store.delete_appointment(yard_id, appointment_id)
        self.store.record_timeline_event(
            yard_id,
            f"appointment:{appointment_id}",
            event_type="appointment_deleted",
            actor=actor,
        )
        logger.info("Appointment deleted", appointment_id=appointment_id)
        return {"appointment_id": appointment_id, "deleted": True}
