"""Domain models for dock check-in, occupancy and appointment workflows."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoadStatus(str, Enum):
    """Lifecycle status for a checked-in load."""

    PENDING = "pending"
    CHECKED_IN = "checked_in"
    ASSIGNED = "assigned"
    LOADING = "loading"
    COMPLETED = "completed"
    CHECKED_OUT = "checked_out"
    DEPARTED = "departed"


ACTIVE_STATUSES = frozenset(
    {LoadStatus.PENDING, LoadStatus.CHECKED_IN, LoadStatus.ASSIGNED, LoadStatus.LOADING}
)


class LoadType(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DockStatus(str, Enum):
    """Derived dock state, highest precedence first."""

    BLOCKED = "blocked"
    DOUBLE_BOOKED = "double-booked"
    IN_USE = "in-use"
    AVAILABLE = "available"


class CheckInRequest(BaseModel):
    """Driver kiosk check-in payload."""

    driver_name: str = Field(min_length=1)
    driver_phone: str = Field(min_length=1)
    carrier_name: str = Field(min_length=1)
    trailer_number: str = Field(min_length=1)
    trailer_length: str = Field(min_length=1)
    pickup_number: str = Field(min_length=1)
    load_type: LoadType = LoadType.INBOUND
    destination_city: str = Field(min_length=1)
    destination_state: str = Field(min_length=2, max_length=2)
    appointment_time: Optional[str] = None
    notes: Optional[str] = None

    @field_validator(
        "driver_name",
        "driver_phone",
        "carrier_name",
        "trailer_number",
        "trailer_length",
        "pickup_number",
        "destination_city",
        "destination_state",
    )
    @classmethod
    def _strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned


class LoadRecord(BaseModel):
    """Persisted check-in record."""

    load_id: str
    pickup_number: str
    driver_name: str
    driver_phone: str = ""
    carrier_name: str = ""
    trailer_number: str = ""
    trailer_length: str = ""
    load_type: LoadType = LoadType.INBOUND
    destination_city: str = ""
    destination_state: str = ""
    notes: Optional[str] = None
    status: LoadStatus = LoadStatus.PENDING
    dock_number: Optional[str] = None
    appointment_time: Optional[str] = None
    scheduled_appointment_id: Optional[str] = None
    check_in_time: datetime = Field(default_factory=_utcnow)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return bool(self.dock_number) and self.status in ACTIVE_STATUSES


class OccupantSummary(BaseModel):
    """What a CSR needs to see about a load already on a dock."""

    load_id: str
    pickup_number: str
    driver_name: str
    trailer_number: str = ""
    status: LoadStatus
    check_in_time: datetime


class DockState(BaseModel):
    """Resolved status for one dock."""

    dock_number: str
    status: DockStatus
    occupants: List[OccupantSummary] = Field(default_factory=list)
    is_manually_blocked: bool = False
    blocked_reason: Optional[str] = None


class DockBoardResponse(BaseModel):
    counts_by_status: Dict[str, int]
    docks: List[DockState]


class BlockEntry(BaseModel):
    dock_number: str
    reason: str
    blocked_by: str = "unknown"
    blocked_at: datetime = Field(default_factory=_utcnow)


class BlockDockRequest(BaseModel):
    reason: str = ""


class DockAssignmentRequest(BaseModel):
    """CSR request to put a load on a dock."""

    load_id: str
    dock_number: str
    appointment_time: Optional[str] = None
    confirm_double_booking: bool = False
    expected_version: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    notify_driver: bool = True


class ApprovedAssignment(BaseModel):
    """Validator output for a permitted assignment."""

    load_id: str
    dock_number: str
    prior_status: DockStatus
    double_booked: bool = False
    appointment_time: Optional[str] = None
    occupant_ids: List[str] = Field(default_factory=list)


class LoadStatusTransitionRequest(BaseModel):
    status: LoadStatus
    expected_version: Optional[int] = Field(default=None, ge=1)
    at: Optional[datetime] = None
    # Needed when reopening a finished load whose dock has since been taken.
    confirm_double_booking: bool = False


class AppointmentAdherence(BaseModel):
    appointment_time: Optional[str] = None
    timed: bool = False
    on_time: Optional[bool] = None
    delta_minutes: Optional[int] = None


class DetentionResult(BaseModel):
    """
    Detention outcome for one load.

    ``applicable`` means the load qualified (timed slot, checked in on time,
    loading finished). A qualifying load that finished within the grace
    period has ``detention_minutes == 0`` and is reported not-applicable for
    billing: ``billable`` is false.
    """

    applicable: bool = False
    elapsed_minutes: Optional[int] = None
    detention_minutes: Optional[int] = None
    grace_minutes: int = 120

    @computed_field
    @property
    def billable(self) -> bool:
        return bool(self.detention_minutes)


class LoadMetrics(BaseModel):
    load_id: str
    adherence: AppointmentAdherence
    detention: DetentionResult
    dwell_minutes: Optional[int] = None


class NotificationSummary(BaseModel):
    """Flat payload handed to the driver notifier after a committed assignment."""

    load_id: str
    dock_display: str
    driver_name: str
    driver_phone: str = ""
    reference_number: str
    appointment_display: str


class TimelineEvent(BaseModel):
    event_id: str
    load_id: str
    event_type: str
    actor: str
    timestamp: datetime = Field(default_factory=_utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


class AppointmentSource(str, Enum):
    """Where a scheduled appointment came from; only manual rows are editable."""

    MANUAL = "manual"
    EXCEL = "excel"
    UPLOAD = "upload"


class ScheduledAppointment(BaseModel):
    """A booked pickup slot, matched to drivers by sales order or delivery number."""

    appointment_id: str
    scheduled_date: date
    scheduled_time: str
    sales_order: Optional[str] = None
    delivery: Optional[str] = None
    carrier: Optional[str] = None
    notes: Optional[str] = None
    source: AppointmentSource = AppointmentSource.MANUAL
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class AppointmentCreateRequest(BaseModel):
    scheduled_date: date
    scheduled_time: str = Field(min_length=1)
    sales_order: Optional[str] = None
    delivery: Optional[str] = None
    carrier: Optional[str] = None
    notes: Optional[str] = None
    source: AppointmentSource = AppointmentSource.MANUAL


class AppointmentUpdateRequest(BaseModel):
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    sales_order: Optional[str] = None
    delivery: Optional[str] = None
    carrier: Optional[str] = None
    notes: Optional[str] = None
