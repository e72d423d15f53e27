"""
Appointment codes, on-time adherence and detention math.

All wall-clock comparisons happen in the yard's named civil timezone. Stored
instants are absolute (UTC); they are converted with ``zoneinfo`` so DST
transitions are honoured. Elapsed durations are always measured between
UTC instants, because subtracting two aware datetimes that share a tzinfo
object yields wall-clock difference, not real elapsed time.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from dockdesk.core.config import Settings
from dockdesk.core.errors import InvalidAppointmentCode
from dockdesk.models.yard import AppointmentAdherence, DetentionResult


DEFAULT_SYMBOLIC_CODES: Tuple[str, ...] = ("work_in", "paid_to_load", "paid_charge_customer", "LTL")

_HHMM_PATTERN = re.compile(r"^(\d{2})(\d{2})$")
_COLON_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
_MERIDIEM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$")
_SLOT_PATTERN = re.compile(r"^(\d{1,2})(\d{2})?\s*(AM|PM)$")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _symbol_key(value: str) -> str:
    return re.sub(r"[\s_\-]", "", value).upper()


@dataclass(frozen=True)
class AppointmentTime:
    """Parsed appointment: a minute-of-day slot or a symbolic code."""

    code: str
    minutes: Optional[int] = None

    @property
    def timed(self) -> bool:
        return self.minutes is not None

    @property
    def hour(self) -> int:
        return (self.minutes or 0) // 60

    @property
    def minute(self) -> int:
        return (self.minutes or 0) % 60


@dataclass(frozen=True)
class AppointmentPolicy:
    """Timezone, grace and tolerance rules used for adherence and detention."""

    timezone_name: str = "America/Indiana/Indianapolis"
    grace_minutes: int = 120
    on_time_tolerance_minutes: int = 0
    symbolic_codes: Tuple[str, ...] = DEFAULT_SYMBOLIC_CODES
    _symbols: Dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Validates the zone name eagerly so misconfiguration fails at startup.
        ZoneInfo(self.timezone_name)
        object.__setattr__(self, "_symbols", {_symbol_key(code): code for code in self.symbolic_codes})

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppointmentPolicy":
        return cls(
            timezone_name=settings.yard_timezone,
            grace_minutes=settings.detention_grace_minutes,
            on_time_tolerance_minutes=settings.on_time_tolerance_minutes,
            symbolic_codes=settings.symbolic_code_list() or DEFAULT_SYMBOLIC_CODES,
        )

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    # ------------------------------------------------------------------ codes

    def parse(self, value: Optional[str]) -> Optional[AppointmentTime]:
        """Strictly parse a stored code: ``HHMM`` or a configured symbolic code."""
        if value is None or not str(value).strip():
            return None
        text = str(value).strip()

        match = _HHMM_PATTERN.match(text)
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))
            if hours < 24 and minutes < 60:
                return AppointmentTime(code=text, minutes=hours * 60 + minutes)
            raise InvalidAppointmentCode(value)

        symbol = self._symbols.get(_symbol_key(text))
        if symbol is not None and text in (symbol, symbol.lower(), symbol.upper()):
            return AppointmentTime(code=symbol)
        raise InvalidAppointmentCode(value)

    def normalize(self, value: Optional[str]) -> Optional[str]:
        """
        Normalise operator-entered appointment text to a canonical code.

        Accepts ``0800``, ``08:00``, ``8:00 AM``, slot shorthand such as
        ``930AM``, and symbolic codes in any casing/spacing (``Work In``).
        """
        if value is None or not str(value).strip():
            return None
        cleaned = str(value).strip().upper()

        symbol = self._symbols.get(_symbol_key(cleaned))
        if symbol is not None:
            return symbol

        if _HHMM_PATTERN.match(cleaned):
            return self.parse(cleaned).code

        hours: Optional[int] = None
        minutes = 0
        match = _COLON_PATTERN.match(cleaned)
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))
        else:
            match = _MERIDIEM_PATTERN.match(cleaned) or _SLOT_PATTERN.match(cleaned)
            if match:
                hours = int(match.group(1))
                minutes = int(match.group(2) or 0)
                if not 1 <= hours <= 12:
                    raise InvalidAppointmentCode(value)
                if match.group(3) == "PM" and hours != 12:
                    hours += 12
                elif match.group(3) == "AM" and hours == 12:
                    hours = 0

        if hours is None or hours > 23 or minutes > 59:
            raise InvalidAppointmentCode(value)
        return f"{hours:02d}{minutes:02d}"

    def display(self, value: Optional[str]) -> str:
        """Human-readable appointment for receipts and driver messages."""
        appointment = self.parse(value)
        if appointment is None:
            return "N/A"
        if not appointment.timed:
            if appointment.code.isupper():
                return appointment.code
            return " ".join(part.capitalize() for part in appointment.code.split("_"))
        hour12 = appointment.hour % 12 or 12
        meridiem = "AM" if appointment.hour < 12 else "PM"
        return f"{hour12}:{appointment.minute:02d} {meridiem}"

    # ------------------------------------------------------------- time math

    def to_local(self, instant: datetime) -> datetime:
        return _as_utc(instant).astimezone(self.zone)

    def local_minutes(self, instant: datetime) -> int:
        local = self.to_local(instant)
        return local.hour * 60 + local.minute

    def appointment_instant(self, appointment: AppointmentTime, check_in_time: datetime) -> datetime:
        """Civil instant of the slot on the check-in's local calendar date."""
        local_date = self.to_local(check_in_time).date()
        local_slot = datetime.combine(local_date, time(appointment.hour, appointment.minute), tzinfo=self.zone)
        return local_slot.astimezone(timezone.utc)

    def adherence(self, appointment_value: Optional[str], check_in_time: datetime) -> AppointmentAdherence:
        appointment = self.parse(appointment_value)
        if appointment is None or not appointment.timed:
            return AppointmentAdherence(appointment_time=appointment.code if appointment else None)

        delta = self.local_minutes(check_in_time) - appointment.minutes
        return AppointmentAdherence(
            appointment_time=appointment.code,
            timed=True,
            on_time=delta <= self.on_time_tolerance_minutes,
            delta_minutes=delta,
        )

    def detention(
        self,
        appointment_value: Optional[str],
        check_in_time: datetime,
        end_time: Optional[datetime],
    ) -> DetentionResult:
        """
        Detention accrues only for timed, on-time loads once loading ends.

        ``elapsed`` runs from the appointment slot to ``end_time``; minutes
        beyond the grace period are detention.
        """
        adherence = self.adherence(appointment_value, check_in_time)
        if not adherence.timed or not adherence.on_time or end_time is None:
            return DetentionResult(grace_minutes=self.grace_minutes)

        appointment = self.parse(appointment_value)
        slot = self.appointment_instant(appointment, check_in_time)
        elapsed = int((_as_utc(end_time) - slot).total_seconds() // 60)
        return DetentionResult(
            applicable=True,
            elapsed_minutes=elapsed,
            detention_minutes=max(0, elapsed - self.grace_minutes),
            grace_minutes=self.grace_minutes,
        )


def dwell_minutes(
    check_in_time: datetime,
    check_out_time: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> int:
    """Minutes on site: until check-out, or until now while still in the yard."""
    until = check_out_time or now or datetime.now(timezone.utc)
    return max(0, int((_as_utc(until) - _as_utc(check_in_time)).total_seconds() // 60))
