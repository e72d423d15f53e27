"""Caller-facing error kinds for dock assignment and check-in workflows."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class DockDeskError(Exception):
    """Base class for recoverable yard workflow errors."""

    kind = "DockDeskError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class DockBlocked(DockDeskError):
    """Raised when an assignment targets a manually blocked dock."""

    kind = "DockBlocked"

    def __init__(self, dock_number: str, reason: str) -> None:
        super().__init__(
            f"Dock {dock_number} is blocked ({reason}). Choose another dock or unblock it first."
        )
        self.dock_number = dock_number
        self.reason = reason

    def to_detail(self) -> Dict[str, Any]:
        return {**super().to_detail(), "dock_number": self.dock_number, "reason": self.reason}


class RequiresConfirmation(DockDeskError):
    """Raised when an assignment would create or extend a double-booking."""

    kind = "RequiresConfirmation"

    def __init__(self, dock_number: str, conflicts: List[Dict[str, Any]]) -> None:
        super().__init__(
            f"Dock {dock_number} already has {len(conflicts)} active load(s). "
            "Resubmit with confirm_double_booking=true to double book."
        )
        self.dock_number = dock_number
        self.conflicts = conflicts

    def to_detail(self) -> Dict[str, Any]:
        return {**super().to_detail(), "dock_number": self.dock_number, "conflicts": self.conflicts}


class InvalidReason(DockDeskError):
    kind = "InvalidReason"


class UnknownDock(DockDeskError):
    kind = "UnknownDock"

    def __init__(self, dock_number: Optional[str]) -> None:
        super().__init__(f"Dock '{dock_number}' is not part of this yard")
        self.dock_number = dock_number


class StaleWrite(DockDeskError):
    """Optimistic-concurrency conflict; re-fetch and re-validate before retrying."""

    kind = "StaleWrite"


class InvalidAppointmentCode(DockDeskError):
    kind = "InvalidAppointmentCode"

    def __init__(self, value: Any) -> None:
        super().__init__(f"Appointment time '{value}' is neither HHMM nor a recognized code")
        self.value = value


class InvalidPickupNumber(DockDeskError):
    kind = "InvalidPickupNumber"


class DuplicateCheckIn(DockDeskError):
    kind = "DuplicateCheckIn"


class MissingAppointmentReference(DockDeskError):
    kind = "MissingAppointmentReference"


class DuplicateAppointment(DockDeskError):
    kind = "DuplicateAppointment"


class AppointmentLocked(DockDeskError):
    """Raised when editing or deleting an appointment that was imported, not entered by hand."""

    kind = "AppointmentLocked"

    def __init__(self, appointment_id: str, source: str) -> None:
        super().__init__(f"Cannot change {source}-imported appointment {appointment_id}; only manual entries are editable")
        self.appointment_id = appointment_id
        self.source = source
