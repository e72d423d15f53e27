"""Dock assignment decision table and block-list input rules."""
from __future__ import annotations

from typing import Optional

from dockdesk.core.errors import DockBlocked, InvalidReason, RequiresConfirmation
from dockdesk.core.logging import logger
from dockdesk.models.yard import ApprovedAssignment, DockState, DockStatus
from dockdesk.services.dock_occupancy import YardLayout


class AssignmentValidator:
    """
    Decides whether a load may be placed on a dock.

    The validator never writes. It must be handed a dock state computed from
    a fresh snapshot taken immediately before the caller's conditional write.
    """

    def __init__(self, layout: YardLayout) -> None:
        self.layout = layout

    def check(
        self,
        load_id: str,
        dock_state: DockState,
        confirm_double_booking: bool = False,
        appointment_time: Optional[str] = None,
    ) -> ApprovedAssignment:
        dock_number = dock_state.dock_number
        occupant_ids = [row.load_id for row in dock_state.occupants]

        if dock_state.status == DockStatus.BLOCKED:
            logger.warning("Assignment rejected: dock blocked", load_id=load_id, dock_number=dock_number)
            raise DockBlocked(dock_number, dock_state.blocked_reason or "")

        if dock_state.status == DockStatus.AVAILABLE:
            return ApprovedAssignment(
                load_id=load_id,
                dock_number=dock_number,
                prior_status=dock_state.status,
                appointment_time=appointment_time,
            )

        if self.layout.tracks_double_booking(dock_number) and not confirm_double_booking:
            conflicts = [
                {
                    "load_id": row.load_id,
                    "pickup_number": row.pickup_number,
                    "driver_name": row.driver_name,
                    "trailer_number": row.trailer_number,
                }
                for row in dock_state.occupants
            ]
            logger.info(
                "Assignment needs double-booking confirmation",
                load_id=load_id,
                dock_number=dock_number,
                occupants=len(conflicts),
            )
            raise RequiresConfirmation(dock_number, conflicts)

        return ApprovedAssignment(
            load_id=load_id,
            dock_number=dock_number,
            prior_status=dock_state.status,
            double_booked=self.layout.tracks_double_booking(dock_number),
            appointment_time=appointment_time,
            occupant_ids=occupant_ids,
        )

    @staticmethod
    def block_reason(reason: Optional[str]) -> str:
        cleaned = (reason or "").strip()
        if not cleaned:
            raise InvalidReason("A reason is required to block a dock")
        return cleaned
