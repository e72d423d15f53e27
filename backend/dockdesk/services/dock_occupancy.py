"""Dock occupancy projection over active check-in records and the block-list."""
from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from dockdesk.core.config import RAMP_DOCK, Settings
from dockdesk.core.errors import UnknownDock
from dockdesk.core.logging import logger
from dockdesk.models.yard import DockState, DockStatus, LoadRecord, OccupantSummary


@dataclass(frozen=True)
class YardLayout:
    """The fixed set of docks in a yard plus Ramp behaviour."""

    dock_numbers: Tuple[str, ...]
    ramp_tracks_double_booking: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "YardLayout":
        return cls(
            dock_numbers=settings.dock_number_list(),
            ramp_tracks_double_booking=settings.ramp_tracks_double_booking,
        )

    @staticmethod
    def normalize_dock(value: Optional[str]) -> Optional[str]:
        text = str(value or "").strip()
        if not text:
            return None
        if text.lower() == RAMP_DOCK.lower():
            return RAMP_DOCK
        if text.isdigit():
            return str(int(text))
        return text

    def contains(self, dock_number: Optional[str]) -> bool:
        return dock_number is not None and dock_number in self.dock_numbers

    def require(self, value: Optional[str]) -> str:
        dock_number = self.normalize_dock(value)
        if not self.contains(dock_number):
            raise UnknownDock(value)
        return dock_number

    def tracks_double_booking(self, dock_number: str) -> bool:
        return dock_number != RAMP_DOCK or self.ramp_tracks_double_booking

    @staticmethod
    def display_name(dock_number: str) -> str:
        return "the Ramp" if dock_number == RAMP_DOCK else f"Dock {dock_number}"


def summarize_occupant(record: LoadRecord) -> OccupantSummary:
    return OccupantSummary(
        load_id=record.load_id,
        pickup_number=record.pickup_number,
        driver_name=record.driver_name,
        trailer_number=record.trailer_number,
        status=record.status,
        check_in_time=record.check_in_time,
    )


def _group_active(layout: YardLayout, records: Iterable[LoadRecord]) -> Dict[str, List[LoadRecord]]:
    grouped: Dict[str, List[LoadRecord]] = defaultdict(list)
    for record in records:
        if not record.is_active:
            continue
        dock_number = layout.normalize_dock(record.dock_number)
        if not layout.contains(dock_number):
            logger.warning(
                "Dropping active load on unknown dock",
                load_id=record.load_id,
                dock_number=record.dock_number,
            )
            continue
        grouped[dock_number].append(record)
    for occupants in grouped.values():
        occupants.sort(key=lambda row: (row.check_in_time, row.load_id))
    return grouped


def _dock_state(
    layout: YardLayout,
    dock_number: str,
    occupants: List[LoadRecord],
    blocks: Mapping[str, str],
) -> DockState:
    reason = blocks.get(dock_number)
    if reason is not None:
        return DockState(
            dock_number=dock_number,
            status=DockStatus.BLOCKED,
            is_manually_blocked=True,
            blocked_reason=reason,
        )
    if not occupants:
        status = DockStatus.AVAILABLE
    elif len(occupants) == 1 or not layout.tracks_double_booking(dock_number):
        status = DockStatus.IN_USE
    else:
        status = DockStatus.DOUBLE_BOOKED
    return DockState(
        dock_number=dock_number,
        status=status,
        occupants=[summarize_occupant(row) for row in occupants],
    )


def resolve_dock_board(
    layout: YardLayout,
    records: Iterable[LoadRecord],
    blocks: Mapping[str, str],
) -> List[DockState]:
    """Status for every configured dock, in yard order, each exactly once."""
    grouped = _group_active(layout, records)
    return [
        _dock_state(layout, dock_number, grouped.get(dock_number, []), blocks)
        for dock_number in layout.dock_numbers
    ]


def resolve_dock(
    layout: YardLayout,
    dock_number: str,
    records: Iterable[LoadRecord],
    blocks: Mapping[str, str],
    exclude_load_id: Optional[str] = None,
) -> DockState:
    """Status for a single dock; ``exclude_load_id`` drops the load being moved."""
    dock_number = layout.require(dock_number)
    candidates = [row for row in records if row.load_id != exclude_load_id]
    grouped = _group_active(layout, candidates)
    return _dock_state(layout, dock_number, grouped.get(dock_number, []), blocks)


def count_by_status(states: Iterable[DockState]) -> Dict[str, int]:
    counts = Counter(state.status.value for state in states)
    return {status.value: counts.get(status.value, 0) for status in DockStatus}
