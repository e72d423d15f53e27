"""SQLite-backed yard state store: check-ins, block-list, appointment schedule, timeline and outbound messages."""
from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Iterable, List, Optional

from dockdesk.core.config import get_settings
from dockdesk.core.errors import StaleWrite
from dockdesk.core.logging import logger
from dockdesk.models.yard import (
    ACTIVE_STATUSES,
    BlockEntry,
    LoadRecord,
    LoadStatus,
    ScheduledAppointment,
    TimelineEvent,
)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _instant_key(value: datetime) -> str:
    """Sortable UTC text used for indexed time columns."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


_ACTIVE_VALUES = tuple(sorted(status.value for status in ACTIVE_STATUSES))


class YardStateStore:
    """Durable state manager for yard check-ins and dock blocks."""

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: Optional[str] = None) -> None:
        path = (db_path or get_settings().yard_db_path or "").strip()
        if not path:
            raise ValueError("yard_db_path must be configured")

        self._db_path = Path(path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self._initialize_schema()

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS sequences (
                    yard_id TEXT NOT NULL,
                    key_name TEXT NOT NULL,
                    next_value INTEGER NOT NULL,
                    PRIMARY KEY (yard_id, key_name)
                );

                CREATE TABLE IF NOT EXISTS loads (
                    yard_id TEXT NOT NULL,
                    load_id TEXT NOT NULL,
                    pickup_number TEXT NOT NULL,
                    status TEXT NOT NULL,
                    dock_number TEXT,
                    check_in_time TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    updated_at TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    PRIMARY KEY (yard_id, load_id)
                );

                CREATE INDEX IF NOT EXISTS idx_loads_yard_dock_status ON loads (yard_id, dock_number, status);
                CREATE INDEX IF NOT EXISTS idx_loads_yard_checkin ON loads (yard_id, check_in_time);
                CREATE INDEX IF NOT EXISTS idx_loads_yard_pickup ON loads (yard_id, pickup_number, check_in_time);

                CREATE TABLE IF NOT EXISTS dock_blocks (
                    yard_id TEXT NOT NULL,
                    dock_number TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    blocked_by TEXT NOT NULL,
                    blocked_at TEXT NOT NULL,
                    PRIMARY KEY (yard_id, dock_number)
                );

                CREATE TABLE IF NOT EXISTS timeline (
                    yard_id TEXT NOT NULL,
                    event_id TEXT NOT NULL,
                    load_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    details_json TEXT NOT NULL,
                    PRIMARY KEY (yard_id, event_id)
                );

                CREATE INDEX IF NOT EXISTS idx_timeline_yard_load ON timeline (yard_id, load_id);
                CREATE INDEX IF NOT EXISTS idx_timeline_yard_ts ON timeline (yard_id, timestamp DESC);

                CREATE TABLE IF NOT EXISTS idempotency (
                    yard_id TEXT NOT NULL,
                    key_name TEXT NOT NULL,
                    stored_at TEXT NOT NULL,
                    response_json TEXT NOT NULL,
                    PRIMARY KEY (yard_id, key_name)
                );

                CREATE INDEX IF NOT EXISTS idx_idempotency_yard_time ON idempotency (yard_id, stored_at);

                CREATE TABLE IF NOT EXISTS outbound_messages (
                    yard_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    recipient TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    PRIMARY KEY (yard_id, message_id)
                );

                CREATE INDEX IF NOT EXISTS idx_outbound_messages_yard_channel
                    ON outbound_messages (yard_id, channel, created_at DESC);

                CREATE TABLE IF NOT EXISTS appointments (
                    yard_id TEXT NOT NULL,
                    appointment_id TEXT NOT NULL,
                    scheduled_date TEXT NOT NULL,
                    scheduled_time TEXT NOT NULL,
                    sales_order TEXT,
                    delivery TEXT,
                    source TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    PRIMARY KEY (yard_id, appointment_id)
                );

                CREATE INDEX IF NOT EXISTS idx_appointments_yard_date ON appointments (yard_id, scheduled_date, scheduled_time);
                CREATE INDEX IF NOT EXISTS idx_appointments_yard_sales_order ON appointments (yard_id, sales_order, scheduled_date);
                CREATE INDEX IF NOT EXISTS idx_appointments_yard_delivery ON appointments (yard_id, delivery, scheduled_date);
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------ sequences

    def next_sequence(self, yard_id: str, key: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT next_value FROM sequences WHERE yard_id = ? AND key_name = ?",
                (yard_id, key),
            ).fetchone()
            if row is None:
                current = 1
                self._conn.execute(
                    "INSERT INTO sequences (yard_id, key_name, next_value) VALUES (?, ?, ?)",
                    (yard_id, key, current + 1),
                )
            else:
                current = int(row["next_value"])
                self._conn.execute(
                    "UPDATE sequences SET next_value = ? WHERE yard_id = ? AND key_name = ?",
                    (current + 1, yard_id, key),
                )
            self._conn.commit()
            return current

    def generate_load_id(self, yard_id: str) -> str:
        return f"CHK-{self.next_sequence(yard_id, 'load'):06d}"

    def get_idempotent(self, yard_id: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT response_json FROM idempotency WHERE yard_id = ? AND key_name = ?",
                (yard_id, key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["response_json"])

    def set_idempotent(self, yard_id: str, key: str, response: Dict[str, Any]) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO idempotency (yard_id, key_name, stored_at, response_json)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(yard_id, key_name)
                DO UPDATE SET stored_at = excluded.stored_at, response_json = excluded.response_json
                """,
                (yard_id, key, _utc_now_iso(), _json_dumps(response)),
            )
            self._conn.execute(
                """
                DELETE FROM idempotency
                WHERE yard_id = ?
                  AND key_name NOT IN (
                    SELECT key_name FROM idempotency
                    WHERE yard_id = ?
                    ORDER BY stored_at DESC
                    LIMIT 10000
                  )
                """,
                (yard_id, yard_id),
            )
            self._conn.commit()

    # ---------------------------------------------------------------- loads

    @staticmethod
    def _load_from_row(row: sqlite3.Row) -> LoadRecord:
        return LoadRecord.model_validate_json(row["data_json"])

    def insert_load(self, yard_id: str, load: LoadRecord) -> LoadRecord:
        row = load.model_dump(mode="json")
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO loads (
                        yard_id, load_id, pickup_number, status, dock_number,
                        check_in_time, version, updated_at, data_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        yard_id,
                        load.load_id,
                        load.pickup_number,
                        load.status.value,
                        load.dock_number,
                        _instant_key(load.check_in_time),
                        load.version,
                        _instant_key(load.updated_at),
                        _json_dumps(row),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Load {load.load_id} already exists") from exc
            self._conn.commit()
        return load

    def get_load(self, yard_id: str, load_id: str) -> Optional[LoadRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data_json FROM loads WHERE yard_id = ? AND load_id = ?",
                (yard_id, load_id),
            ).fetchone()
        if not row:
            return None
        return self._load_from_row(row)

    def list_loads(
        self,
        yard_id: str,
        status: Optional[LoadStatus] = None,
        checked_in_from: Optional[datetime] = None,
        checked_in_before: Optional[datetime] = None,
    ) -> List[LoadRecord]:
        clauses = ["yard_id = ?"]
        params: List[Any] = [yard_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if checked_in_from is not None:
            clauses.append("check_in_time >= ?")
            params.append(_instant_key(checked_in_from))
        if checked_in_before is not None:
            clauses.append("check_in_time < ?")
            params.append(_instant_key(checked_in_before))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT data_json FROM loads WHERE {' AND '.join(clauses)} ORDER BY check_in_time, load_id",
                params,
            ).fetchall()
        return [self._load_from_row(row) for row in rows]

    def list_active_docked_loads(self, yard_id: str) -> List[LoadRecord]:
        placeholders = ", ".join("?" for _ in _ACTIVE_VALUES)
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT data_json FROM loads
                WHERE yard_id = ?
                  AND dock_number IS NOT NULL
                  AND dock_number != ''
                  AND status IN ({placeholders})
                ORDER BY dock_number, check_in_time
                """,
                (yard_id, *_ACTIVE_VALUES),
            ).fetchall()
        return [self._load_from_row(row) for row in rows]

    def find_check_in(
        self,
        yard_id: str,
        pickup_number: str,
        checked_in_from: datetime,
        checked_in_before: datetime,
    ) -> Optional[LoadRecord]:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT data_json FROM loads
                WHERE yard_id = ? AND pickup_number = ?
                  AND check_in_time >= ? AND check_in_time < ?
                ORDER BY check_in_time
                LIMIT 1
                """,
                (yard_id, pickup_number, _instant_key(checked_in_from), _instant_key(checked_in_before)),
            ).fetchone()
        if not row:
            return None
        return self._load_from_row(row)

    def _conditional_write(self, yard_id: str, load: LoadRecord, expected_version: int) -> LoadRecord:
        updated = load.model_copy(
            update={"version": expected_version + 1, "updated_at": datetime.now(timezone.utc)}
        )
        cursor = self._conn.execute(
            """
            UPDATE loads
            SET status = ?, dock_number = ?, version = ?, updated_at = ?, data_json = ?
            WHERE yard_id = ? AND load_id = ? AND version = ?
            """,
            (
                updated.status.value,
                updated.dock_number,
                updated.version,
                _instant_key(updated.updated_at),
                _json_dumps(updated.model_dump(mode="json")),
                yard_id,
                load.load_id,
                expected_version,
            ),
        )
        if cursor.rowcount == 0:
            self._conn.rollback()
            current = self.get_load(yard_id, load.load_id)
            if current is None:
                raise KeyError(load.load_id)
            logger.warning(
                "Stale write rejected",
                load_id=load.load_id,
                expected_version=expected_version,
                current_version=current.version,
            )
            raise StaleWrite(
                f"Version conflict for {load.load_id}. expected={expected_version} current={current.version}"
            )
        return updated

    def update_load(self, yard_id: str, load: LoadRecord, expected_version: int) -> LoadRecord:
        """Write ``load`` only if the stored row is still at ``expected_version``."""
        with self._lock:
            updated = self._conditional_write(yard_id, load, expected_version)
            self._conn.commit()
        return updated

    def _dock_occupant_ids(self, yard_id: str, dock_number: str, exclude_load_id: str) -> set[str]:
        placeholders = ", ".join("?" for _ in _ACTIVE_VALUES)
        rows = self._conn.execute(
            f"""
            SELECT load_id FROM loads
            WHERE yard_id = ? AND dock_number = ? AND load_id != ?
              AND status IN ({placeholders})
            """,
            (yard_id, dock_number, exclude_load_id, *_ACTIVE_VALUES),
        ).fetchall()
        return {row["load_id"] for row in rows}

    def commit_dock_assignment(
        self,
        yard_id: str,
        load: LoadRecord,
        expected_version: int,
        expected_occupant_ids: Iterable[str],
    ) -> LoadRecord:
        """
        Persist a validated dock assignment.

        The write is conditioned on the load's version and on the target dock
        still having the occupants and block state the validator saw, so two
        racing assignments cannot both land on a dock judged available.
        """
        dock_number = load.dock_number or ""
        with self._lock:
            if self._get_block_row(yard_id, dock_number) is not None:
                raise StaleWrite(f"Dock {dock_number} was blocked after availability was checked")
            current = self._dock_occupant_ids(yard_id, dock_number, exclude_load_id=load.load_id)
            if current != set(expected_occupant_ids):
                logger.warning(
                    "Dock occupancy changed before write",
                    load_id=load.load_id,
                    dock_number=dock_number,
                    expected=sorted(expected_occupant_ids),
                    current=sorted(current),
                )
                raise StaleWrite(f"Occupancy of dock {dock_number} changed; re-check availability")
            updated = self._conditional_write(yard_id, load, expected_version)
            self._conn.commit()
        return updated

    # ------------------------------------------------------------ block-list

    def _get_block_row(self, yard_id: str, dock_number: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT dock_number, reason, blocked_by, blocked_at FROM dock_blocks WHERE yard_id = ? AND dock_number = ?",
            (yard_id, dock_number),
        ).fetchone()

    @staticmethod
    def _block_from_row(row: sqlite3.Row) -> BlockEntry:
        return BlockEntry(
            dock_number=row["dock_number"],
            reason=row["reason"],
            blocked_by=row["blocked_by"],
            blocked_at=row["blocked_at"],
        )

    def list_blocks(self, yard_id: str) -> List[BlockEntry]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT dock_number, reason, blocked_by, blocked_at FROM dock_blocks WHERE yard_id = ?",
                (yard_id,),
            ).fetchall()
        return [self._block_from_row(row) for row in rows]

    def block_map(self, yard_id: str) -> Dict[str, str]:
        return {entry.dock_number: entry.reason for entry in self.list_blocks(yard_id)}

    def set_block(self, yard_id: str, dock_number: str, reason: str, blocked_by: str) -> BlockEntry:
        entry = BlockEntry(dock_number=dock_number, reason=reason, blocked_by=blocked_by)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO dock_blocks (yard_id, dock_number, reason, blocked_by, blocked_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(yard_id, dock_number)
                DO UPDATE SET reason = excluded.reason,
                              blocked_by = excluded.blocked_by,
                              blocked_at = excluded.blocked_at
                """,
                (yard_id, dock_number, reason, blocked_by, _instant_key(entry.blocked_at)),
            )
            self._conn.commit()
        return entry

    def delete_block(self, yard_id: str, dock_number: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM dock_blocks WHERE yard_id = ? AND dock_number = ?",
                (yard_id, dock_number),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    # ---------------------------------------------------------- appointments

    @staticmethod
    def _appointment_from_row(row: sqlite3.Row) -> ScheduledAppointment:
        return ScheduledAppointment.model_validate_json(row["data_json"])

    def generate_appointment_id(self, yard_id: str) -> str:
        return f"APT-{self.next_sequence(yard_id, 'appointment'):06d}"

    def save_appointment(self, yard_id: str, appointment: ScheduledAppointment) -> ScheduledAppointment:
        """Insert or replace one schedule row."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO appointments (
                    yard_id, appointment_id, scheduled_date, scheduled_time,
                    sales_order, delivery, source, data_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(yard_id, appointment_id)
                DO UPDATE SET scheduled_date = excluded.scheduled_date,
                              scheduled_time = excluded.scheduled_time,
                              sales_order = excluded.sales_order,
                              delivery = excluded.delivery,
                              source = excluded.source,
                              data_json = excluded.data_json
                """,
                (
                    yard_id,
                    appointment.appointment_id,
                    appointment.scheduled_date.isoformat(),
                    appointment.scheduled_time,
                    appointment.sales_order,
                    appointment.delivery,
                    appointment.source.value,
                    _json_dumps(appointment.model_dump(mode="json")),
                ),
            )
            self._conn.commit()
        return appointment

    def get_appointment(self, yard_id: str, appointment_id: str) -> Optional[ScheduledAppointment]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data_json FROM appointments WHERE yard_id = ? AND appointment_id = ?",
                (yard_id, appointment_id),
            ).fetchone()
        return self._appointment_from_row(row) if row else None

    def list_appointments(self, yard_id: str, scheduled_date: date) -> List[ScheduledAppointment]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT data_json FROM appointments
                WHERE yard_id = ? AND scheduled_date = ?
                ORDER BY scheduled_time, sales_order, appointment_id
                """,
                (yard_id, scheduled_date.isoformat()),
            ).fetchall()
        return [self._appointment_from_row(row) for row in rows]

    def find_appointment(self, yard_id: str, reference: str, on_or_after: date) -> Optional[ScheduledAppointment]:
        """Earliest appointment from ``on_or_after`` matching a sales order, else a delivery number."""
        with self._lock:
            for column in ("sales_order", "delivery"):
                row = self._conn.execute(
                    f"""
                    SELECT data_json FROM appointments
                    WHERE yard_id = ? AND {column} = ? AND scheduled_date >= ?
                    ORDER BY scheduled_date, scheduled_time
                    LIMIT 1
                    """,
                    (yard_id, reference, on_or_after.isoformat()),
                ).fetchone()
                if row:
                    return self._appointment_from_row(row)
        return None

    def has_appointment(
        self,
        yard_id: str,
        scheduled_date: date,
        scheduled_time: str,
        sales_order: Optional[str] = None,
        delivery: Optional[str] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> bool:
        clauses = ["yard_id = ?", "scheduled_date = ?", "scheduled_time = ?"]
        params: List[Any] = [yard_id, scheduled_date.isoformat(), scheduled_time]
        if sales_order:
            clauses.append("sales_order = ?")
            params.append(sales_order)
        if delivery:
            clauses.append("delivery = ?")
            params.append(delivery)
        if exclude_appointment_id:
            clauses.append("appointment_id != ?")
            params.append(exclude_appointment_id)
        with self._lock:
            row = self._conn.execute(
                f"SELECT 1 FROM appointments WHERE {' AND '.join(clauses)} LIMIT 1",
                params,
            ).fetchone()
        return row is not None

    def delete_appointment(self, yard_id: str, appointment_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM appointments WHERE yard_id = ? AND appointment_id = ?",
                (yard_id, appointment_id),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def purge_appointments_before(self, yard_id: str, cutoff: date) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM appointments WHERE yard_id = ? AND scheduled_date < ?",
                (yard_id, cutoff.isoformat()),
            )
            self._conn.commit()
        return cursor.rowcount

    # ------------------------------------------------------------- timeline

    def record_timeline_event(
        self,
        yard_id: str,
        load_id: str,
        event_type: str,
        actor: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        event = TimelineEvent(
            event_id=f"EVT-{self.next_sequence(yard_id, 'event'):06d}",
            load_id=load_id,
            event_type=event_type,
            actor=actor,
            details=details or {},
        ).model_dump(mode="json")
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO timeline (yard_id, event_id, load_id, event_type, actor, timestamp, details_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    yard_id,
                    event["event_id"],
                    load_id,
                    event_type,
                    actor,
                    event["timestamp"],
                    _json_dumps(event["details"]),
                ),
            )
            self._conn.execute(
                """
                DELETE FROM timeline
                WHERE yard_id = ?
                  AND event_id NOT IN (
                    SELECT event_id FROM timeline
                    WHERE yard_id = ?
                    ORDER BY timestamp DESC
                    LIMIT 5000
                  )
                """,
                (yard_id, yard_id),
            )
            self._conn.commit()
        return event

    def list_timeline(self, yard_id: str, load_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            if load_id:
                rows = self._conn.execute(
                    """
                    SELECT event_id, load_id, event_type, actor, timestamp, details_json
                    FROM timeline
                    WHERE yard_id = ? AND load_id = ?
                    ORDER BY timestamp DESC, event_id DESC
                    LIMIT 300
                    """,
                    (yard_id, load_id),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    """
                    SELECT event_id, load_id, event_type, actor, timestamp, details_json
                    FROM timeline
                    WHERE yard_id = ?
                    ORDER BY timestamp DESC, event_id DESC
                    LIMIT 300
                    """,
                    (yard_id,),
                ).fetchall()

        return [
            {
                "event_id": row["event_id"],
                "load_id": row["load_id"],
                "event_type": row["event_type"],
                "actor": row["actor"],
                "timestamp": row["timestamp"],
                "details": json.loads(row["details_json"]),
            }
            for row in rows
        ]

    # ---------------------------------------------------- outbound messages

    def add_outbound_message(
        self,
        yard_id: str,
        *,
        channel: str,
        recipient: str,
        payload: Dict[str, Any],
        status: str = "queued",
    ) -> Dict[str, Any]:
        message_id = f"MSG-{self.next_sequence(yard_id, 'outbound'):06d}"
        row = {
            "message_id": message_id,
            "channel": str(channel or "unknown"),
            "recipient": str(recipient or "unknown"),
            "status": str(status or "queued"),
            "created_at": _utc_now_iso(),
            "payload": payload or {},
        }
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO outbound_messages (yard_id, message_id, channel, recipient, status, created_at, data_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    yard_id,
                    message_id,
                    row["channel"],
                    row["recipient"],
                    row["status"],
                    row["created_at"],
                    _json_dumps(row),
                ),
            )
            self._conn.commit()
        return row

    def list_outbound_messages(
        self,
        yard_id: str,
        *,
        channel: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            if channel:
                rows = self._conn.execute(
                    """
                    SELECT data_json FROM outbound_messages
                    WHERE yard_id = ? AND channel = ?
                    ORDER BY created_at DESC, message_id DESC
                    LIMIT ?
                    """,
                    (yard_id, channel, max(1, min(limit, 500))),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    """
                    SELECT data_json FROM outbound_messages
                    WHERE yard_id = ?
                    ORDER BY created_at DESC, message_id DESC
                    LIMIT ?
                    """,
                    (yard_id, max(1, min(limit, 500))),
                ).fetchall()
        return [json.loads(row["data_json"]) for row in rows]


yard_state_store = YardStateStore()
