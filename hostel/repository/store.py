"""Persistent store client: table-level CRUD, guarded writes and change subscriptions."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Protocol, Sequence

from hostel.domain.errors import NotFoundError, StoreWriteError
from hostel.repository.change_feed import (
    DELETE,
    EVENT_TYPES,
    INSERT,
    UPDATE,
    ChangeEvent,
    ChangeFeed,
    Subscription,
)
from hostel.utils.config import Settings, get_settings
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "profiles": (
        "id",
        "full_name",
        "registration_number",
        "email",
        "phone",
        "role",
        "created_at",
    ),
    "rooms": (
        "id",
        "room_number",
        "floor",
        "capacity",
        "type",
        "price_per_month",
        "is_occupied",
    ),
    "booking_requests": (
        "id",
        "student_id",
        "room_id",
        "request_date",
        "status",
        "notes",
        "updated_at",
    ),
    "room_allocations": (
        "id",
        "student_id",
        "room_id",
        "start_date",
        "end_date",
        "status",
    ),
    "payments": (
        "id",
        "student_id",
        "amount",
        "status",
        "payment_date",
        "payment_method",
        "reference_number",
        "month",
        "checkout_request_id",
        "transaction_code",
    ),
    "notifications": (
        "id",
        "student_id",
        "title",
        "message",
        "type",
        "read",
        "created_at",
        "link",
    ),
    "laundry_requests": (
        "id",
        "student_id",
        "room_number",
        "number_of_clothes",
        "special_instructions",
        "pickup_time",
        "status",
        "created_at",
    ),
}

BOOLEAN_COLUMNS: dict[str, frozenset[str]] = {
    "rooms": frozenset({"is_occupied"}),
    "notifications": frozenset({"read"}),
}

# table -> relation name (= related table) -> (local column, related column)
RELATIONS: dict[str, dict[str, tuple[str, str]]] = {
    "booking_requests": {
        "rooms": ("room_id", "id"),
        "profiles": ("student_id", "id"),
    },
    "room_allocations": {
        "rooms": ("room_id", "id"),
        "profiles": ("student_id", "id"),
    },
    "payments": {"profiles": ("student_id", "id")},
    "laundry_requests": {"profiles": ("student_id", "id")},
    "notifications": {"profiles": ("student_id", "id")},
}


@dataclass(frozen=True)
class Guard:
    """Expected prior value of a column; the write only applies when it still holds."""

    column: str
    expected: Any


class StoreClient(Protocol):
    def get(self, table: str, filters: Mapping[str, Any]) -> dict[str, Any]:
        ...

    def get_joined(
        self,
        table: str,
        filters: Mapping[str, Any],
        relations: Sequence[str],
    ) -> dict[str, Any]:
        ...

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        relations: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        ...

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        ...

    def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        ...

    def update(
        self,
        table: str,
        record_id: Any,
        patch: Mapping[str, Any],
        guard: Optional[Guard] = None,
    ) -> int:
        ...

    def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        ...

    def subscribe(
        self,
        table: str,
        event_types: Iterable[str] = EVENT_TYPES,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Subscription:
        ...


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """SQLite-backed store; one connection per operation, change events after commit."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._feed = feed or ChangeFeed()

    @property
    def database_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self._db_path, timeout=10.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS profiles (
                        id TEXT PRIMARY KEY,
                        full_name TEXT NOT NULL,
                        registration_number TEXT,
                        email TEXT,
                        phone TEXT,
                        role TEXT NOT NULL DEFAULT 'student'
                            CHECK (role IN ('student', 'admin')),
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS rooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        room_number TEXT UNIQUE NOT NULL,
                        floor INTEGER NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        type TEXT NOT NULL,
                        price_per_month REAL NOT NULL CHECK (price_per_month >= 0),
                        is_occupied INTEGER NOT NULL DEFAULT 0 CHECK (is_occupied IN (0, 1))
                    );

                    CREATE TABLE IF NOT EXISTS booking_requests (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        room_id INTEGER NOT NULL,
                        request_date TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'approved', 'rejected')),
                        notes TEXT,
                        updated_at TEXT,
                        FOREIGN KEY (room_id) REFERENCES rooms(id)
                    );

                    CREATE TABLE IF NOT EXISTS room_allocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        room_id INTEGER NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT,
                        status TEXT NOT NULL DEFAULT 'active'
                            CHECK (status IN ('active', 'inactive')),
                        FOREIGN KEY (room_id) REFERENCES rooms(id)
                    );

                    CREATE UNIQUE INDEX IF NOT EXISTS idx_room_allocations_active_room
                    ON room_allocations(room_id) WHERE status = 'active';

                    CREATE TABLE IF NOT EXISTS payments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        amount REAL NOT NULL CHECK (amount > 0),
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'completed', 'failed')),
                        payment_date TEXT NOT NULL,
                        payment_method TEXT NOT NULL,
                        reference_number TEXT NOT NULL,
                        month TEXT NOT NULL,
                        checkout_request_id TEXT,
                        transaction_code TEXT
                    );

                    CREATE INDEX IF NOT EXISTS idx_payments_student_month_status
                    ON payments(student_id, month, status);

                    CREATE TABLE IF NOT EXISTS notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        message TEXT NOT NULL,
                        type TEXT NOT NULL DEFAULT 'info'
                            CHECK (type IN ('info', 'warning', 'success', 'error')),
                        read INTEGER NOT NULL DEFAULT 0 CHECK (read IN (0, 1)),
                        created_at TEXT NOT NULL,
                        link TEXT
                    );

                    CREATE TABLE IF NOT EXISTS laundry_requests (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        room_number TEXT NOT NULL,
                        number_of_clothes INTEGER NOT NULL CHECK (number_of_clothes > 0),
                        special_instructions TEXT NOT NULL DEFAULT '',
                        pickup_time TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'processing', 'ready', 'collected')),
                        created_at TEXT NOT NULL
                    );
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> int:
        """Seed demo rooms and profiles only when the rooms table is empty."""
        if self.count("rooms") > 0:
            logger.info("Demo data already present; skipping seed")
            return 0

        rooms = [
            ("R101", 1, 1, "single", 8000.0),
            ("R102", 1, 2, "double", 6000.0),
            ("R103", 1, 2, "double", 6000.0),
            ("R201", 2, 1, "single", 8500.0),
            ("R202", 2, 4, "quad", 4500.0),
            ("R203", 2, 4, "quad", 4500.0),
        ]
        profiles = [
            ("admin-0001", "Hostel Admin", None, "admin@hostel.test", None, "admin"),
            ("a1b2c3d4-0001", "Amina Wanjiru", "SCT221-0001/2024", "amina@hostel.test", "0712345678", "student"),
            ("b2c3d4e5-0002", "Brian Otieno", "SCT221-0002/2024", "brian@hostel.test", "0722334455", "student"),
        ]
        created_at = _utc_now_iso()
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO rooms (room_number, floor, capacity, type, price_per_month)
                VALUES (?, ?, ?, ?, ?);
                """,
                rooms,
            )
            conn.executemany(
                """
                INSERT OR IGNORE INTO profiles (
                    id, full_name, registration_number, email, phone, role, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                [profile + (created_at,) for profile in profiles],
            )
        logger.info("Seeded %s demo rooms and %s profiles", len(rooms), len(profiles))
        return len(rooms)

    # ------------------------------------------------------------------ helpers

    def _check_table(self, table: str) -> tuple[str, ...]:
        columns = TABLE_COLUMNS.get(table)
        if columns is None:
            raise ValueError(f"Unknown table: {table}")
        return columns

    def _check_columns(self, table: str, columns: Iterable[str]) -> None:
        known = self._check_table(table)
        unknown = [column for column in columns if column not in known]
        if unknown:
            raise ValueError(f"Unknown column(s) for {table}: {unknown}")

    @staticmethod
    def _to_db_value(value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def _where(self, table: str, filters: Optional[Mapping[str, Any]]) -> tuple[str, list[Any]]:
        self._check_table(table)
        if not filters:
            return "", []
        self._check_columns(table, filters)
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(self._to_db_value(value))
        return " WHERE " + " AND ".join(clauses), params

    def _to_record(self, table: str, row: sqlite3.Row) -> dict[str, Any]:
        record = {key: row[key] for key in row.keys()}
        for column in BOOLEAN_COLUMNS.get(table, ()):
            if column in record and record[column] is not None:
                record[column] = bool(record[column])
        return record

    def _fetch(
        self,
        conn: sqlite3.Connection,
        table: str,
        filters: Optional[Mapping[str, Any]],
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = self._where(table, filters)
        sql = f"SELECT * FROM {table}{where_sql}"
        if order_by is not None:
            self._check_columns(table, [order_by])
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {order_by} {direction}, id {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = conn.execute(sql + ";", params).fetchall()
        return [self._to_record(table, row) for row in rows]

    def _attach_relations(
        self,
        conn: sqlite3.Connection,
        table: str,
        records: list[dict[str, Any]],
        relations: Sequence[str],
    ) -> None:
        for relation in relations:
            mapping = RELATIONS.get(table, {}).get(relation)
            if mapping is None:
                raise ValueError(f"Unknown relation {relation!r} for {table}")
            local_column, remote_column = mapping
            cache: dict[Any, Optional[dict[str, Any]]] = {}
            for record in records:
                key = record.get(local_column)
                if key not in cache:
                    related = self._fetch(conn, relation, {remote_column: key}, limit=1)
                    cache[key] = related[0] if related else None
                record[relation] = cache[key]

    # ---------------------------------------------------------------- capability

    def get(self, table: str, filters: Mapping[str, Any]) -> dict[str, Any]:
        with self._connect() as conn:
            records = self._fetch(conn, table, filters, limit=1)
        if not records:
            raise NotFoundError(f"No {table} record matches {dict(filters)}")
        return records[0]

    def get_joined(
        self,
        table: str,
        filters: Mapping[str, Any],
        relations: Sequence[str],
    ) -> dict[str, Any]:
        records = self.select(table, filters, limit=1, relations=relations)
        if not records:
            raise NotFoundError(f"No {table} record matches {dict(filters)}")
        return records[0]

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        relations: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        with self._connect() as conn:
            records = self._fetch(
                conn,
                table,
                filters,
                order_by=order_by,
                descending=descending,
                limit=limit,
            )
            if relations:
                self._attach_relations(conn, table, records, relations)
        return records

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        self._check_table(table)
        where_sql, params = self._where(table, filters)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS count FROM {table}{where_sql};",
                params,
            ).fetchone()
        return int(row["count"])

    def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        self._check_columns(table, record)
        columns = list(record)
        placeholders = ", ".join("?" for _ in columns)
        params = [self._to_db_value(record[column]) for column in columns]
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders});",
                    params,
                )
                key = record["id"] if "id" in record else cursor.lastrowid
                created = self._fetch(conn, table, {"id": key}, limit=1)[0]
        except sqlite3.Error as exc:
            logger.warning("Insert into %s rejected: %s", table, exc)
            raise StoreWriteError(f"Failed to insert into {table}: {exc}") from exc
        self._feed.publish(ChangeEvent(table=table, event_type=INSERT, new=created, old=None))
        return created

    def update(
        self,
        table: str,
        record_id: Any,
        patch: Mapping[str, Any],
        guard: Optional[Guard] = None,
    ) -> int:
        """Apply `patch` to one row; return rows affected (0 when the guard lost the race)."""
        if not patch:
            raise ValueError("patch must not be empty")
        self._check_columns(table, patch)
        filters: dict[str, Any] = {"id": record_id}
        if guard is not None:
            self._check_columns(table, [guard.column])
            filters[guard.column] = guard.expected
        where_sql, where_params = self._where(table, filters)
        assignments = ", ".join(f"{column} = ?" for column in patch)
        params = [self._to_db_value(value) for value in patch.values()] + where_params
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE;")
                before = self._fetch(conn, table, {"id": record_id}, limit=1)
                cursor = conn.execute(
                    f"UPDATE {table} SET {assignments}{where_sql};",
                    params,
                )
                affected = int(cursor.rowcount)
                after = self._fetch(conn, table, {"id": record_id}, limit=1) if affected else []
        except sqlite3.Error as exc:
            logger.warning("Update of %s id=%s rejected: %s", table, record_id, exc)
            raise StoreWriteError(f"Failed to update {table}: {exc}") from exc
        if affected:
            self._feed.publish(
                ChangeEvent(
                    table=table,
                    event_type=UPDATE,
                    new=after[0] if after else None,
                    old=before[0] if before else None,
                )
            )
        return affected

    def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise ValueError("delete requires at least one filter")
        where_sql, params = self._where(table, filters)
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE;")
                removed = self._fetch(conn, table, filters)
                cursor = conn.execute(f"DELETE FROM {table}{where_sql};", params)
                affected = int(cursor.rowcount)
        except sqlite3.Error as exc:
            logger.warning("Delete from %s rejected: %s", table, exc)
            raise StoreWriteError(f"Failed to delete from {table}: {exc}") from exc
        for record in removed:
            self._feed.publish(ChangeEvent(table=table, event_type=DELETE, new=None, old=record))
        return affected

    def subscribe(
        self,
        table: str,
        event_types: Iterable[str] = EVENT_TYPES,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Subscription:
        self._check_table(table)
        if filters:
            self._check_columns(table, filters)
        return self._feed.subscribe(table, event_types, filters)
