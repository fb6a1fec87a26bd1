"""SQLite entity store for trips and vehicles."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union

from PySide6.QtCore import QObject, Signal

from drive_passport.config.settings import get_data_dir
from drive_passport.errors import PersistenceError
from drive_passport.models.records import (
    Trip,
    TripCategory,
    Vehicle,
    decode_route,
    encode_route,
)

logger = logging.getLogger(__name__)

Entity = Union[Trip, Vehicle]
E = TypeVar("E", Trip, Vehicle)
_Key = Tuple[type, str]


# SQL schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS vehicles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
    make TEXT,
    model TEXT,
    year INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS trips (
    id TEXT PRIMARY KEY,
    start_ts REAL NOT NULL,
    end_ts REAL,
    start_lat REAL NOT NULL,
    start_lon REAL NOT NULL,
    start_address TEXT,
    start_city TEXT,
    start_state TEXT,
    start_country TEXT,
    end_lat REAL,
    end_lon REAL,
    end_address TEXT,
    end_city TEXT,
    end_state TEXT,
    end_country TEXT,
    distance_m REAL NOT NULL DEFAULT 0 CHECK (distance_m >= 0),
    route BLOB,
    category TEXT NOT NULL DEFAULT 'other',
    tags TEXT NOT NULL DEFAULT '[]',
    notes TEXT,
    is_favorite INTEGER NOT NULL DEFAULT 0,
    is_hidden INTEGER NOT NULL DEFAULT 0,
    vehicle_id TEXT REFERENCES vehicles(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_trips_start ON trips(start_ts);
CREATE INDEX IF NOT EXISTS idx_trips_vehicle ON trips(vehicle_id);
CREATE INDEX IF NOT EXISTS idx_trips_hidden ON trips(is_hidden);
"""

TRIP_COLUMNS = (
    "id", "start_ts", "end_ts",
    "start_lat", "start_lon", "start_address", "start_city", "start_state", "start_country",
    "end_lat", "end_lon", "end_address", "end_city", "end_state", "end_country",
    "distance_m", "route", "category", "tags", "notes",
    "is_favorite", "is_hidden", "vehicle_id",
)

VEHICLE_COLUMNS = ("id", "name", "make", "model", "year", "is_active", "created_at")

_TABLES = {Trip: ("trips", TRIP_COLUMNS), Vehicle: ("vehicles", VEHICLE_COLUMNS)}


def _trip_to_row(trip: Trip) -> Tuple[Any, ...]:
    return (
        trip.id, trip.start_ts, trip.end_ts,
        trip.start_lat, trip.start_lon, trip.start_address, trip.start_city,
        trip.start_state, trip.start_country,
        trip.end_lat, trip.end_lon, trip.end_address, trip.end_city,
        trip.end_state, trip.end_country,
        trip.distance_m, encode_route(trip.route), trip.category.value,
        json.dumps(trip.tags), trip.notes,
        int(trip.is_favorite), int(trip.is_hidden), trip.vehicle_id,
    )


def _row_to_trip(row: sqlite3.Row) -> Trip:
    try:
        tags = json.loads(row["tags"] or "[]")
    except ValueError:
        tags = []
    return Trip(
        id=row["id"],
        start_ts=row["start_ts"],
        end_ts=row["end_ts"],
        start_lat=row["start_lat"],
        start_lon=row["start_lon"],
        start_address=row["start_address"],
        start_city=row["start_city"],
        start_state=row["start_state"],
        start_country=row["start_country"],
        end_lat=row["end_lat"],
        end_lon=row["end_lon"],
        end_address=row["end_address"],
        end_city=row["end_city"],
        end_state=row["end_state"],
        end_country=row["end_country"],
        distance_m=row["distance_m"] or 0.0,
        route=decode_route(row["route"]),
        category=TripCategory.parse(row["category"]),
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
        notes=row["notes"],
        is_favorite=bool(row["is_favorite"]),
        is_hidden=bool(row["is_hidden"]),
        vehicle_id=row["vehicle_id"],
    )


def _vehicle_to_row(vehicle: Vehicle) -> Tuple[Any, ...]:
    return (
        vehicle.id, vehicle.name, vehicle.make, vehicle.model, vehicle.year,
        int(vehicle.is_active), vehicle.created_at,
    )


def _row_to_vehicle(row: sqlite3.Row) -> Vehicle:
    return Vehicle(
        id=row["id"],
        name=row["name"],
        make=row["make"],
        model=row["model"],
        year=row["year"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


def _to_row(entity: Entity) -> Tuple[Any, ...]:
    return _trip_to_row(entity) if isinstance(entity, Trip) else _vehicle_to_row(entity)


def _from_row(kind: type, row: sqlite3.Row) -> Entity:
    return _row_to_trip(row) if kind is Trip else _row_to_vehicle(row)


class TripStore(QObject):
    """
    Unit-of-work store for trips and vehicles.

    ``insert`` and ``delete`` only register work; ``save`` commits every
    pending insert, delete and in-memory modification in one transaction.
    Entities handed out are identity-mapped, so two lookups of the same id
    return the same object and unsaved edits are visible to every reader.
    """

    # Signals
    trip_saved = Signal(str)  # trip_id
    trip_deleted = Signal(str)  # trip_id
    error_occurred = Signal(str)  # error message

    def __init__(self, db_path: Optional[Path] = None):
        super().__init__()
        self._db_path = db_path or (get_data_dir() / "drive_passport.db")
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        self._tracked: Dict[_Key, Entity] = {}
        self._snapshots: Dict[_Key, Tuple[Any, ...]] = {}  # last committed row
        self._pending_inserts: Dict[_Key, Entity] = {}
        self._pending_deletes: Dict[_Key, Entity] = {}

    @property
    def db_path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Open the database connection and create the schema."""
        with self._lock:
            if self._conn is not None:
                return
            try:
                conn = sqlite3.connect(
                    str(self._db_path),
                    check_same_thread=False,  # Access is serialized by self._lock
                    isolation_level=None,  # Transactions are managed explicitly
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                self.error_occurred.emit(f"Database init failed: {e}")
                raise PersistenceError(f"Database init failed: {e}") from e
            self._conn = conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.initialize()
        return self._conn

    @staticmethod
    def _key(entity: Entity) -> _Key:
        return (type(entity), entity.id)

    def _track(self, kind: type, row: sqlite3.Row) -> Entity:
        entity = _from_row(kind, row)
        key = (kind, entity.id)
        self._tracked[key] = entity
        self._snapshots[key] = _to_row(entity)
        return entity

    # ---------- Unit of work ----------

    def insert(self, entity: Entity) -> None:
        """Register a new entity. It becomes durable on the next save()."""
        with self._lock:
            key = self._key(entity)
            if self._pending_deletes.pop(key, None) is not None:
                self._tracked[key] = entity
                return
            if key in self._tracked:
                return
            self._tracked[key] = entity
            self._pending_inserts[key] = entity

    def delete(self, entity: Entity) -> None:
        """
        Register a deletion.

        Deleting a vehicle never deletes trips: every trip referencing it has
        its ``vehicle_id`` cleared (in memory here, on disk by the foreign key).
        """
        with self._lock:
            key = self._key(entity)
            self._tracked.pop(key, None)
            if self._pending_inserts.pop(key, None) is None:
                self._pending_deletes[key] = entity
            else:
                self._snapshots.pop(key, None)

            if isinstance(entity, Vehicle):
                for (kind, _), tracked in self._tracked.items():
                    if kind is Trip and tracked.vehicle_id == entity.id:
                        tracked.vehicle_id = None

    def save(self) -> None:
        """
        Commit all pending work in one transaction.

        Raises:
            PersistenceError: on any database failure. The transaction is
                rolled back and pending work is kept for a retry.
        """
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                written, deleted = self._write_pending(conn)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error("Save failed: %s", e)
                self.error_occurred.emit(f"Save failed: {e}")
                raise PersistenceError(f"Failed to save changes: {e}") from e

            for key, row in written.items():
                self._snapshots[key] = row
            for key in deleted:
                self._snapshots.pop(key, None)
            self._pending_inserts.clear()
            self._pending_deletes.clear()

        for kind, entity_id in written:
            if kind is Trip:
                self.trip_saved.emit(entity_id)
        for kind, entity_id in deleted:
            if kind is Trip:
                self.trip_deleted.emit(entity_id)

    def _write_pending(
        self, conn: sqlite3.Connection
    ) -> Tuple[Dict[_Key, Tuple[Any, ...]], List[_Key]]:
        """Issue the SQL for pending work. Runs inside the save() transaction."""
        written: Dict[_Key, Tuple[Any, ...]] = {}

        # Vehicles first so new trips can reference new vehicles
        for kind in (Vehicle, Trip):
            table, columns = _TABLES[kind]
            placeholders = ", ".join("?" for _ in columns)
            assignments = ", ".join(f"{c} = ?" for c in columns[1:])

            for key, entity in self._tracked.items():
                if key[0] is not kind:
                    continue
                row = _to_row(entity)
                if key in self._pending_inserts:
                    conn.execute(
                        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                        row,
                    )
                    written[key] = row
                elif self._snapshots.get(key) != row:
                    conn.execute(
                        f"UPDATE {table} SET {assignments} WHERE id = ?",
                        row[1:] + (row[0],),
                    )
                    written[key] = row

        deleted: List[_Key] = []
        for kind in (Trip, Vehicle):
            table, _ = _TABLES[kind]
            for key in self._pending_deletes:
                if key[0] is kind:
                    conn.execute(f"DELETE FROM {table} WHERE id = ?", (key[1],))
                    deleted.append(key)

        return written, deleted

    def rollback(self) -> None:
        """Discard pending work and restore tracked entities to their committed state."""
        with self._lock:
            for key in self._pending_inserts:
                self._tracked.pop(key, None)
            self._pending_inserts.clear()
            self._tracked.update(self._pending_deletes)
            self._pending_deletes.clear()

            for key, entity in self._tracked.items():
                snapshot = self._snapshots.get(key)
                if snapshot is None:
                    continue
                _, columns = _TABLES[key[0]]
                committed = _from_row(key[0], dict(zip(columns, snapshot)))
                for f in fields(entity):
                    setattr(entity, f.name, getattr(committed, f.name))

    @property
    def has_changes(self) -> bool:
        with self._lock:
            if self._pending_inserts or self._pending_deletes:
                return True
            return any(
                self._snapshots.get(key) != _to_row(entity)
                for key, entity in self._tracked.items()
            )

    # ---------- Queries ----------

    def get(self, kind: Type[E], entity_id: Optional[str]) -> Optional[E]:
        """Look up one entity by primary key."""
        if not entity_id:
            return None
        with self._lock:
            key = (kind, entity_id)
            if key in self._pending_deletes:
                return None
            if key in self._tracked:
                return self._tracked[key]

            table, _ = _TABLES[kind]
            try:
                row = self._connection().execute(
                    f"SELECT * FROM {table} WHERE id = ?", (entity_id,)
                ).fetchone()
            except sqlite3.Error as e:
                self.error_occurred.emit(f"Lookup failed: {e}")
                raise PersistenceError(f"Lookup failed: {e}") from e
            return self._track(kind, row) if row else None

    def fetch_all(
        self,
        kind: Type[E],
        predicate: Optional[Callable[[E], bool]] = None,
        sort_key: Optional[Callable[[E], Any]] = None,
        reverse: bool = False,
        include_hidden: bool = True,
    ) -> List[E]:
        """
        Return every entity of ``kind``, pending inserts included.

        Args:
            kind: Trip or Vehicle
            predicate: Optional filter applied to each entity
            sort_key: Optional sort key
            reverse: Sort descending
            include_hidden: For trips, False drops ``is_hidden`` trips
        """
        with self._lock:
            table, _ = _TABLES[kind]
            try:
                rows = self._connection().execute(f"SELECT * FROM {table}").fetchall()
            except sqlite3.Error as e:
                self.error_occurred.emit(f"Fetch failed: {e}")
                raise PersistenceError(f"Fetch failed: {e}") from e

            results: List[E] = []
            seen = set()
            for row in rows:
                key = (kind, row["id"])
                if key in self._pending_deletes:
                    continue
                entity = self._tracked.get(key) or self._track(kind, row)
                results.append(entity)
                seen.add(key)
            results.extend(
                entity for key, entity in self._pending_inserts.items()
                if key[0] is kind and key not in seen
            )

        if kind is Trip and not include_hidden:
            results = [t for t in results if not t.is_hidden]
        if predicate is not None:
            results = [e for e in results if predicate(e)]
        if sort_key is not None:
            results.sort(key=sort_key, reverse=reverse)
        return results

    def vehicle_for(self, trip: Trip) -> Optional[Vehicle]:
        """Resolve a trip's weak vehicle reference."""
        return self.get(Vehicle, trip.vehicle_id)

    def delete_all(self, kind: Type[E]) -> int:
        """
        Delete every entity of ``kind`` and save.

        Returns:
            Number of entities deleted
        """
        with self._lock:
            entities = self.fetch_all(kind)
            for entity in entities:
                self.delete(entity)
            self.save()
        return len(entities)
