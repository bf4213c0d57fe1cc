from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Callable, Generic, Iterable, Iterator, Literal, Optional, TypeVar

from bicingpulse.repository.table import TABLE_HEADER, format_table, parse_table
from bicingpulse.schemas.core import Snapshot, StationHistoryPoint, StationRecord
from bicingpulse.utils.timeutils import now_ms


logger = logging.getLogger(__name__)

T = TypeVar("T")

StoreErrorKind = Literal["unavailable", "transaction", "corrupt"]


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """
    Outcome of a store operation: either a value or a failure kind.

    The `try_*` methods of `SnapshotStore` return these so callers (and tests) can
    inspect failures; the plain methods collapse them to safe defaults.
    """

    value: Optional[T] = None
    error: Optional[StoreErrorKind] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value

    @staticmethod
    def success(value: T) -> "StoreResult[T]":
        return StoreResult(value=value)

    @staticmethod
    def failure(kind: StoreErrorKind, detail: str) -> "StoreResult[T]":
        return StoreResult(error=kind, detail=detail)


class CorruptSnapshotError(ValueError):
    pass


_SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
  sequence_id INTEGER PRIMARY KEY AUTOINCREMENT,
  captured_at_ms INTEGER NOT NULL,
  stations_json TEXT NOT NULL
)
"""


def _decode_stations(raw: str, *, sequence_id: object) -> tuple[StationRecord, ...]:
    try:
        items = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise CorruptSnapshotError(f"Snapshot {sequence_id} has unreadable stations payload") from e
    if not isinstance(items, list):
        raise CorruptSnapshotError(f"Snapshot {sequence_id} stations payload is not a list")
    return tuple(StationRecord.from_dict(item) for item in items if isinstance(item, dict))


def _encode_stations(stations: Iterable[StationRecord]) -> str:
    return json.dumps([s.to_dict() for s in stations], ensure_ascii=False)


class SnapshotStore:
    """
    Append-only local history of network snapshots, backed by one SQLite file.

    - The store owns its connection: call `open()` once at startup and `close()` at
      shutdown (or use it as a context manager).
    - Snapshots are never updated in place; `clear()` is the only deletion.
    - `sequence_id` is a storage key, not a time proxy. Ordering by time uses
      `captured_at_ms`.
    """

    def __init__(self, db_path: str | Path, *, timezone: str = "UTC") -> None:
        self._db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._timezone = timezone
        self._conn: Optional[sqlite3.Connection] = None
        # FastAPI runs sync handlers on a thread pool; the connection is shared.
        self._lock = threading.Lock()

    @property
    def db_path(self) -> str | Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "SnapshotStore":
        if self._conn is not None:
            return self
        try:
            if isinstance(self._db_path, Path):
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            with conn:
                conn.execute(_SCHEMA)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_captured ON snapshots(captured_at_ms)")
        except (OSError, sqlite3.Error):
            logger.exception("Could not open history store at %s", self._db_path)
            return self
        self._conn = conn
        return self

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def __enter__(self) -> "SnapshotStore":
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _run(self, op: str, fn: Callable[[sqlite3.Connection], T]) -> StoreResult[T]:
        conn = self._conn
        if conn is None:
            return StoreResult.failure("unavailable", f"{op}: store is not open")
        try:
            with self._lock:
                return StoreResult.success(fn(conn))
        except CorruptSnapshotError as e:
            return StoreResult.failure("corrupt", f"{op}: {e}")
        except sqlite3.Error as e:
            return StoreResult.failure("transaction", f"{op}: {e}")

    def _iter_snapshots(self, rows: Iterable[tuple[int, int, str]]) -> Iterator[Snapshot]:
        for sequence_id, captured_at_ms, raw in rows:
            yield Snapshot(
                sequence_id=int(sequence_id),
                captured_at_ms=int(captured_at_ms),
                stations=_decode_stations(raw, sequence_id=sequence_id),
            )

    def _rows_to_snapshots(self, rows: Iterable[tuple[int, int, str]]) -> list[Snapshot]:
        return list(self._iter_snapshots(rows))

    # --- result-returning operations -------------------------------------------------

    def try_append(
        self, stations: Iterable[StationRecord], captured_at_ms: Optional[int] = None
    ) -> StoreResult[Optional[int]]:
        stations = list(stations)
        # A snapshot without stations exports no rows, so it could never be re-seeded.
        if not stations:
            return StoreResult.success(None)
        ts = now_ms() if captured_at_ms is None else int(captured_at_ms)
        payload = _encode_stations(stations)

        def _insert(conn: sqlite3.Connection) -> Optional[int]:
            with conn:
                cur = conn.execute(
                    "INSERT INTO snapshots (captured_at_ms, stations_json) VALUES (?, ?)",
                    (ts, payload),
                )
            return int(cur.lastrowid)

        return self._run("append", _insert)

    def try_count(self) -> StoreResult[int]:
        def _count(conn: sqlite3.Connection) -> int:
            row = conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()
            return int(row[0]) if row else 0

        return self._run("count", _count)

    def try_recent(self, limit: int = 50) -> StoreResult[list[Snapshot]]:
        if int(limit) <= 0:
            return StoreResult.success([])

        def _recent(conn: sqlite3.Connection) -> list[Snapshot]:
            rows = conn.execute(
                "SELECT sequence_id, captured_at_ms, stations_json FROM snapshots "
                "ORDER BY captured_at_ms DESC, sequence_id DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
            return self._rows_to_snapshots(rows)

        return self._run("recent", _recent)

    def try_all(self) -> StoreResult[list[Snapshot]]:
        def _all(conn: sqlite3.Connection) -> list[Snapshot]:
            rows = conn.execute(
                "SELECT sequence_id, captured_at_ms, stations_json FROM snapshots ORDER BY sequence_id"
            ).fetchall()
            return self._rows_to_snapshots(rows)

        return self._run("all", _all)

    def try_station_series(self, station_id: str) -> StoreResult[list[StationHistoryPoint]]:
        station_id = str(station_id)

        def _series(conn: sqlite3.Connection) -> list[StationHistoryPoint]:
            rows = conn.execute("SELECT sequence_id, captured_at_ms, stations_json FROM snapshots")
            points: list[StationHistoryPoint] = []
            for snapshot in self._iter_snapshots(rows):
                record = snapshot.find(station_id)
                if record is not None:
                    points.append(StationHistoryPoint.from_record(record, captured_at_ms=snapshot.captured_at_ms))
            points.sort(key=lambda p: p.timestamp)
            return points

        return self._run("station_series", _series)

    def try_latest_reading(self, station_id: str) -> StoreResult[Optional[StationRecord]]:
        station_id = str(station_id)

        def _latest(conn: sqlite3.Connection) -> Optional[StationRecord]:
            rows = conn.execute(
                "SELECT sequence_id, captured_at_ms, stations_json FROM snapshots "
                "ORDER BY captured_at_ms DESC, sequence_id DESC"
            )
            for snapshot in self._iter_snapshots(rows):
                record = snapshot.find(station_id)
                if record is not None:
                    return record
            return None

        return self._run("latest_reading", _latest)

    def try_clear(self) -> StoreResult[int]:
        def _clear(conn: sqlite3.Connection) -> int:
            with conn:
                cur = conn.execute("DELETE FROM snapshots")
            return int(cur.rowcount)

        return self._run("clear", _clear)

    def try_seed_from_table(self, source_text: str) -> StoreResult[bool]:
        counted = self.try_count()
        if not counted.ok:
            return StoreResult.failure(counted.error or "transaction", counted.detail or "seed: count failed")
        if (counted.value or 0) > 0:
            logger.info("History store already has data; skipping seed.")
            return StoreResult.success(False)

        groups = parse_table(source_text)
        if not groups:
            return StoreResult.success(False)
        rows = [(g.captured_at_ms, _encode_stations(g.stations)) for g in groups]

        def _bulk_insert(conn: sqlite3.Connection) -> bool:
            with conn:
                conn.executemany("INSERT INTO snapshots (captured_at_ms, stations_json) VALUES (?, ?)", rows)
            return True

        result = self._run("seed", _bulk_insert)
        if result.ok:
            logger.info("Seeded %s historical snapshots.", len(rows))
        return result

    def try_export_table(self) -> StoreResult[str]:
        snapshots = self.try_all()
        if not snapshots.ok:
            return StoreResult.failure(snapshots.error or "transaction", snapshots.detail or "export failed")
        return StoreResult.success(format_table(snapshots.value or [], timezone=self._timezone))

    # --- boundary operations (never raise) -------------------------------------------

    def _collapse(self, result: StoreResult[T], default: T) -> T:
        if not result.ok:
            logger.warning("History store %s failure: %s", result.error, result.detail)
        return result.unwrap_or(default)

    def append(self, stations: Iterable[StationRecord], captured_at_ms: Optional[int] = None) -> None:
        stations = list(stations)
        result = self.try_append(stations, captured_at_ms)
        if result.ok and result.value is None:
            logger.info("Skipping empty snapshot (no stations)")
        elif result.ok:
            logger.info("Snapshot %s saved (%s stations)", result.value, len(stations))
        else:
            logger.error("Failed to save snapshot (%s): %s", result.error, result.detail)

    def count(self) -> int:
        return self._collapse(self.try_count(), 0)

    def recent(self, limit: int = 50) -> list[Snapshot]:
        return self._collapse(self.try_recent(limit), [])

    def all(self) -> list[Snapshot]:
        return self._collapse(self.try_all(), [])

    def station_series(self, station_id: str) -> list[StationHistoryPoint]:
        return self._collapse(self.try_station_series(station_id), [])

    def latest_reading(self, station_id: str) -> Optional[StationRecord]:
        return self._collapse(self.try_latest_reading(station_id), None)

    def clear(self) -> bool:
        result = self.try_clear()
        if not result.ok:
            logger.error("Failed to clear history store (%s): %s", result.error, result.detail)
            return False
        logger.info("History store cleared (%s snapshots removed)", result.value)
        return True

    def seed_from_table(self, source_text: str) -> bool:
        return self._collapse(self.try_seed_from_table(source_text), False)

    def export_table(self) -> str:
        return self._collapse(self.try_export_table(), TABLE_HEADER + "\n")
