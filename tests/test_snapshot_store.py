from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sqlite3

from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.repository.table import TABLE_HEADER
from bicingpulse.schemas.core import StationRecord


HOUR_MS = 3_600_000
BASE_MS = int(datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc).timestamp() * 1000)


def _record(
    station_id: str = "S1",
    *,
    free: int = 5,
    empty: int = 10,
    ebikes: int | None = None,
    name: str = "Station 1",
    status: str | None = None,
    online: bool | None = None,
) -> StationRecord:
    return StationRecord(
        id=station_id,
        name=name,
        latitude=41.3851,
        longitude=2.1734,
        free_bikes=free,
        empty_slots=empty,
        timestamp="2024-01-01T08:00:00Z",
        electric_bikes=ebikes,
        status=status,
        online=online,
    )


def test_count_and_recent_match_appended_snapshots(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        for i in range(4):
            store.append([_record(free=i)], captured_at_ms=BASE_MS + i * HOUR_MS)

        assert store.count() == 4
        assert len(store.recent(4)) == 4
        assert len(store.recent(100)) == 4
        assert len(store.all()) == 4
        assert [s.captured_at_ms for s in store.recent(2)] == [BASE_MS + 3 * HOUR_MS, BASE_MS + 2 * HOUR_MS]


def test_station_series_is_sorted_regardless_of_append_order(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        store.append([_record(free=3)], captured_at_ms=BASE_MS + 3 * HOUR_MS)
        store.append([_record(free=1)], captured_at_ms=BASE_MS + 1 * HOUR_MS)
        # This snapshot does not contain S1 and contributes nothing to its series.
        store.append([_record("S2", free=9)], captured_at_ms=BASE_MS + 4 * HOUR_MS)
        store.append([_record(free=2), _record("S2", free=8)], captured_at_ms=BASE_MS + 2 * HOUR_MS)

        series = store.station_series("S1")

    assert [p.timestamp for p in series] == [BASE_MS + HOUR_MS, BASE_MS + 2 * HOUR_MS, BASE_MS + 3 * HOUR_MS]
    assert [p.free_bikes for p in series] == [1, 2, 3]


def test_history_points_clamp_mechanical_and_derive_status(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        store.append([_record(free=3, ebikes=5)], captured_at_ms=BASE_MS)
        store.append([_record(free=4, status="CLOSED")], captured_at_ms=BASE_MS + HOUR_MS)
        store.append([_record(free=6, ebikes=2, online=False)], captured_at_ms=BASE_MS + 2 * HOUR_MS)
        series = store.station_series("S1")

    first, second, third = series
    # More e-bikes than free bikes upstream: mechanical is clamped, not negative.
    assert first.mechanical == 0
    assert first.electric_bikes == 5
    assert first.status == "online"
    # Missing e-bike count defaults to 0.
    assert second.electric_bikes == 0
    assert second.mechanical == 4
    assert second.status == "offline"
    assert third.mechanical == 4
    assert third.status == "offline"
    assert all(p.mechanical >= 0 for p in series)


def test_clear_empties_store_and_keeps_sequence_ids_increasing(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        store.append([_record()], captured_at_ms=BASE_MS)
        first_id = store.all()[0].sequence_id

        assert store.clear() is True
        assert store.count() == 0
        assert store.recent(10) == []

        store.append([_record()], captured_at_ms=BASE_MS)
        assert store.all()[0].sequence_id > first_id


def test_seed_groups_rows_by_timestamp(tmp_path: Path) -> None:
    table = "\n".join(
        [
            TABLE_HEADER,
            '2024-01-01T08:00:00.000Z;01/01/2024, 09:00:00;S1;"One";5;10;1;41.38;2.17',
            '2024-01-01T08:00:00.000Z;01/01/2024, 09:00:00;S2;"Two";7;3;0;41.39;2.18',
            '2024-01-01T09:00:00.000Z;01/01/2024, 10:00:00;S1;"One";4;11;1;41.38;2.17',
        ]
    )
    with SnapshotStore(tmp_path / "history.db") as store:
        assert store.seed_from_table(table) is True
        snapshots = sorted(store.all(), key=lambda s: s.captured_at_ms)

    assert len(snapshots) == 2
    assert [len(s.stations) for s in snapshots] == [2, 1]
    assert snapshots[0].captured_at_ms == BASE_MS
    assert snapshots[1].captured_at_ms == BASE_MS + HOUR_MS


def test_seed_is_skipped_when_store_has_history(tmp_path: Path) -> None:
    table = TABLE_HEADER + '\n2024-01-01T08:00:00.000Z;x;S1;"One";5;10;1;0;0\n'
    with SnapshotStore(tmp_path / "history.db") as store:
        store.append([_record()], captured_at_ms=BASE_MS)

        assert store.seed_from_table(table) is False
        assert store.count() == 1


def test_seed_without_valid_rows_returns_false(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        assert store.seed_from_table(TABLE_HEADER + "\nnot;enough;columns\n") is False
        assert store.count() == 0


def test_export_then_seed_round_trip(tmp_path: Path) -> None:
    source = SnapshotStore(tmp_path / "source.db", timezone="Europe/Madrid").open()
    try:
        source.append([_record(free=5, ebikes=2, name='Pl. "Catalunya"; 1'), _record("S2", free=1)], captured_at_ms=BASE_MS)
        source.append([_record(free=0), _record("S2", free=12, empty=0)], captured_at_ms=BASE_MS + HOUR_MS)
        source.append([_record(free=7)], captured_at_ms=BASE_MS + 2 * HOUR_MS + 1234)
        exported = source.export_table()
        expected = {s.captured_at_ms: s for s in source.all()}
    finally:
        source.close()

    with SnapshotStore(tmp_path / "target.db") as target:
        assert target.clear() is True
        assert target.seed_from_table(exported) is True
        restored = target.all()
        assert target.count() == len(expected)

    assert sum(r.free_bikes for s in restored for r in s.stations) == sum(
        r.free_bikes for s in expected.values() for r in s.stations
    )
    for snap in restored:
        original = expected[snap.captured_at_ms]
        assert sum(r.free_bikes for r in snap.stations) == sum(r.free_bikes for r in original.stations)
        assert sum(r.empty_slots for r in snap.stations) == sum(r.empty_slots for r in original.stations)

    names = {r.name for s in restored for r in s.stations}
    assert 'Pl. "Catalunya"; 1' in names


def test_recent_orders_by_capture_time_after_seed(tmp_path: Path) -> None:
    # Table order is not chronological; `recent` must still return the latest capture first.
    table = "\n".join(
        [
            TABLE_HEADER,
            '2024-01-01T10:00:00.000Z;x;S1;"One";3;10;0;0;0',
            '2024-01-01T08:00:00.000Z;x;S1;"One";1;10;0;0;0',
            '2024-01-01T12:00:00.000Z;x;S1;"One";5;10;0;0;0',
            '2024-01-01T09:00:00.000Z;x;S1;"One";2;10;0;0;0',
        ]
    )
    with SnapshotStore(tmp_path / "history.db") as store:
        assert store.seed_from_table(table) is True
        recent = store.recent(2)

    assert [s.stations[0].free_bikes for s in recent] == [5, 3]


def test_latest_reading_returns_most_recent_record(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        store.append([_record(free=9)], captured_at_ms=BASE_MS + 2 * HOUR_MS)
        store.append([_record(free=4)], captured_at_ms=BASE_MS)

        latest = store.latest_reading("S1")
        assert latest is not None
        assert latest.free_bikes == 9
        assert store.latest_reading("missing") is None


def test_unopened_store_reports_unavailable_and_defaults(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "history.db")

    result = store.try_count()
    assert not result.ok
    assert result.error == "unavailable"

    # Boundary methods never raise; they collapse to safe defaults.
    store.append([_record()])
    assert store.count() == 0
    assert store.recent(5) == []
    assert store.station_series("S1") == []
    assert store.clear() is False
    assert store.seed_from_table(TABLE_HEADER + '\n2024-01-01T08:00:00.000Z;x;S1;"One";5;10;1;0;0\n') is False
    assert store.export_table() == TABLE_HEADER + "\n"


def test_corrupt_snapshot_payload_is_reported(tmp_path: Path) -> None:
    db_path = tmp_path / "history.db"
    with SnapshotStore(db_path) as store:
        store.append([_record()], captured_at_ms=BASE_MS)

        conn = sqlite3.connect(str(db_path))
        try:
            with conn:
                conn.execute(
                    "INSERT INTO snapshots (captured_at_ms, stations_json) VALUES (?, ?)",
                    (BASE_MS + HOUR_MS, "{not json"),
                )
        finally:
            conn.close()

        result = store.try_all()
        assert result.error == "corrupt"
        assert store.all() == []
        # Counting does not decode payloads.
        assert store.count() == 2


def _export_and_reseed(tmp_path: Path, records: list[StationRecord]) -> tuple[int, list]:
    with SnapshotStore(tmp_path / "source.db") as source:
        source.append(records, captured_at_ms=BASE_MS)
        exported = source.export_table()
        count = source.count()
    with SnapshotStore(tmp_path / "target.db") as target:
        assert target.seed_from_table(exported) is True
        assert target.count() == count
        return count, target.all()


def test_round_trip_keeps_multiline_names(tmp_path: Path) -> None:
    _, restored = _export_and_reseed(tmp_path, [_record(name="Line one\nLine two", free=5)])

    (record,) = restored[0].stations
    assert record.name == "Line one\nLine two"
    assert record.free_bikes == 5


def test_round_trip_keeps_delimiters_and_quotes_in_ids(tmp_path: Path) -> None:
    _, restored = _export_and_reseed(tmp_path, [_record("12;3", free=5), _record('7"b', free=2, empty=4)])

    by_id = {r.id: r for r in restored[0].stations}
    assert set(by_id) == {"12;3", '7"b'}
    assert by_id["12;3"].free_bikes == 5
    assert (by_id['7"b'].free_bikes, by_id['7"b'].empty_slots) == (2, 4)


def test_empty_snapshots_are_not_stored(tmp_path: Path) -> None:
    with SnapshotStore(tmp_path / "history.db") as store:
        store.append([_record(free=5)], captured_at_ms=BASE_MS)
        store.append([], captured_at_ms=BASE_MS + 1000)

        result = store.try_append([], BASE_MS + 2000)
        assert result.ok
        assert result.value is None
        assert store.count() == 1

        exported = store.export_table()

    with SnapshotStore(tmp_path / "target.db") as target:
        assert target.seed_from_table(exported) is True
        assert target.count() == 1


def test_sqlite_errors_report_transaction_failure(tmp_path: Path) -> None:
    db_path = tmp_path / "history.db"
    with SnapshotStore(db_path) as store:
        store.append([_record()], captured_at_ms=BASE_MS)

        conn = sqlite3.connect(str(db_path))
        try:
            with conn:
                conn.execute("DROP TABLE snapshots")
        finally:
            conn.close()

        result = store.try_count()
        assert not result.ok
        assert result.error == "transaction"
        assert store.count() == 0
        assert store.recent(5) == []
