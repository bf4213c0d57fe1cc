from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from bicingpulse.schemas.core import Snapshot, StationRecord


TOP_STATIONS = 5


@dataclass(frozen=True)
class RankedStation:
    id: str
    name: str
    value: int


@dataclass(frozen=True)
class NetworkSummary:
    total_bikes: int
    total_electric: int
    total_mechanical: int
    total_slots: int
    active_stations: int
    offline_stations: int
    full_stations: int
    empty_stations: int
    occupancy_rate: float
    top_bikes: tuple[RankedStation, ...] = ()
    top_slots: tuple[RankedStation, ...] = ()


@dataclass(frozen=True)
class HourlyActivity:
    hour: str
    activity: float
    samples: int


def display_name(name: str) -> str:
    # Feed names look like "123 - C/ ARAGO, 1"; keep the street part when present.
    parts = name.split("-")
    if len(parts) > 1 and parts[1].strip():
        return parts[1].strip()
    return name


def rank_stations(stations: Sequence[StationRecord], *, key: str, limit: int = TOP_STATIONS) -> tuple[RankedStation, ...]:
    ordered = sorted(stations, key=lambda s: getattr(s, key), reverse=True)
    return tuple(RankedStation(id=s.id, name=display_name(s.name), value=int(getattr(s, key))) for s in ordered[:limit])


def network_summary(stations: Sequence[StationRecord]) -> NetworkSummary:
    total_bikes = 0
    total_electric = 0
    total_mechanical = 0
    total_slots = 0
    active = 0
    offline = 0
    full = 0
    empty = 0
    for s in stations:
        electric = s.electric_bikes or 0
        total_bikes += s.free_bikes
        total_electric += electric
        total_mechanical += max(0, s.free_bikes - electric)
        total_slots += s.empty_slots
        if s.is_offline:
            offline += 1
        else:
            active += 1
        if s.empty_slots == 0:
            full += 1
        if s.free_bikes == 0:
            empty += 1

    capacity = total_bikes + total_slots
    return NetworkSummary(
        total_bikes=total_bikes,
        total_electric=total_electric,
        total_mechanical=total_mechanical,
        total_slots=total_slots,
        active_stations=active,
        offline_stations=offline,
        full_stations=full,
        empty_stations=empty,
        occupancy_rate=(total_bikes / capacity) if capacity > 0 else 0.0,
        top_bikes=rank_stations(stations, key="free_bikes"),
        top_slots=rank_stations(stations, key="empty_slots"),
    )


def network_activity(snapshots: Sequence[Snapshot], *, timezone: str = "UTC") -> list[HourlyActivity]:
    """
    Average bike movements per snapshot interval, by local hour of day.

    Movements between two chronologically consecutive snapshots are the sum of
    `|delta free_bikes|` over stations present in both; they are attributed to the
    hour of the later snapshot. Returns `[]` with fewer than two snapshots.
    """

    if len(snapshots) < 2:
        return []

    ordered = sorted(snapshots, key=lambda s: (s.captured_at_ms, s.sequence_id))
    rows = [
        {"_pos": pos, "station_id": r.id, "free_bikes": r.free_bikes}
        for pos, snap in enumerate(ordered)
        for r in snap.stations
    ]
    frame = pd.DataFrame(rows, columns=["_pos", "station_id", "free_bikes"])
    if frame.empty:
        moves = pd.Series([0.0] * (len(ordered) - 1))
    else:
        wide = (
            frame.pivot_table(index="_pos", columns="station_id", values="free_bikes", aggfunc="first")
            .reindex(range(len(ordered)))
        )
        moves = wide.diff().abs().sum(axis=1, skipna=True).iloc[1:]

    hours = (
        pd.to_datetime(pd.Series([s.captured_at_ms for s in ordered[1:]]), unit="ms", utc=True)
        .dt.tz_convert(timezone)
        .dt.hour
    )
    per_hour = pd.DataFrame({"hour": hours.to_numpy(), "moves": moves.to_numpy()}).groupby("hour")["moves"].agg(
        ["mean", "count"]
    )

    out: list[HourlyActivity] = []
    for hour in range(24):
        if hour in per_hour.index:
            row = per_hour.loc[hour]
            out.append(HourlyActivity(hour=f"{hour:02d}:00", activity=round(float(row["mean"]), 1), samples=int(row["count"])))
        else:
            out.append(HourlyActivity(hour=f"{hour:02d}:00", activity=0.0, samples=0))
    return out
