from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Literal, Mapping, Optional


StationStatus = Literal["online", "offline"]


def coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number)


def coerce_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else coerce_int(value)


@dataclass(frozen=True)
class StationRecord:
    """
    Per-station projection kept inside a snapshot.

    `electric_bikes <= free_bikes` is not enforced; upstream data can violate it.
    """

    id: str
    name: str
    latitude: float
    longitude: float
    free_bikes: int
    empty_slots: int
    timestamp: str
    electric_bikes: Optional[int] = None
    status: Optional[str] = None
    online: Optional[bool] = None

    @property
    def is_offline(self) -> bool:
        return self.status == "CLOSED" or self.online is False

    @staticmethod
    def from_feed(item: Mapping[str, Any]) -> "StationRecord":
        """
        Normalize one live-feed station (CityBikes shape) into a record.

        Nested `extra.ebikes/status/online` are lifted into flat fields; non-numeric
        counts and coordinates become 0.
        """

        extra = item.get("extra")
        if not isinstance(extra, Mapping):
            extra = {}
        online = extra.get("online")
        status = extra.get("status")
        return StationRecord(
            id=str(item.get("id", "")),
            name=str(item.get("name", "")),
            latitude=coerce_float(item.get("latitude")),
            longitude=coerce_float(item.get("longitude")),
            free_bikes=max(coerce_int(item.get("free_bikes")), 0),
            empty_slots=max(coerce_int(item.get("empty_slots")), 0),
            timestamp=str(item.get("timestamp") or ""),
            electric_bikes=max(coerce_int(extra.get("ebikes")), 0),
            status=None if status is None else str(status),
            online=None if online is None else bool(online),
        )

    @staticmethod
    def from_dict(obj: Mapping[str, Any]) -> "StationRecord":
        online = obj.get("online")
        status = obj.get("status")
        return StationRecord(
            id=str(obj.get("id", "")),
            name=str(obj.get("name", "")),
            latitude=coerce_float(obj.get("latitude")),
            longitude=coerce_float(obj.get("longitude")),
            free_bikes=coerce_int(obj.get("free_bikes")),
            empty_slots=coerce_int(obj.get("empty_slots")),
            timestamp=str(obj.get("timestamp") or ""),
            electric_bikes=_optional_int(obj.get("electric_bikes")),
            status=None if status is None else str(status),
            online=None if online is None else bool(online),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "free_bikes": self.free_bikes,
            "empty_slots": self.empty_slots,
            "timestamp": self.timestamp,
            "electric_bikes": self.electric_bikes,
            "status": self.status,
            "online": self.online,
        }


@dataclass(frozen=True)
class Snapshot:
    sequence_id: int
    captured_at_ms: int
    stations: tuple[StationRecord, ...]

    def find(self, station_id: str) -> Optional[StationRecord]:
        for record in self.stations:
            if record.id == station_id:
                return record
        return None


@dataclass(frozen=True)
class StationHistoryPoint:
    timestamp: int
    free_bikes: int
    empty_slots: int
    electric_bikes: int
    mechanical: int
    status: StationStatus

    @staticmethod
    def from_record(record: StationRecord, *, captured_at_ms: int) -> "StationHistoryPoint":
        electric = record.electric_bikes or 0
        return StationHistoryPoint(
            timestamp=int(captured_at_ms),
            free_bikes=record.free_bikes,
            empty_slots=record.empty_slots,
            electric_bikes=electric,
            mechanical=max(0, record.free_bikes - electric),
            status="offline" if record.is_offline else "online",
        )


@dataclass(frozen=True)
class PatternBucket:
    label: str
    sample_count: int
    avg_bikes: float
    min_bikes: int
    max_bikes: int

    @property
    def range(self) -> tuple[int, int]:
        return (self.min_bikes, self.max_bikes)


@dataclass(frozen=True)
class PatternSummary:
    buckets: tuple[PatternBucket, ...]
    reliability: float
    empty_probability: float
    avg_electric: float
    max_capacity_observed: int
    best_bucket: PatternBucket
    hourly_flow: float
    volatility: float
    total_points: int


@dataclass(frozen=True)
class PredictionPoint:
    offset_minutes: int
    projected_bikes: int
    is_projected: bool
    confidence_low: int
    confidence_high: int
