from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class ForecastConfigOut(BaseModel):
    horizon_minutes: int
    step_minutes: int
    window_minutes: int
    min_history_points: int


class PatternConfigOut(BaseModel):
    bucket_minutes: int
    metric: str
    reliable_threshold: int


class AppConfigOut(BaseModel):
    app_name: str
    timezone: str
    record_interval_seconds: int
    forecast: ForecastConfigOut
    patterns: PatternConfigOut


class CountOut(BaseModel):
    count: int


class StationRecordOut(BaseModel):
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


class SnapshotOut(BaseModel):
    sequence_id: int
    captured_at_ms: int
    stations: list[StationRecordOut]


class HistoryPointOut(BaseModel):
    timestamp: int
    free_bikes: int
    empty_slots: int
    electric_bikes: int
    mechanical: int
    status: str = Field(..., examples=["online", "offline"])


class StationHistoryOut(BaseModel):
    station_id: str
    points: list[HistoryPointOut]


class PatternBucketOut(BaseModel):
    label: str = Field(..., examples=["08:30"])
    sample_count: int
    avg_bikes: float
    min: int
    max: int
    range: list[int]


class StationPatternsOut(BaseModel):
    station_id: str
    bucket_minutes: int
    metric: str
    buckets: list[PatternBucketOut]
    reliability: float
    empty_probability: float
    avg_electric: float
    max_capacity_observed: int
    best_bucket: PatternBucketOut
    hourly_flow: float
    volatility: float
    total_points: int


class PredictionPointOut(BaseModel):
    offset_minutes: int
    projected_bikes: int
    is_projected: bool
    confidence_low: int
    confidence_high: int


class StationForecastOut(BaseModel):
    station_id: str
    current_free_bikes: int
    points: list[PredictionPointOut] = Field(default_factory=list)
    meta: dict[str, object] = Field(default_factory=dict)


class HourlyActivityOut(BaseModel):
    hour: str
    activity: float
    samples: int


class NetworkActivityOut(BaseModel):
    snapshots: int
    hours: list[HourlyActivityOut]


class RankedStationOut(BaseModel):
    id: str
    name: str
    value: int


class NetworkSummaryOut(BaseModel):
    captured_at_ms: int
    total_bikes: int
    total_electric: int
    total_mechanical: int
    total_slots: int
    active_stations: int
    offline_stations: int
    full_stations: int
    empty_stations: int
    occupancy_rate: float
    top_bikes: list[RankedStationOut] = Field(default_factory=list)
    top_slots: list[RankedStationOut] = Field(default_factory=list)


class StationReadingIn(BaseModel):
    id: str
    name: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    free_bikes: int = 0
    empty_slots: int = 0
    timestamp: str = ""
    extra: Optional[dict[str, Any]] = None


class CaptureIn(BaseModel):
    stations: list[StationReadingIn] = Field(default_factory=list)


class ActionOut(BaseModel):
    ok: bool
    message: str
    count: Optional[int] = None
