from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional


PatternMetric = Literal["free_bikes", "empty_slots", "electric_bikes", "mechanical"]


@dataclass(frozen=True)
class AppSettings:
    name: str = "BicingPulse"


@dataclass(frozen=True)
class StorageSettings:
    db_path: Path


@dataclass(frozen=True)
class TemporalSettings:
    # Local timezone used for day-of-week / time-of-day features and the export's local column.
    timezone: str


@dataclass(frozen=True)
class FeedSettings:
    api_url: str
    timeout_s: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass(frozen=True)
class RecorderSettings:
    interval_seconds: int
    check_interval_seconds: int
    state_path: Path


@dataclass(frozen=True)
class ForecastSettings:
    horizon_minutes: int = 180
    step_minutes: int = 15
    window_minutes: int = 30
    min_history_points: int = 5
    min_similar_samples: int = 3
    full_decay_minutes: float = 90.0
    fallback_std_dev: float = 2.0
    inflation_per_hour: float = 0.5
    min_std_dev: float = 1.0


@dataclass(frozen=True)
class PatternSettings:
    bucket_minutes: int = 30
    metric: PatternMetric = "free_bikes"
    reliable_threshold: int = 2


@dataclass(frozen=True)
class AnalyticsSettings:
    forecast: ForecastSettings
    patterns: PatternSettings


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str
    file: Optional[Path] = None


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    storage: StorageSettings
    temporal: TemporalSettings
    feed: FeedSettings
    recorder: RecorderSettings
    analytics: AnalyticsSettings
    logging: LoggingSettings
