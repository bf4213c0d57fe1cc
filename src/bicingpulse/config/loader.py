from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bicingpulse.config.models import (
    AnalyticsSettings,
    AppConfig,
    AppSettings,
    FeedSettings,
    ForecastSettings,
    LoggingSettings,
    PatternSettings,
    RecorderSettings,
    StorageSettings,
    TemporalSettings,
)


_PATTERN_METRICS = ("free_bikes", "empty_slots", "electric_bikes", "mechanical")


def load_dotenv_if_available(path: str = ".env") -> None:
    try:
        from dotenv import load_dotenv  # type: ignore
    except ModuleNotFoundError:
        return
    load_dotenv(path)


def _as_path(value: str, *, base_dir: Path) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base_dir / candidate)


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Invalid integer in env {name}: {value!r}") from e


def load_config(path: Optional[str | Path] = None, *, base_dir: Optional[Path] = None) -> AppConfig:
    """
    Load typed application config from JSON.

    - Path resolution is relative to `base_dir` (defaults to current working directory).
    - `.env` is loaded when python-dotenv is installed (dev convenience).
    - `BICINGPULSE_*` env vars override the storage path, timezone, feed URL and recorder interval.
    """

    load_dotenv_if_available()

    config_path = Path(
        path
        or os.getenv("BICINGPULSE_CONFIG_PATH", "config/default.json")
    ).resolve()
    base_dir = (base_dir or Path.cwd()).resolve()

    raw = json.loads(config_path.read_text(encoding="utf-8"))

    app_raw: Mapping[str, Any] = raw.get("app", {})
    app = AppSettings(name=str(app_raw.get("name", "BicingPulse")))

    storage_raw: Mapping[str, Any] = raw.get("storage", {})
    db_value = os.getenv("BICINGPULSE_DB_PATH") or str(storage_raw.get("db_path", "data/history.db"))
    storage = StorageSettings(db_path=_as_path(db_value, base_dir=base_dir))

    temporal_raw: Mapping[str, Any] = raw.get("temporal", {})
    temporal = TemporalSettings(
        timezone=os.getenv("BICINGPULSE_TIMEZONE") or str(temporal_raw.get("timezone", "Europe/Madrid")),
    )
    try:
        ZoneInfo(temporal.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unsupported timezone: {temporal.timezone}") from e

    feed_raw: Mapping[str, Any] = raw.get("feed", {})
    api_url = os.getenv("BICINGPULSE_FEED_URL") or feed_raw.get("api_url")
    if not api_url:
        raise ValueError("Config missing required field: feed.api_url")
    feed = FeedSettings(
        api_url=str(api_url),
        timeout_s=float(feed_raw.get("timeout_s", 30.0)),
        max_retries=int(feed_raw.get("max_retries", 3)),
        backoff_factor=float(feed_raw.get("backoff_factor", 0.5)),
    )

    recorder_raw: Mapping[str, Any] = raw.get("recorder", {})
    interval_override = _env_int("BICINGPULSE_RECORD_INTERVAL_SECONDS")
    recorder = RecorderSettings(
        interval_seconds=(
            interval_override
            if interval_override is not None
            else int(recorder_raw.get("interval_seconds", 3600))
        ),
        check_interval_seconds=int(recorder_raw.get("check_interval_seconds", 60)),
        state_path=_as_path(str(recorder_raw.get("state_path", "data/recorder_state.json")), base_dir=base_dir),
    )
    if recorder.interval_seconds <= 0 or recorder.check_interval_seconds <= 0:
        raise ValueError("recorder.interval_seconds and recorder.check_interval_seconds must be positive")

    analytics_raw: Mapping[str, Any] = raw.get("analytics", {})
    forecast_raw: Mapping[str, Any] = analytics_raw.get("forecast", {})
    defaults = ForecastSettings()
    forecast = ForecastSettings(
        horizon_minutes=int(forecast_raw.get("horizon_minutes", defaults.horizon_minutes)),
        step_minutes=int(forecast_raw.get("step_minutes", defaults.step_minutes)),
        window_minutes=int(forecast_raw.get("window_minutes", defaults.window_minutes)),
        min_history_points=int(forecast_raw.get("min_history_points", defaults.min_history_points)),
        min_similar_samples=int(forecast_raw.get("min_similar_samples", defaults.min_similar_samples)),
        full_decay_minutes=float(forecast_raw.get("full_decay_minutes", defaults.full_decay_minutes)),
        fallback_std_dev=float(forecast_raw.get("fallback_std_dev", defaults.fallback_std_dev)),
        inflation_per_hour=float(forecast_raw.get("inflation_per_hour", defaults.inflation_per_hour)),
        min_std_dev=float(forecast_raw.get("min_std_dev", defaults.min_std_dev)),
    )
    if forecast.step_minutes <= 0 or forecast.full_decay_minutes <= 0:
        raise ValueError("analytics.forecast.step_minutes and full_decay_minutes must be positive")

    patterns_raw: Mapping[str, Any] = analytics_raw.get("patterns", {})
    patterns = PatternSettings(
        bucket_minutes=int(patterns_raw.get("bucket_minutes", 30)),
        metric=str(patterns_raw.get("metric", "free_bikes")),  # type: ignore[arg-type]
        reliable_threshold=int(patterns_raw.get("reliable_threshold", 2)),
    )
    if patterns.metric not in _PATTERN_METRICS:
        raise ValueError(f"Unsupported patterns.metric: {patterns.metric}")
    if patterns.bucket_minutes <= 0 or 1440 % patterns.bucket_minutes != 0:
        raise ValueError(f"patterns.bucket_minutes must divide a day: {patterns.bucket_minutes}")

    analytics = AnalyticsSettings(forecast=forecast, patterns=patterns)

    logging_raw: Mapping[str, Any] = raw.get("logging", {})
    file_value = logging_raw.get("file")
    log_file = None if not file_value else _as_path(str(file_value), base_dir=base_dir)
    logging_settings = LoggingSettings(
        level=str(logging_raw.get("level", "INFO")),
        format=str(logging_raw.get("format", "%(asctime)s %(levelname)s %(name)s - %(message)s")),
        file=log_file,
    )

    return AppConfig(
        app=app,
        storage=storage,
        temporal=temporal,
        feed=feed,
        recorder=recorder,
        analytics=analytics,
        logging=logging_settings,
    )
