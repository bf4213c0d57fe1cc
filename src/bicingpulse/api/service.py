from __future__ import annotations

# `asdict` flattens our frozen dataclasses into dict payloads for the HTTP layer.
from dataclasses import asdict
# `Any` is used for the "dict payload" boundary between service and routes.
from typing import Any, Iterable, Optional

# Analytics are pure functions; the service only feeds them stored history.
from bicingpulse.analytics.network import network_activity, network_summary
from bicingpulse.analytics.patterns import aggregate_patterns
from bicingpulse.analytics.prediction import predict_availability
# `AppConfig` is the single source of truth for timezone and analytics defaults.
from bicingpulse.config.models import AppConfig, PatternMetric
# The recorder owns the "capture now" path so manual captures also update its saved cadence.
from bicingpulse.ingestion.recorder import SnapshotRecorder
# The history store is the only stateful collaborator.
from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.schemas.core import PatternBucket, StationRecord


def _bucket_payload(bucket: PatternBucket) -> dict[str, Any]:
    return {
        "label": bucket.label,
        "sample_count": bucket.sample_count,
        "avg_bikes": bucket.avg_bikes,
        "min": bucket.min_bikes,
        "max": bucket.max_bikes,
        "range": list(bucket.range),
    }


# `HistoryService` is a thin application layer between HTTP routes and the history store.
# Routes stay focused on HTTP concerns; the service decides defaults (timezone, analytics settings).
class HistoryService:
    def __init__(self, config: AppConfig, *, store: Optional[SnapshotStore] = None) -> None:
        self._config = config
        # The store is opened once here and closed by the app on shutdown.
        self._store = store or SnapshotStore(config.storage.db_path, timezone=config.temporal.timezone)
        self._store.open()
        self._recorder = SnapshotRecorder.from_settings(self._store, config.recorder)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> SnapshotStore:
        return self._store

    def close(self) -> None:
        self._store.close()

    def count(self) -> int:
        return self._store.count()

    def recent(self, *, limit: int = 50) -> list[dict[str, Any]]:
        return [asdict(s) for s in self._store.recent(limit)]

    def station_history(self, station_id: str) -> list[dict[str, Any]]:
        return [asdict(p) for p in self._store.station_series(station_id)]

    def station_patterns(
        self,
        station_id: str,
        *,
        bucket_minutes: Optional[int] = None,
        metric: Optional[PatternMetric] = None,
    ) -> Optional[dict[str, Any]]:
        cfg = self._config.analytics.patterns
        bucket_minutes = bucket_minutes or cfg.bucket_minutes
        metric = metric or cfg.metric
        summary = aggregate_patterns(
            self._store.station_series(station_id),
            bucket_minutes=bucket_minutes,
            metric=metric,
            reliable_threshold=cfg.reliable_threshold,
            timezone=self._config.temporal.timezone,
        )
        # `None` means "not enough history", which the route turns into a 404.
        if summary is None:
            return None
        return {
            "station_id": station_id,
            "bucket_minutes": bucket_minutes,
            "metric": metric,
            "buckets": [_bucket_payload(b) for b in summary.buckets],
            "reliability": summary.reliability,
            "empty_probability": summary.empty_probability,
            "avg_electric": summary.avg_electric,
            "max_capacity_observed": summary.max_capacity_observed,
            "best_bucket": _bucket_payload(summary.best_bucket),
            "hourly_flow": summary.hourly_flow,
            "volatility": summary.volatility,
            "total_points": summary.total_points,
        }

    def station_forecast(
        self,
        station_id: str,
        *,
        current_free_bikes: Optional[int] = None,
        now_ms: Optional[int] = None,
    ) -> Optional[dict[str, Any]]:
        # Prefer the live reading supplied by the caller; fall back to the latest stored one.
        source = "live"
        if current_free_bikes is None:
            latest = self._store.latest_reading(station_id)
            if latest is None:
                return None
            current_free_bikes = latest.free_bikes
            source = "history"

        history = self._store.station_series(station_id)
        points = predict_availability(
            station_id,
            int(current_free_bikes),
            history,
            now_ms,
            settings=self._config.analytics.forecast,
            timezone=self._config.temporal.timezone,
        )
        return {
            "station_id": station_id,
            "current_free_bikes": int(current_free_bikes),
            "points": [asdict(p) for p in points],
            "meta": {
                "current_source": source,
                "history_points": len(history),
                # An empty curve means "cannot forecast yet", not a zero forecast.
                "insufficient_history": not points,
            },
        }

    def network_activity(self, *, limit: int = 150) -> dict[str, Any]:
        snapshots = self._store.recent(limit)
        hours = network_activity(snapshots, timezone=self._config.temporal.timezone)
        return {"snapshots": len(snapshots), "hours": [asdict(h) for h in hours]}

    def network_summary(self) -> Optional[dict[str, Any]]:
        # Summarise the most recent capture; `None` when nothing has been recorded yet.
        latest = self._store.recent(1)
        if not latest:
            return None
        snapshot = latest[0]
        return {"captured_at_ms": snapshot.captured_at_ms, **asdict(network_summary(snapshot.stations))}

    def capture(self, stations: Iterable[StationRecord]) -> bool:
        return self._recorder.force_record(list(stations))

    def seed_from_table(self, source_text: str) -> bool:
        return self._store.seed_from_table(source_text)

    def export_table(self) -> str:
        return self._store.export_table()

    def clear(self) -> bool:
        return self._store.clear()
