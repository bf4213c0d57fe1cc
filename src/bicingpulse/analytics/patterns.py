from __future__ import annotations

from dataclasses import asdict
from typing import Optional, Sequence

import pandas as pd

from bicingpulse.config.models import PatternMetric
from bicingpulse.schemas.core import PatternBucket, PatternSummary, StationHistoryPoint


MINUTES_PER_DAY = 24 * 60
PATTERN_METRICS: tuple[PatternMetric, ...] = ("free_bikes", "empty_slots", "electric_bikes", "mechanical")


def bucket_label(index: int, bucket_minutes: int) -> str:
    start = index * bucket_minutes
    return f"{start // 60:02d}:{start % 60:02d}"


def history_frame(history: Sequence[StationHistoryPoint], *, timezone: str = "UTC") -> pd.DataFrame:
    """
    Convert history points into a DataFrame sorted by time, with a tz-aware `local_ts` column.
    """

    df = pd.DataFrame([asdict(p) for p in history])
    if df.empty:
        return df
    df = df.sort_values("timestamp", kind="stable").reset_index(drop=True)
    df["local_ts"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True).dt.tz_convert(timezone)
    return df


def _bucket_stats(df: pd.DataFrame, *, metric: str, bucket_minutes: int) -> list[PatternBucket]:
    minute_of_day = df["local_ts"].dt.hour * 60 + df["local_ts"].dt.minute
    keyed = df.assign(_bucket=(minute_of_day // bucket_minutes).astype(int))
    stats = (
        keyed.groupby("_bucket")[metric]
        .agg(["count", "mean", "min", "max"])
        .reindex(range(MINUTES_PER_DAY // bucket_minutes))
    )

    buckets: list[PatternBucket] = []
    for index, row in stats.iterrows():
        count = 0 if pd.isna(row["count"]) else int(row["count"])
        # Empty slots report zeros; only `sample_count` tells them apart from observed zeros.
        buckets.append(
            PatternBucket(
                label=bucket_label(int(index), bucket_minutes),
                sample_count=count,
                avg_bikes=round(float(row["mean"]), 1) if count else 0.0,
                min_bikes=int(row["min"]) if count else 0,
                max_bikes=int(row["max"]) if count else 0,
            )
        )
    return buckets


def hourly_flow(df: pd.DataFrame, *, metric: str = "free_bikes") -> float:
    """
    Sum of absolute changes between consecutive points, expressed per hour.

    Equivalent to the mean move per sampling interval scaled by the average cadence.
    """

    if len(df) < 2:
        return 0.0
    span_ms = float(df["timestamp"].iloc[-1] - df["timestamp"].iloc[0])
    if span_ms <= 0:
        return 0.0
    moves = float(df[metric].diff().abs().sum())
    return round(moves / (span_ms / 3_600_000.0), 2)


def aggregate_patterns(
    history: Sequence[StationHistoryPoint],
    *,
    bucket_minutes: int = 30,
    metric: PatternMetric = "free_bikes",
    reliable_threshold: int = 2,
    timezone: str = "UTC",
) -> Optional[PatternSummary]:
    """
    Aggregate one station's series into day-agnostic time-of-day buckets.

    Returns `None` when fewer than two points exist. The summary scalars
    (reliability, empty probability, flow, volatility) are computed on `metric`;
    `max_capacity_observed` is always `free_bikes + empty_slots`.
    """

    if metric not in PATTERN_METRICS:
        raise ValueError(f"Unsupported pattern metric: {metric}")
    if bucket_minutes <= 0 or MINUTES_PER_DAY % bucket_minutes != 0:
        raise ValueError(f"bucket_minutes must divide a day: {bucket_minutes}")
    if len(history) < 2:
        return None

    df = history_frame(history, timezone=timezone)
    values = df[metric].astype(float)
    buckets = _bucket_stats(df, metric=metric, bucket_minutes=bucket_minutes)

    sampled = [b for b in buckets if b.sample_count > 0]
    best = max(sampled, key=lambda b: b.avg_bikes)

    return PatternSummary(
        buckets=tuple(buckets),
        reliability=float((values > reliable_threshold).mean()),
        empty_probability=float((values == 0).mean()),
        avg_electric=float(df["electric_bikes"].mean()),
        max_capacity_observed=int((df["free_bikes"] + df["empty_slots"]).max()),
        best_bucket=best,
        hourly_flow=hourly_flow(df, metric=metric),
        volatility=float(values.std(ddof=0)),
        total_points=int(len(df)),
    )
