from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

import numpy as np

from bicingpulse.config.models import ForecastSettings
from bicingpulse.schemas.core import PredictionPoint, StationHistoryPoint
from bicingpulse.utils.timeutils import now_ms as _now_ms
from bicingpulse.utils.timeutils import to_local


logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_weekend(weekday: int) -> bool:
    # Python weekdays: Monday=0 ... Saturday=5, Sunday=6.
    return weekday >= 5


def predict_availability(
    station_id: str,
    current_free_bikes: int,
    history: Sequence[StationHistoryPoint],
    now_ms: Optional[int] = None,
    *,
    settings: Optional[ForecastSettings] = None,
    timezone: str = "UTC",
) -> list[PredictionPoint]:
    """
    Forecast free bikes for one station over the next few hours.

    For every offset (0, 15, ..., 180 minutes):

    1. Collect historical readings on the same local weekday within +/- 30 minutes
       of the target time of day (no wrap-around across midnight).
    2. With fewer than 3 such readings, fall back to the same weekend/weekday class.
    3. Blend the live value with the historical mean; the historical weight grows
       linearly and reaches 1 at 90 minutes.
    4. The band is the population std-dev of the samples, inflated by 50% per hour
       of horizon and floored at 1 bike. Offset 0 is the live value with no band.

    Returns `[]` when the station has fewer than 5 historical points.
    """

    cfg = settings or ForecastSettings()
    if len(history) < cfg.min_history_points or cfg.step_minutes <= 0:
        logger.debug("Not enough history to forecast station %s (%s points)", station_id, len(history))
        return []

    now = _now_ms() if now_ms is None else int(now_ms)
    current = float(current_free_bikes)

    samples: list[tuple[int, int, int]] = []
    for point in history:
        local = to_local(point.timestamp, timezone)
        samples.append((local.weekday(), local.hour * 60 + local.minute, point.free_bikes))

    predictions: list[PredictionPoint] = []
    for offset in range(0, cfg.horizon_minutes + 1, cfg.step_minutes):
        target = to_local(now + offset * 60_000, timezone)
        target_dow = target.weekday()
        target_minute = target.hour * 60 + target.minute

        similar = [
            bikes
            for dow, minute, bikes in samples
            if dow == target_dow and abs(minute - target_minute) <= cfg.window_minutes
        ]
        if len(similar) < cfg.min_similar_samples:
            weekend = _is_weekend(target_dow)
            similar = [
                bikes
                for dow, minute, bikes in samples
                if _is_weekend(dow) == weekend and abs(minute - target_minute) <= cfg.window_minutes
            ]

        if offset == 0:
            # The present is ground truth.
            projected = current
            final_std = 0.0
        else:
            if similar:
                values = np.asarray(similar, dtype=float)
                mean = float(values.mean())
                std_dev = float(values.std())
                historical_weight = min(offset / cfg.full_decay_minutes, 1.0)
                projected = current * (1.0 - historical_weight) + mean * historical_weight
            else:
                projected = current
                std_dev = cfg.fallback_std_dev
            final_std = max(cfg.min_std_dev, std_dev * (1.0 + (offset / 60.0) * cfg.inflation_per_hour))

        predictions.append(
            PredictionPoint(
                offset_minutes=offset,
                projected_bikes=_round_half_up(projected),
                is_projected=offset > 0,
                confidence_low=max(0, _round_half_up(projected - final_std)),
                confidence_high=_round_half_up(projected + final_std),
            )
        )

    return predictions
