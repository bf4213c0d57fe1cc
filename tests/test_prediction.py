from __future__ import annotations

from datetime import datetime, timedelta, timezone

from bicingpulse.analytics.prediction import predict_availability
from bicingpulse.config.models import ForecastSettings
from bicingpulse.schemas.core import StationHistoryPoint


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _point(dt: datetime, free_bikes: int) -> StationHistoryPoint:
    return StationHistoryPoint(
        timestamp=_ms(dt),
        free_bikes=free_bikes,
        empty_slots=20 - free_bikes,
        electric_bikes=0,
        mechanical=free_bikes,
        status="online",
    )


# 2024-01-08 is a Monday.
NOW = datetime(2024, 1, 8, 8, 0, tzinfo=timezone.utc)
LAST_MONDAY = NOW - timedelta(days=7)


def _monday_morning_history(value: int = 10) -> list[StationHistoryPoint]:
    return [_point(LAST_MONDAY + timedelta(minutes=m), value) for m in (0, 30, 60, 90, 120, 150)]


def test_forecast_blends_live_value_towards_history() -> None:
    points = predict_availability("S1", 2, _monday_morning_history(), _ms(NOW))

    assert [p.offset_minutes for p in points] == list(range(0, 181, 15))
    now_point = points[0]
    assert now_point.projected_bikes == 2
    assert now_point.is_projected is False
    assert now_point.confidence_low == now_point.confidence_high == 2

    by_offset = {p.offset_minutes: p for p in points}
    # Halfway to the full-history horizon: 2 * 0.5 + 10 * 0.5.
    assert by_offset[45].projected_bikes == 6
    # From 90 minutes on, the live value has no weight.
    assert by_offset[90].projected_bikes == 10
    assert by_offset[90].is_projected is True
    # Identical samples have no spread; the band falls back to the 1-bike floor.
    assert (by_offset[90].confidence_low, by_offset[90].confidence_high) == (9, 11)


def test_forecast_requires_minimum_history() -> None:
    history = _monday_morning_history()[:3]

    assert predict_availability("S1", 2, history, _ms(NOW)) == []


def test_forecast_falls_back_to_weekday_class() -> None:
    tuesday = LAST_MONDAY + timedelta(days=1)
    saturday = LAST_MONDAY + timedelta(days=5)
    history = [_point(tuesday.replace(hour=9, minute=30), 8) for _ in range(5)]
    # Weekend readings must not leak into a weekday forecast.
    history += [_point(saturday.replace(hour=9, minute=30), 20) for _ in range(3)]

    points = predict_availability("S1", 0, history, _ms(NOW))

    by_offset = {p.offset_minutes: p for p in points}
    assert by_offset[90].projected_bikes == 8


def test_forecast_without_similar_samples_keeps_live_value() -> None:
    history = [_point(LAST_MONDAY.replace(hour=20), 15) for _ in range(5)]

    points = predict_availability("S1", 4, history, _ms(NOW))

    by_offset = {p.offset_minutes: p for p in points}
    # Fallback std-dev of 2 inflated by 50% after one hour.
    assert by_offset[60].projected_bikes == 4
    assert (by_offset[60].confidence_low, by_offset[60].confidence_high) == (1, 7)


def test_confidence_band_inflates_with_horizon_and_rounds_half_up() -> None:
    history = [
        _point(LAST_MONDAY.replace(hour=9, minute=30), 8),
        _point((LAST_MONDAY - timedelta(days=7)).replace(hour=9, minute=30), 12),
        _point((LAST_MONDAY - timedelta(days=14)).replace(hour=9, minute=30), 8),
        _point((LAST_MONDAY - timedelta(days=21)).replace(hour=9, minute=30), 12),
        _point(LAST_MONDAY.replace(hour=20), 0),
    ]

    points = predict_availability("S1", 0, history, _ms(NOW))

    at_90 = {p.offset_minutes: p for p in points}[90]
    # mean 10, std 2, inflated by 1.75 -> 3.5
    assert at_90.projected_bikes == 10
    assert (at_90.confidence_low, at_90.confidence_high) == (7, 14)


def test_confidence_low_never_negative() -> None:
    history = [_point(LAST_MONDAY.replace(hour=20), 15) for _ in range(5)]

    points = predict_availability("S1", 0, history, _ms(NOW))

    assert all(p.confidence_low >= 0 for p in points)
    at_15 = {p.offset_minutes: p for p in points}[15]
    assert (at_15.confidence_low, at_15.confidence_high) == (0, 2)


def test_forecast_honours_custom_horizon() -> None:
    settings = ForecastSettings(horizon_minutes=60, step_minutes=30)

    points = predict_availability("S1", 2, _monday_morning_history(), _ms(NOW), settings=settings)

    assert [p.offset_minutes for p in points] == [0, 30, 60]


def test_similarity_window_does_not_wrap_across_midnight() -> None:
    # Previous Tuesdays at 23:50; the forecast starts Monday 23:40.
    tuesday_late = (LAST_MONDAY + timedelta(days=1)).replace(hour=23, minute=50)
    history = [_point(tuesday_late - timedelta(days=7 * i), 10) for i in range(5)]
    now = NOW.replace(hour=23, minute=40)

    points = predict_availability("S1", 0, history, _ms(now))

    by_offset = {p.offset_minutes: p for p in points}
    # 23:55 (Monday): the weekday fallback reaches 23:50 readings; 0 * 5/6 + 10 * 1/6.
    assert by_offset[15].projected_bikes == 2
    # 00:10 (Tuesday): 23:50 is 20 minutes away on the clock but outside the window.
    assert by_offset[30].projected_bikes == 0
    assert (by_offset[30].confidence_low, by_offset[30].confidence_high) == (0, 3)
