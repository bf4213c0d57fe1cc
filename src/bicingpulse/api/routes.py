from __future__ import annotations

# We use `Literal` to restrict the pattern metric to a small, documented set of values.
# We use `Optional[...]` for parameters that can be omitted so the service falls back to config defaults.
from typing import Literal, Optional

# FastAPI primitives:
# - `APIRouter` groups endpoints so the app factory can include them cleanly.
# - `Depends` injects the service stored on `app.state` (no global variables).
# - `HTTPException` turns "no data" / bad input into proper status codes.
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile

from bicingpulse.api.schemas import (
    ActionOut,
    AppConfigOut,
    CaptureIn,
    CountOut,
    NetworkActivityOut,
    NetworkSummaryOut,
    SnapshotOut,
    StationForecastOut,
    StationHistoryOut,
    StationPatternsOut,
)
# Dataflow: HTTP request -> route handler -> HistoryService -> store/analytics -> dict -> Pydantic -> JSON.
from bicingpulse.api.service import HistoryService
from bicingpulse.schemas.core import StationRecord


router = APIRouter()


def get_service(request: Request) -> HistoryService:
    return request.app.state.history_service  # type: ignore[attr-defined]


@router.get("/config", response_model=AppConfigOut)
def get_config(service: HistoryService = Depends(get_service)) -> AppConfigOut:
    cfg = service.config
    forecast = cfg.analytics.forecast
    patterns = cfg.analytics.patterns
    return AppConfigOut(
        app_name=cfg.app.name,
        timezone=cfg.temporal.timezone,
        record_interval_seconds=cfg.recorder.interval_seconds,
        forecast={
            "horizon_minutes": forecast.horizon_minutes,
            "step_minutes": forecast.step_minutes,
            "window_minutes": forecast.window_minutes,
            "min_history_points": forecast.min_history_points,
        },
        patterns={
            "bucket_minutes": patterns.bucket_minutes,
            "metric": patterns.metric,
            "reliable_threshold": patterns.reliable_threshold,
        },
    )


@router.get("/history/count", response_model=CountOut)
def history_count(service: HistoryService = Depends(get_service)) -> CountOut:
    return CountOut(count=service.count())


@router.get("/history/recent", response_model=list[SnapshotOut])
def history_recent(
    limit: int = Query(50, ge=1, le=1000),
    service: HistoryService = Depends(get_service),
) -> list[SnapshotOut]:
    return [SnapshotOut(**s) for s in service.recent(limit=limit)]


@router.get("/history/export")
def history_export(service: HistoryService = Depends(get_service)) -> Response:
    # Same semicolon table the seed endpoint accepts, so the download can be re-imported as-is.
    body = service.export_table()
    headers = {"Content-Disposition": 'attachment; filename="seed_data.csv"'}
    return Response(content=body, media_type="text/csv; charset=utf-8", headers=headers)


@router.post("/history/seed", response_model=ActionOut)
async def history_seed(
    file: UploadFile = File(...),
    service: HistoryService = Depends(get_service),
) -> ActionOut:
    data = await file.read()
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Seed file is not UTF-8: {e}")
    seeded = service.seed_from_table(text)
    # `False` covers both "store already has history" and "file had no usable rows".
    message = "Seeded history" if seeded else "Seed skipped (store not empty or no valid rows)"
    return ActionOut(ok=seeded, message=message, count=service.count())


@router.delete("/history", response_model=ActionOut)
def history_clear(service: HistoryService = Depends(get_service)) -> ActionOut:
    cleared = service.clear()
    return ActionOut(ok=cleared, message="History cleared" if cleared else "Clear failed", count=service.count())


@router.post("/history/capture", response_model=ActionOut)
def history_capture(body: CaptureIn, service: HistoryService = Depends(get_service)) -> ActionOut:
    stations = [StationRecord.from_feed(s.model_dump()) for s in body.stations]
    if not stations:
        raise HTTPException(status_code=400, detail="No station readings supplied")
    saved = service.capture(stations)
    return ActionOut(ok=saved, message="Snapshot captured" if saved else "Nothing captured", count=service.count())


@router.get("/station/{station_id}/history", response_model=StationHistoryOut)
def station_history(station_id: str, service: HistoryService = Depends(get_service)) -> StationHistoryOut:
    return StationHistoryOut(station_id=station_id, points=service.station_history(station_id))


@router.get("/station/{station_id}/patterns", response_model=StationPatternsOut)
def station_patterns(
    station_id: str,
    bucket_minutes: Optional[int] = Query(None, ge=1, le=1440),
    metric: Optional[Literal["free_bikes", "empty_slots", "electric_bikes", "mechanical"]] = None,
    service: HistoryService = Depends(get_service),
) -> StationPatternsOut:
    try:
        payload = service.station_patterns(station_id, bucket_minutes=bucket_minutes, metric=metric)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if payload is None:
        raise HTTPException(status_code=404, detail="Not enough history for this station")
    return StationPatternsOut(**payload)


@router.get("/station/{station_id}/forecast", response_model=StationForecastOut)
def station_forecast(
    station_id: str,
    current_free_bikes: Optional[int] = Query(None, ge=0),
    service: HistoryService = Depends(get_service),
) -> StationForecastOut:
    payload = service.station_forecast(station_id, current_free_bikes=current_free_bikes)
    if payload is None:
        raise HTTPException(status_code=404, detail="Station not found in history")
    return StationForecastOut(**payload)


@router.get("/network/activity", response_model=NetworkActivityOut)
def network_activity(
    limit: int = Query(150, ge=2, le=5000),
    service: HistoryService = Depends(get_service),
) -> NetworkActivityOut:
    return NetworkActivityOut(**service.network_activity(limit=limit))


@router.get("/network/summary", response_model=NetworkSummaryOut)
def network_summary(service: HistoryService = Depends(get_service)) -> NetworkSummaryOut:
    payload = service.network_summary()
    if payload is None:
        raise HTTPException(status_code=404, detail="No snapshots recorded yet")
    return NetworkSummaryOut(**payload)
