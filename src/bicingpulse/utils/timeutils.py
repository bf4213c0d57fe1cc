from __future__ import annotations

from datetime import datetime, timezone
import time
from zoneinfo import ZoneInfo


def now_ms() -> int:
    return int(time.time() * 1000)


def to_local(epoch_ms: int, tz: str) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=ZoneInfo(tz))


def ms_to_iso_z(epoch_ms: int) -> str:
    # "YYYY-MM-DDTHH:MM:SS.mmmZ", the format the seed tables were first exported in.
    dt = datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(epoch_ms) % 1000:03d}Z"


def format_local(epoch_ms: int, tz: str) -> str:
    return to_local(epoch_ms, tz).strftime("%d/%m/%Y, %H:%M:%S")
