from __future__ import annotations

import json
import logging
from pathlib import Path
import tempfile
from typing import Optional, Sequence

from bicingpulse.config.models import RecorderSettings
from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.schemas.core import StationRecord
from bicingpulse.utils.timeutils import now_ms


logger = logging.getLogger(__name__)


class SnapshotRecorder:
    """
    Append network snapshots to the history store at most once per interval.

    The last-saved time is persisted to a small JSON file so the cadence survives
    restarts. Saving slightly more often than intended only produces a duplicate
    snapshot, which the store tolerates.
    """

    def __init__(self, store: SnapshotStore, *, interval_seconds: int, state_path: Path) -> None:
        self._store = store
        self._interval_ms = max(int(interval_seconds), 1) * 1000
        self._state_path = Path(state_path)
        self._last_saved_ms: Optional[int] = self._load_state()

    @classmethod
    def from_settings(cls, store: SnapshotStore, settings: RecorderSettings) -> "SnapshotRecorder":
        return cls(store, interval_seconds=settings.interval_seconds, state_path=settings.state_path)

    @property
    def last_saved_ms(self) -> Optional[int]:
        return self._last_saved_ms

    def _load_state(self) -> Optional[int]:
        if not self._state_path.exists():
            return None
        try:
            obj = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable recorder state at %s", self._state_path)
            return None
        value = obj.get("last_saved_ms") if isinstance(obj, dict) else None
        return int(value) if isinstance(value, (int, float)) else None

    def _save_state(self, saved_ms: int) -> None:
        serialized = json.dumps({"last_saved_ms": int(saved_ms)})
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", delete=False, encoding="utf-8", dir=self._state_path.parent
            ) as tmp:
                tmp.write(serialized)
                tmp_path = Path(tmp.name)
            tmp_path.replace(self._state_path)
        except OSError:
            logger.exception("Could not persist recorder state to %s", self._state_path)

    def is_due(self, now: Optional[int] = None) -> bool:
        if self._last_saved_ms is None:
            return True
        current = now_ms() if now is None else int(now)
        return (current - self._last_saved_ms) > self._interval_ms

    def maybe_record(self, stations: Sequence[StationRecord], now: Optional[int] = None) -> bool:
        if not stations:
            return False
        current = now_ms() if now is None else int(now)
        if not self.is_due(current):
            return False
        self._record(stations, current)
        return True

    def force_record(self, stations: Sequence[StationRecord], now: Optional[int] = None) -> bool:
        """Manual "capture now"; ignores the interval but still skips empty readings."""

        if not stations:
            return False
        self._record(stations, now_ms() if now is None else int(now))
        return True

    def _record(self, stations: Sequence[StationRecord], captured_at_ms: int) -> None:
        self._store.append(stations, captured_at_ms)
        self._last_saved_ms = captured_at_ms
        self._save_state(captured_at_ms)
