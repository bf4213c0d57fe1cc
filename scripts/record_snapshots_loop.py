from __future__ import annotations

# `argparse` provides a stable CLI interface for the long-running recorder (cron/daemon friendly).
import argparse
# `logging` is used for continuous progress reporting and error visibility in long-running loops.
import logging
# `random` is used for jitter to avoid synchronized polling across machines.
import random
# `time.sleep` is used for simple scheduling between polling iterations.
import time
# We use timezone-aware UTC timestamps for consistent stop conditions.
from datetime import datetime, timedelta, timezone
# Allow running scripts without requiring an editable install (`pip install -e .`).
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

# Config is loaded at runtime so the feed URL, interval and DB path can change without code changes.
from bicingpulse.config.loader import load_config
# The live feed is an external collaborator; the history store never fetches anything itself.
from bicingpulse.ingestion.citybikes import CityBikesClient, FeedRequestError
# The recorder enforces "at most once per interval" and persists its last-saved time across restarts.
from bicingpulse.ingestion.recorder import SnapshotRecorder
from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.utils.logging import configure_logging


logger = logging.getLogger(__name__)


# Keep all side effects (config IO, network calls, DB writes) inside `main()` so the module is import-safe.
def main() -> None:
    parser = argparse.ArgumentParser(
        description=(
            "Poll the live bike-share feed and append a history snapshot once per recording interval. "
            "Stop with Ctrl+C."
        )
    )
    # Check interval controls how often we poll the feed; snapshots are still gated by the recording interval.
    parser.add_argument("--check-seconds", type=int, default=None, help="Polling interval (overrides config).")
    parser.add_argument("--duration-seconds", type=int, default=None, help="Stop after N seconds.")
    parser.add_argument("--max-iterations", type=int, default=None, help="Stop after N loops.")
    parser.add_argument("--jitter-seconds", type=float, default=0.0, help="Add random jitter to sleep.")
    parser.add_argument("--backoff-seconds", type=int, default=10, help="Sleep on failure (exponential).")
    parser.add_argument("--max-backoff-seconds", type=int, default=300, help="Max backoff on failure.")
    # `--force` records on the first iteration regardless of the persisted last-saved time ("capture now").
    parser.add_argument("--force", action="store_true", help="Capture immediately on the first iteration.")
    args = parser.parse_args()

    config = load_config()
    configure_logging(config.logging)

    check_s = max(int(args.check_seconds or config.recorder.check_interval_seconds), 1)
    jitter_s = max(float(args.jitter_seconds), 0.0)

    stop_at = None
    if args.duration_seconds is not None:
        stop_at = datetime.now(timezone.utc) + timedelta(seconds=int(args.duration_seconds))

    backoff_s = max(int(args.backoff_seconds), 1)
    current_backoff_s = backoff_s

    # Context managers close the DB connection and HTTP session even if the loop is interrupted.
    with SnapshotStore(config.storage.db_path, timezone=config.temporal.timezone) as store, \
            CityBikesClient.from_settings(config.feed) as feed:
        recorder = SnapshotRecorder.from_settings(store, config.recorder)
        force_next = bool(args.force)
        i = 0
        while True:
            if stop_at is not None and datetime.now(timezone.utc) >= stop_at:
                logger.info("Stopping: duration reached.")
                break
            if args.max_iterations is not None and i >= int(args.max_iterations):
                logger.info("Stopping: max iterations reached.")
                break
            i += 1

            try:
                stations = feed.fetch_stations()
            except FeedRequestError:
                # Log full stack trace so operators can debug transient network/API failures.
                logger.exception("Failed to fetch live stations; backing off %ss.", current_backoff_s)
                time.sleep(current_backoff_s)
                current_backoff_s = min(current_backoff_s * 2, int(args.max_backoff_seconds))
                continue
            current_backoff_s = backoff_s

            if force_next:
                saved = recorder.force_record(stations)
                force_next = False
            else:
                saved = recorder.maybe_record(stations)
            if saved:
                logger.info("Recorded snapshot with %s stations (total=%s)", len(stations), store.count())

            sleep_s = float(check_s)
            if jitter_s:
                sleep_s += random.random() * jitter_s
            time.sleep(sleep_s)


if __name__ == "__main__":
    # Wrap `main()` so Ctrl+C produces a clean log line rather than a noisy stack trace.
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Stopped by user (KeyboardInterrupt).")
