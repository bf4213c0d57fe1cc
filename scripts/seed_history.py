from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from bicingpulse.config.loader import load_config
from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def main() -> int:
    p = argparse.ArgumentParser(
        description="Seed an empty history store from a semicolon-delimited table (skipped if history exists)."
    )
    p.add_argument("table", help="Path to the seed table (e.g. data/seed_data.csv).")
    p.add_argument("--db-path", default=None, help="Override storage.db_path from config.")
    p.add_argument("--replace", action="store_true", help="Clear existing history before seeding.")
    args = p.parse_args()

    config = load_config()
    configure_logging(config.logging)

    table_path = Path(args.table)
    if not table_path.exists():
        logger.error("Seed table not found: %s", table_path)
        return 2

    db_path = Path(args.db_path) if args.db_path else config.storage.db_path
    with SnapshotStore(db_path, timezone=config.temporal.timezone) as store:
        if args.replace:
            store.clear()
        seeded = store.seed_from_table(table_path.read_text(encoding="utf-8-sig"))
        logger.info("Seeded=%s snapshots=%s db=%s", seeded, store.count(), db_path)
    return 0 if seeded else 1


if __name__ == "__main__":
    raise SystemExit(main())
