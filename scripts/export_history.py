from __future__ import annotations

import argparse
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from bicingpulse.config.loader import load_config
from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.utils.logging import configure_logging


def main() -> None:
    p = argparse.ArgumentParser(description="Export the history store as a re-importable seed table.")
    p.add_argument("--out", default="data/seed_data.csv")
    p.add_argument("--db-path", default=None, help="Override storage.db_path from config.")
    args = p.parse_args()

    config = load_config()
    configure_logging(config.logging)

    db_path = Path(args.db_path) if args.db_path else config.storage.db_path
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with SnapshotStore(db_path, timezone=config.temporal.timezone) as store:
        out_path.write_text(store.export_table(), encoding="utf-8")
        count = store.count()

    print(f"Wrote {out_path} ({count} snapshots)")


if __name__ == "__main__":
    main()
