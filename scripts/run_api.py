# Use postponed evaluation of annotations so type hints don't require importing types at runtime.
from __future__ import annotations

# Allow running scripts without requiring an editable install (`pip install -e .`).
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

# We import `uvicorn` to run our FastAPI application as an ASGI server during local development.
import uvicorn
import os

# We use a factory function so the FastAPI app can be created with a typed config (no global state).
from bicingpulse.api.app import create_app

# Settings come from `config/default.json` or environment variables without modifying code.
from bicingpulse.config.loader import load_config


# Keep all side effects (config IO, store opening, server startup) in one place so the module is import-safe.
def main() -> None:
    config = load_config()

    # Build the FastAPI app; this opens the history store once for the process lifetime.
    app = create_app(config)

    host = os.getenv("BICINGPULSE_HOST", "127.0.0.1")
    port = int(os.getenv("BICINGPULSE_PORT", "8000"))
    timeout_keep_alive = int(os.getenv("BICINGPULSE_TIMEOUT_KEEP_ALIVE", "75"))

    uvicorn.run(app, host=host, port=port, timeout_keep_alive=timeout_keep_alive)


if __name__ == "__main__":
    main()
