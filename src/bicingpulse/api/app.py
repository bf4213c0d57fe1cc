from __future__ import annotations

# `asynccontextmanager` builds the lifespan hook that closes the history store on shutdown.
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

# `FastAPI` exposes the history store and analytics as HTTP endpoints for display clients.
from fastapi import FastAPI

from bicingpulse.api.routes import router
from bicingpulse.api.service import HistoryService
from bicingpulse.config.models import AppConfig
from bicingpulse.repository.snapshots import SnapshotStore
from bicingpulse.utils.logging import configure_logging


# Keeping app construction in a function (instead of module-level globals) improves testability and reuse.
def create_app(config: AppConfig, *, store: Optional[SnapshotStore] = None) -> FastAPI:
    # Pitfall: `logging.basicConfig(...)` is a no-op if handlers already exist (common in tests),
    # so treat this as best-effort for local/dev.
    configure_logging(config.logging)

    # The service opens the store once here; it is shared by every request.
    service = HistoryService(config, store=store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        service.close()

    app = FastAPI(title=config.app.name, lifespan=lifespan)
    # Store the service on `app.state` so route handlers can access it without global variables.
    app.state.history_service = service
    app.include_router(router)
    return app
