"""
Love Story API: accounts, shared memories and anniversaries, and the
reminder triggers (manual, test window and the cron-driven daily run).

Run with any ASGI server, e.g. `uvicorn lovestory.app:app`. The daily
reminder can instead be driven by `scripts/reminder_daemon.py`.
"""

from __future__ import annotations

from fastapi import FastAPI

from lovestory.config import get_settings
from lovestory.routes import router


def create_app() -> FastAPI:
    """Build the API with every route mounted under `api_prefix`."""
    settings = get_settings()
    app = FastAPI(
        title="Love Story API",
        version="0.1.0",
        description="Couples' journal with e-mailed anniversary reminders",
    )
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
