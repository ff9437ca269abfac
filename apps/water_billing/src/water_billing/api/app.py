"""FastAPI app exposing read-only batch inspection endpoints."""

from __future__ import annotations

from fastapi import FastAPI

from water_billing.api.error_handlers import register_error_handlers
from water_billing.api.routes import health, v1_router

API_TITLE = "Water Billing Batches"


def create_app() -> FastAPI:
    """Build the API: health probes at the root, batch reads under ``/v1``."""

    app = FastAPI(
        title=API_TITLE,
        version="0.1.0",
        description="Inspect billing batches and the transactions they produced.",
    )
    register_error_handlers(app)
    app.include_router(health.router)
    app.include_router(v1_router)
    return app


app = create_app()
