"""API v1 router registration."""

from fastapi import APIRouter

from water_billing.api.routes import batches

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(batches.router)
