"""API dependency providers."""

from __future__ import annotations

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from water_billing.core.settings import Settings, get_settings
from water_billing.db.session import get_db_session
from water_billing.infrastructure.charge_module.client import ChargeModuleClient
from water_billing.services.batch_service import BatchService, build_batch_service


def get_charge_module_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[ChargeModuleClient, None, None]:
    """Yield a Charge Module client closed at the end of the request."""

    with ChargeModuleClient.from_settings(settings) as client:
        yield client


def get_batch_service(
    session: Annotated[Session, Depends(get_db_session)],
    charge_module: Annotated[ChargeModuleClient, Depends(get_charge_module_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> BatchService:
    """Build batch service with per-request session."""

    return build_batch_service(session, charge_module=charge_module, settings=settings)
