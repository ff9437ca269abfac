"""SQLAlchemy base metadata and model registration utilities."""

import enum
from importlib import import_module

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for ORM models."""


def import_orm_models() -> None:
    """Import ORM models so metadata is fully populated."""

    modules = (
        "water_billing.db.models.region",
        "water_billing.db.models.licence",
        "water_billing.db.models.charge_version",
        "water_billing.db.models.licence_agreement",
        "water_billing.db.models.return_requirement",
        "water_billing.db.models.billing_volume",
        "water_billing.db.models.batch",
        "water_billing.db.models.charge_version_year",
        "water_billing.db.models.invoice",
        "water_billing.db.models.transaction",
        "water_billing.db.models.billing_job",
    )
    for module_name in modules:
        import_module(module_name)


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (not member names) in database enum types."""

    return [member.value for member in enum_cls]
