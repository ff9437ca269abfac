"""Database rows shared by pipeline and API tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from water_billing.db.models.charge_version import (
    ChargeElement,
    ChargeElementLoss,
    ChargeElementSeason,
    ChargeElementSource,
    ChargeVersion,
    ChargeVersionStatus,
)
from water_billing.db.models.licence import Licence
from water_billing.db.models.region import Region


@dataclass(slots=True, frozen=True)
class SeededLicence:
    region_id: UUID
    licence_id: UUID
    licence_number: str
    charge_version_id: UUID
    charge_element_id: UUID


def seed_licence(
    session: Session,
    *,
    region_code: str = "A",
    licence_number: str = "01/123",
    is_water_undertaker: bool = True,
    include_in_supplementary_billing: bool = False,
    charge_version_start: date = date(2019, 4, 1),
    authorised_annual_quantity: Decimal = Decimal("200"),
) -> SeededLicence:
    region = Region(code=region_code, name="Anglian")
    session.add(region)
    session.flush()
    licence = Licence(
        licence_number=licence_number,
        region_id=region.id,
        start_date=date(2000, 1, 1),
        end_date=None,
        is_water_undertaker=is_water_undertaker,
        regional_charging_area="Anglian",
        historical_area_code="ARCA",
    )
    session.add(licence)
    session.flush()
    charge_version = ChargeVersion(
        licence_id=licence.id,
        status=ChargeVersionStatus.CURRENT,
        start_date=charge_version_start,
        end_date=None,
        is_two_part_tariff=False,
        include_in_supplementary_billing=include_in_supplementary_billing,
    )
    session.add(charge_version)
    session.flush()
    element = ChargeElement(
        charge_version_id=charge_version.id,
        abstraction_period_start_day=1,
        abstraction_period_start_month=4,
        abstraction_period_end_day=31,
        abstraction_period_end_month=3,
        authorised_annual_quantity=authorised_annual_quantity,
        billable_annual_quantity=None,
        source=ChargeElementSource.SUPPORTED,
        season=ChargeElementSeason.ALL_YEAR,
        loss=ChargeElementLoss.LOW,
        purpose_use_code="400",
        purpose_use_name="Spray Irrigation - Direct",
        description=None,
    )
    session.add(element)
    session.commit()
    return SeededLicence(
        region_id=region.id,
        licence_id=licence.id,
        licence_number=licence.licence_number,
        charge_version_id=charge_version.id,
        charge_element_id=element.id,
    )


