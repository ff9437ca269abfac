"""Read access to charge versions and their supporting reference data."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from water_billing.db.models.billing_volume import BillingVolume
from water_billing.db.models.charge_version import ChargeVersion, ChargeVersionStatus
from water_billing.db.models.licence import Licence
from water_billing.db.models.licence_agreement import LicenceAgreement
from water_billing.db.models.return_requirement import (
    ReturnRequirement,
    ReturnRequirementStatus,
)
from water_billing.domain.financial_year import FinancialYear


class ChargeVersionRepository:
    """Repository for charge versions, elements, agreements and returns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_with_elements(self, charge_version_id: UUID) -> ChargeVersion | None:
        """Fetch one charge version with its licence, region and elements."""

        statement = (
            select(ChargeVersion)
            .where(ChargeVersion.id == charge_version_id)
            .options(
                selectinload(ChargeVersion.charge_elements),
                selectinload(ChargeVersion.licence).selectinload(Licence.region),
            )
        )
        return self._session.scalar(statement)

    def list_billable_in_region_and_year(
        self,
        *,
        region_id: UUID,
        financial_year: FinancialYear,
    ) -> list[ChargeVersion]:
        """Current charge versions of the region overlapping a financial year."""

        statement = (
            select(ChargeVersion)
            .join(Licence, Licence.id == ChargeVersion.licence_id)
            .where(
                Licence.region_id == region_id,
                ChargeVersion.status == ChargeVersionStatus.CURRENT,
                ChargeVersion.start_date <= financial_year.end,
                or_(
                    ChargeVersion.end_date.is_(None),
                    ChargeVersion.end_date >= financial_year.start,
                ),
                Licence.start_date <= financial_year.end,
                or_(
                    Licence.end_date.is_(None),
                    Licence.end_date >= financial_year.start,
                ),
            )
            .options(selectinload(ChargeVersion.licence))
            .order_by(Licence.licence_number, ChargeVersion.start_date)
        )
        return list(self._session.scalars(statement))

    def get_licence(self, licence_id: UUID) -> Licence | None:
        return self._session.get(Licence, licence_id)

    def list_agreements(self, licence_id: UUID) -> list[LicenceAgreement]:
        statement = (
            select(LicenceAgreement)
            .where(LicenceAgreement.licence_id == licence_id)
            .order_by(LicenceAgreement.start_date)
        )
        return list(self._session.scalars(statement))

    def list_active_return_requirements(
        self,
        licence_id: UUID,
    ) -> list[ReturnRequirement]:
        """Non-draft return requirements of a licence."""

        statement = (
            select(ReturnRequirement)
            .where(
                ReturnRequirement.licence_id == licence_id,
                ReturnRequirement.status != ReturnRequirementStatus.DRAFT,
            )
            .order_by(ReturnRequirement.start_date)
        )
        return list(self._session.scalars(statement))

    def find_approved_volumes(
        self,
        *,
        charge_element_ids: Iterable[UUID],
        financial_year_ending: int,
        is_summer: bool,
    ) -> dict[UUID, Decimal]:
        """Approved two-part tariff volumes keyed by charge element id."""

        element_ids = list(charge_element_ids)
        if not element_ids:
            return {}
        statement = select(BillingVolume).where(
            BillingVolume.charge_element_id.in_(element_ids),
            BillingVolume.financial_year_ending == financial_year_ending,
            BillingVolume.is_summer == is_summer,
            BillingVolume.is_approved.is_(True),
            BillingVolume.volume.is_not(None),
        )
        return {
            volume.charge_element_id: volume.volume
            for volume in self._session.scalars(statement)
            if volume.volume is not None
        }
