"""Build the invoice and transaction graph for one charge version year."""

from __future__ import annotations

import logging
import string
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from water_billing.db.models.batch import Batch
from water_billing.db.models.charge_version import ChargeElement, ChargeVersion
from water_billing.db.models.charge_version_year import (
    ChargeVersionYear,
    TransactionType,
)
from water_billing.db.models.licence import Licence
from water_billing.db.models.licence_agreement import (
    ABATEMENT_AGREEMENT,
    TWO_PART_TARIFF_AGREEMENT,
    LicenceAgreement,
)
from water_billing.domain.charge_period import (
    get_authorised_days,
    get_billable_days,
    get_charge_period,
)
from water_billing.domain.charging_facts import ChargingFacts
from water_billing.domain.date_range import DateRange
from water_billing.domain.date_range_splitter import HistorySegment, split_date_range
from water_billing.domain.errors import ValidationError, compose_error_message
from water_billing.domain.financial_year import FinancialYear
from water_billing.domain.reference_data import (
    BillingAccount,
    LicenceHolder,
    same_licence_holder,
)
from water_billing.domain.results import Invalid, NotFound, Ok, Result
from water_billing.infrastructure.crm.client import ReferenceDataProvider

logger = logging.getLogger(__name__)

COMPENSATION_CHARGE_DESCRIPTION = (
    "Compensation Charge calculated from all factors except Standard Unit Charge "
    "and Source (replaced by factors below) and excluding S127 Charge Element"
)


class ChargeVersionReader(Protocol):
    def get_with_elements(self, charge_version_id: UUID) -> ChargeVersion | None: ...

    def list_agreements(self, licence_id: UUID) -> list[LicenceAgreement]: ...

    def find_approved_volumes(
        self,
        *,
        charge_element_ids: list[UUID],
        financial_year_ending: int,
        is_summer: bool,
    ) -> dict[UUID, Decimal]: ...


@dataclass(slots=True, frozen=True)
class TransactionDraft:
    facts: ChargingFacts
    charge_element_id: UUID
    section_126_factor: Decimal | None = None
    is_volume_review_required: bool = False


@dataclass(slots=True)
class InvoiceLicenceDraft:
    licence_id: UUID
    licence_number: str
    licence_holder: LicenceHolder | None
    transactions: list[TransactionDraft] = field(default_factory=list)


@dataclass(slots=True)
class InvoiceDraft:
    """Charges of one billing account for the financial year being processed."""

    billing_account: BillingAccount
    financial_year_ending: int
    invoice_licence: InvoiceLicenceDraft


@dataclass(slots=True)
class ProcessedChargeVersionYear:
    charge_version_year_id: UUID
    invoices: list[InvoiceDraft] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return sum(len(invoice.invoice_licence.transactions) for invoice in self.invoices)


@dataclass(slots=True, frozen=True)
class EffectivePeriod:
    """Part of the charge period with one holder, one account and fixed agreements."""

    date_range: DateRange
    licence_holder: LicenceHolder | None
    billing_account: BillingAccount | None
    agreement_codes: frozenset[str] = frozenset()
    section_126_factor: Decimal | None = None


def standard_charge_description(element: ChargeElement) -> str:
    return string.capwords(element.description or element.purpose_use_name)


def two_part_tariff_description(element: ChargeElement, *, is_second_part: bool) -> str:
    part = "Second" if is_second_part else "First"
    text = f"{part} part {element.purpose_use_name} charge"
    if element.description:
        text = f"{text} at {element.description}"
    return string.capwords(text)


def element_volume(element: ChargeElement) -> Decimal:
    """Billable quantity when set, otherwise the authorised quantity."""

    volume = (
        element.billable_annual_quantity
        if element.billable_annual_quantity is not None
        else element.authorised_annual_quantity
    )
    maximum = max(
        element.authorised_annual_quantity,
        element.billable_annual_quantity or Decimal("0"),
    )
    if volume < 0 or volume > maximum:
        raise ValidationError(
            message=compose_error_message(
                cause=f"Charge element {element.id} has an invalid volume {volume}.",
                action="Correct the element quantities and rebuild the batch.",
            ),
            details={"charge_element_id": str(element.id)},
        )
    return volume


def split_effective_periods(
    charge_period: DateRange,
    *,
    licence_holders: list[HistorySegment[LicenceHolder]],
    billing_accounts: list[HistorySegment[BillingAccount]],
    agreements: list[LicenceAgreement],
) -> list[EffectivePeriod]:
    """Cut the charge period by licence holder, billing account and agreements."""

    periods: list[EffectivePeriod] = []
    for holder_range in split_date_range(
        charge_period,
        licence_holders,
        is_equal=same_licence_holder,
    ):
        for account_range in split_date_range(holder_range.date_range, billing_accounts):
            periods.append(
                EffectivePeriod(
                    date_range=account_range.date_range,
                    licence_holder=holder_range.value,
                    billing_account=account_range.value,
                )
            )

    for code in sorted({agreement.code for agreement in agreements}):
        segments = [
            HistorySegment(date_range=agreement.date_range, value=agreement)
            for agreement in agreements
            if agreement.code == code
        ]
        next_periods: list[EffectivePeriod] = []
        for period in periods:
            for piece in split_date_range(
                period.date_range,
                segments,
                is_equal=lambda left, right: left.factor == right.factor,
            ):
                codes = period.agreement_codes
                factor = period.section_126_factor
                if piece.value is not None:
                    codes = codes | {code}
                    if code == ABATEMENT_AGREEMENT:
                        factor = piece.value.factor
                next_periods.append(
                    EffectivePeriod(
                        date_range=piece.date_range,
                        licence_holder=period.licence_holder,
                        billing_account=period.billing_account,
                        agreement_codes=codes,
                        section_126_factor=factor,
                    )
                )
        periods = next_periods
    return periods


class ChargeProcessor:
    """Turn one charge version year into draft invoices and transactions.

    Missing records and unbillable data are returned as ``NotFound`` and
    ``Invalid`` results. Reference data failures propagate so the unit is
    retried as a whole.
    """

    def __init__(
        self,
        *,
        charge_version_repository: ChargeVersionReader,
        reference_data: ReferenceDataProvider,
    ) -> None:
        self._charge_version_repository = charge_version_repository
        self._reference_data = reference_data

    def process(
        self,
        *,
        batch: Batch,
        charge_version_year: ChargeVersionYear,
    ) -> Result[ProcessedChargeVersionYear]:
        charge_version = self._charge_version_repository.get_with_elements(
            charge_version_year.charge_version_id
        )
        if charge_version is None:
            return NotFound(
                message=compose_error_message(
                    cause=(
                        f"Charge version {charge_version_year.charge_version_id} "
                        "not found."
                    ),
                    action="Check the charge version still exists and rebuild the batch.",
                ),
                details={"charge_version_id": str(charge_version_year.charge_version_id)},
            )

        licence: Licence = charge_version.licence
        financial_year = FinancialYear(
            year_ending=charge_version_year.financial_year_ending
        )
        processed = ProcessedChargeVersionYear(
            charge_version_year_id=charge_version_year.id
        )
        charge_period = get_charge_period(
            financial_year=financial_year,
            licence_range=licence.date_range,
            charge_version_range=charge_version.date_range,
        )
        if charge_period is None:
            return Ok(processed)

        roles = self._reference_data.get_licence_roles(licence.licence_number)
        periods = split_effective_periods(
            charge_period,
            licence_holders=roles.licence_holders,
            billing_accounts=roles.billing_accounts,
            agreements=self._charge_version_repository.list_agreements(licence.id),
        )
        missing_accounts = [
            period.date_range for period in periods if period.billing_account is None
        ]
        if missing_accounts:
            gap = missing_accounts[0]
            return Invalid(
                message=compose_error_message(
                    cause=(
                        f"Licence {licence.licence_number} has no billing account "
                        f"from {gap.start} to {gap.end}."
                    ),
                    action="Add a billing account for the period and rebuild the batch.",
                ),
                details={
                    "licence_number": licence.licence_number,
                    "start_date": gap.start.isoformat(),
                    "end_date": gap.end.isoformat() if gap.end else None,
                },
            )

        try:
            if charge_version_year.transaction_type == TransactionType.TWO_PART_TARIFF:
                drafts = self._two_part_tariff_transactions(
                    licence=licence,
                    charge_version=charge_version,
                    financial_year=financial_year,
                    charge_period=charge_period,
                    periods=periods,
                    is_summer=charge_version_year.is_summer,
                )
            else:
                drafts = self._annual_transactions(
                    licence=licence,
                    charge_version=charge_version,
                    financial_year=financial_year,
                    charge_period=charge_period,
                    periods=periods,
                )
        except ValidationError as exc:
            return Invalid(message=exc.message, details=exc.details)

        invoices: dict[str, InvoiceDraft] = {}
        for period, draft in drafts:
            account = period.billing_account
            if account is None:
                raise ValidationError(details={"licence_number": licence.licence_number})
            invoice = invoices.get(account.invoice_account_number)
            if invoice is None:
                invoice = InvoiceDraft(
                    billing_account=account,
                    financial_year_ending=financial_year.year_ending,
                    invoice_licence=InvoiceLicenceDraft(
                        licence_id=licence.id,
                        licence_number=licence.licence_number,
                        licence_holder=period.licence_holder,
                    ),
                )
                invoices[account.invoice_account_number] = invoice
            invoice.invoice_licence.transactions.append(draft)
        processed.invoices = list(invoices.values())

        logger.info(
            "charge_version_year_processed",
            extra={
                "batch_id": str(batch.id),
                "charge_version_year_id": str(charge_version_year.id),
                "invoice_count": len(processed.invoices),
                "transaction_count": processed.transaction_count,
            },
        )
        return Ok(processed)

    def _annual_transactions(
        self,
        *,
        licence: Licence,
        charge_version: ChargeVersion,
        financial_year: FinancialYear,
        charge_period: DateRange,
        periods: list[EffectivePeriod],
    ) -> list[tuple[EffectivePeriod, TransactionDraft]]:
        drafts: list[tuple[EffectivePeriod, TransactionDraft]] = []
        for period in periods:
            for element in charge_version.charge_elements:
                billable_days = get_billable_days(
                    abstraction_period=element.abstraction_period,
                    charge_period=charge_period,
                    effective_period=period.date_range,
                    time_limited_period=element.time_limited_period,
                )
                if billable_days == 0:
                    continue
                description = (
                    two_part_tariff_description(element, is_second_part=False)
                    if TWO_PART_TARIFF_AGREEMENT in period.agreement_codes
                    else standard_charge_description(element)
                )
                volume = element_volume(element)
                charges = [(description, False)]
                if not licence.is_water_undertaker:
                    charges.append((COMPENSATION_CHARGE_DESCRIPTION, True))
                for text, is_compensation_charge in charges:
                    facts = self._facts(
                        licence=licence,
                        element=element,
                        financial_year=financial_year,
                        period=period,
                        billable_days=billable_days,
                        volume=volume,
                        description=text,
                        is_compensation_charge=is_compensation_charge,
                        is_two_part_tariff=False,
                    )
                    drafts.append(
                        (
                            period,
                            TransactionDraft(
                                facts=facts,
                                charge_element_id=element.id,
                                section_126_factor=period.section_126_factor,
                            ),
                        )
                    )
        return drafts

    def _two_part_tariff_transactions(
        self,
        *,
        licence: Licence,
        charge_version: ChargeVersion,
        financial_year: FinancialYear,
        charge_period: DateRange,
        periods: list[EffectivePeriod],
        is_summer: bool,
    ) -> list[tuple[EffectivePeriod, TransactionDraft]]:
        candidates: list[tuple[EffectivePeriod, ChargeElement, int]] = []
        for period in periods:
            if TWO_PART_TARIFF_AGREEMENT not in period.agreement_codes:
                continue
            for element in charge_version.charge_elements:
                if element.abstraction_period.is_summer != is_summer:
                    continue
                billable_days = get_billable_days(
                    abstraction_period=element.abstraction_period,
                    charge_period=charge_period,
                    effective_period=period.date_range,
                    time_limited_period=element.time_limited_period,
                )
                if billable_days > 0:
                    candidates.append((period, element, billable_days))

        elements_by_season: dict[bool, set[UUID]] = defaultdict(set)
        for _, element, _ in candidates:
            elements_by_season[element.abstraction_period.is_summer].add(element.id)
        volumes: dict[UUID, Decimal] = {}
        for season_is_summer, element_ids in elements_by_season.items():
            volumes.update(
                self._charge_version_repository.find_approved_volumes(
                    charge_element_ids=sorted(element_ids, key=str),
                    financial_year_ending=financial_year.year_ending,
                    is_summer=season_is_summer,
                )
            )

        drafts: list[tuple[EffectivePeriod, TransactionDraft]] = []
        for period, element, billable_days in candidates:
            volume = volumes.get(element.id)
            if volume is None:
                logger.warning(
                    "billing_volume_missing",
                    extra={
                        "licence_number": licence.licence_number,
                        "charge_element_id": str(element.id),
                        "financial_year_ending": financial_year.year_ending,
                    },
                )
            facts = self._facts(
                licence=licence,
                element=element,
                financial_year=financial_year,
                period=period,
                billable_days=billable_days,
                volume=volume,
                description=two_part_tariff_description(element, is_second_part=True),
                is_compensation_charge=False,
                is_two_part_tariff=True,
            )
            drafts.append(
                (
                    period,
                    TransactionDraft(
                        facts=facts,
                        charge_element_id=element.id,
                        section_126_factor=period.section_126_factor,
                        is_volume_review_required=volume is None,
                    ),
                )
            )
        return drafts

    def _facts(
        self,
        *,
        licence: Licence,
        element: ChargeElement,
        financial_year: FinancialYear,
        period: EffectivePeriod,
        billable_days: int,
        volume: Decimal | None,
        description: str,
        is_compensation_charge: bool,
        is_two_part_tariff: bool,
    ) -> ChargingFacts:
        account = period.billing_account
        if account is None or period.date_range.end is None:
            raise ValidationError(
                message=compose_error_message(
                    cause=(
                        f"Licence {licence.licence_number} has a charge period from "
                        f"{period.date_range.start} without a billing account or end date."
                    ),
                    action="Check the billing account history and rebuild the batch.",
                ),
                details={
                    "licence_number": licence.licence_number,
                    "start_date": period.date_range.start.isoformat(),
                },
            )
        return ChargingFacts(
            charge_period_start=period.date_range.start,
            charge_period_end=period.date_range.end,
            billable_days=billable_days,
            authorised_days=get_authorised_days(
                abstraction_period=element.abstraction_period,
                financial_year=financial_year,
            ),
            volume=volume,
            description=description,
            is_compensation_charge=is_compensation_charge,
            is_new_licence=financial_year.date_range.contains(licence.start_date),
            agreements=tuple(period.agreement_codes),
            invoice_account_number=account.invoice_account_number,
            source=str(element.source),
            season=str(element.season),
            loss=str(element.loss),
            licence_number=licence.licence_number,
            region_code=licence.region.code,
            is_two_part_tariff=is_two_part_tariff,
        )
