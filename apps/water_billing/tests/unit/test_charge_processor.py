"""Unit tests for the charge processor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from water_billing.db.models import (
    Batch,
    BatchSeason,
    BatchStatus,
    BatchType,
    ChargeElement,
    ChargeVersion,
    ChargeVersionStatus,
    ChargeVersionYear,
    ChargeVersionYearStatus,
    Licence,
    LicenceAgreement,
    Region,
    TransactionType,
)
from water_billing.db.models.charge_version import (
    ChargeElementLoss,
    ChargeElementSeason,
    ChargeElementSource,
)
from water_billing.domain.date_range import DateRange
from water_billing.domain.date_range_splitter import HistorySegment
from water_billing.domain.errors import ValidationError
from water_billing.domain.financial_year import FinancialYear
from water_billing.domain.reference_data import (
    BillingAccount,
    LicenceHolder,
    LicenceRoleHistory,
)
from water_billing.domain.results import Invalid, NotFound, Ok
from water_billing.services.charge_processor import (
    COMPENSATION_CHARGE_DESCRIPTION,
    ChargeProcessor,
    EffectivePeriod,
)

ACCOUNT_A = BillingAccount(invoice_account_id="acc-a", invoice_account_number="A11111111A")
ACCOUNT_B = BillingAccount(invoice_account_id="acc-b", invoice_account_number="A22222222A")
HOLDER = LicenceHolder(company_id="company-1", company_name="Big Farm Co Ltd")


@dataclass
class FakeChargeVersionRepository:
    charge_version: ChargeVersion | None
    agreements: list[LicenceAgreement] = field(default_factory=list)
    volumes: dict[UUID, Decimal] = field(default_factory=dict)

    def get_with_elements(self, charge_version_id: UUID) -> ChargeVersion | None:
        return self.charge_version

    def list_agreements(self, licence_id: UUID) -> list[LicenceAgreement]:
        return self.agreements

    def find_approved_volumes(
        self,
        *,
        charge_element_ids: list[UUID],
        financial_year_ending: int,
        is_summer: bool,
    ) -> dict[UUID, Decimal]:
        return {
            element_id: volume
            for element_id, volume in self.volumes.items()
            if element_id in charge_element_ids
        }


@dataclass
class FakeReferenceData:
    history: LicenceRoleHistory
    calls: list[str] = field(default_factory=list)

    def get_licence_roles(self, licence_number: str) -> LicenceRoleHistory:
        self.calls.append(licence_number)
        return self.history


def roles(*accounts: HistorySegment[BillingAccount]) -> LicenceRoleHistory:
    return LicenceRoleHistory(
        licence_holders=[
            HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=HOLDER)
        ],
        billing_accounts=list(accounts),
    )


def build_charge_version(
    *,
    is_water_undertaker: bool = True,
    abstraction_period: tuple[int, int, int, int] = (1, 4, 31, 3),
) -> ChargeVersion:
    licence = Licence(
        id=uuid4(),
        licence_number="01/123",
        start_date=date(2000, 1, 1),
        end_date=None,
        is_water_undertaker=is_water_undertaker,
        regional_charging_area="Anglian",
        historical_area_code="ARCA",
        region=Region(id=uuid4(), code="A", name="Anglian"),
    )
    start_day, start_month, end_day, end_month = abstraction_period
    element = ChargeElement(
        id=uuid4(),
        abstraction_period_start_day=start_day,
        abstraction_period_start_month=start_month,
        abstraction_period_end_day=end_day,
        abstraction_period_end_month=end_month,
        authorised_annual_quantity=Decimal("200"),
        billable_annual_quantity=None,
        source=ChargeElementSource.SUPPORTED,
        season=ChargeElementSeason.ALL_YEAR,
        loss=ChargeElementLoss.LOW,
        purpose_use_code="400",
        purpose_use_name="spray irrigation - direct",
        description=None,
    )
    return ChargeVersion(
        id=uuid4(),
        licence=licence,
        status=ChargeVersionStatus.CURRENT,
        start_date=date(2019, 4, 1),
        end_date=None,
        is_two_part_tariff=False,
        include_in_supplementary_billing=False,
        charge_elements=[element],
    )


def build_unit(
    charge_version: ChargeVersion,
    *,
    transaction_type: TransactionType = TransactionType.ANNUAL,
    is_summer: bool = False,
) -> ChargeVersionYear:
    return ChargeVersionYear(
        id=uuid4(),
        charge_version_id=charge_version.id,
        financial_year_ending=2020,
        transaction_type=transaction_type,
        is_summer=is_summer,
        status=ChargeVersionYearStatus.PROCESSING,
    )


def build_batch() -> Batch:
    return Batch(
        id=uuid4(),
        region_id=uuid4(),
        batch_type=BatchType.ANNUAL,
        season=BatchSeason.ALL_YEAR,
        start_financial_year_ending=2020,
        end_financial_year_ending=2020,
        status=BatchStatus.PROCESSING,
    )


def test_annual_full_year_element_produces_one_transaction() -> None:
    charge_version = build_charge_version()
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(charge_version),
        reference_data=FakeReferenceData(
            roles(HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=ACCOUNT_A))
        ),
    )

    result = processor.process(batch=build_batch(), charge_version_year=build_unit(charge_version))

    assert isinstance(result, Ok)
    assert len(result.value.invoices) == 1
    invoice = result.value.invoices[0]
    assert invoice.billing_account == ACCOUNT_A
    assert invoice.invoice_licence.licence_holder == HOLDER
    [draft] = invoice.invoice_licence.transactions
    assert draft.facts.billable_days == draft.facts.authorised_days == 366
    assert draft.facts.volume == Decimal("200")
    assert draft.facts.charge_period_start == date(2019, 4, 1)
    assert draft.facts.charge_period_end == date(2020, 3, 31)
    assert draft.facts.description == "Spray Irrigation - Direct"
    assert draft.facts.region_code == "A"
    assert not draft.facts.is_compensation_charge


def test_non_water_undertaker_also_gets_a_compensation_charge() -> None:
    charge_version = build_charge_version(is_water_undertaker=False)
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(charge_version),
        reference_data=FakeReferenceData(
            roles(HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=ACCOUNT_A))
        ),
    )

    result = processor.process(batch=build_batch(), charge_version_year=build_unit(charge_version))

    assert isinstance(result, Ok)
    transactions = result.value.invoices[0].invoice_licence.transactions
    assert [draft.facts.is_compensation_charge for draft in transactions] == [False, True]
    assert transactions[1].facts.description == COMPENSATION_CHARGE_DESCRIPTION


def test_billing_account_change_splits_into_two_invoices() -> None:
    charge_version = build_charge_version()
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(charge_version),
        reference_data=FakeReferenceData(
            roles(
                HistorySegment(
                    date_range=DateRange(start=date(2000, 1, 1), end=date(2019, 9, 30)),
                    value=ACCOUNT_A,
                ),
                HistorySegment(date_range=DateRange(start=date(2019, 10, 1)), value=ACCOUNT_B),
            )
        ),
    )

    result = processor.process(batch=build_batch(), charge_version_year=build_unit(charge_version))

    assert isinstance(result, Ok)
    invoices = {
        invoice.billing_account.invoice_account_number: invoice
        for invoice in result.value.invoices
    }
    assert set(invoices) == {"A11111111A", "A22222222A"}
    first = invoices["A11111111A"].invoice_licence.transactions[0].facts
    second = invoices["A22222222A"].invoice_licence.transactions[0].facts
    assert (first.charge_period_start, first.charge_period_end) == (
        date(2019, 4, 1),
        date(2019, 9, 30),
    )
    assert first.billable_days == 183
    assert second.billable_days == 183
    assert first.authorised_days == second.authorised_days == 366


def test_missing_billing_account_is_invalid() -> None:
    charge_version = build_charge_version()
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(charge_version),
        reference_data=FakeReferenceData(
            roles(HistorySegment(date_range=DateRange(start=date(2019, 7, 1)), value=ACCOUNT_A))
        ),
    )

    result = processor.process(batch=build_batch(), charge_version_year=build_unit(charge_version))

    assert isinstance(result, Invalid)
    assert result.details["start_date"] == "2019-04-01"
    assert result.details["end_date"] == "2019-06-30"


def test_missing_charge_version_is_not_found() -> None:
    charge_version = build_charge_version()
    reference_data = FakeReferenceData(roles())
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(None),
        reference_data=reference_data,
    )

    result = processor.process(batch=build_batch(), charge_version_year=build_unit(charge_version))

    assert isinstance(result, NotFound)
    assert reference_data.calls == []


def test_abatement_agreement_splits_the_period_and_carries_the_factor() -> None:
    charge_version = build_charge_version()
    agreement = LicenceAgreement(
        id=uuid4(),
        code="S126",
        start_date=date(2019, 10, 1),
        end_date=None,
        factor=Decimal("0.5"),
    )
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(
            charge_version, agreements=[agreement]
        ),
        reference_data=FakeReferenceData(
            roles(HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=ACCOUNT_A))
        ),
    )

    result = processor.process(batch=build_batch(), charge_version_year=build_unit(charge_version))

    assert isinstance(result, Ok)
    transactions = result.value.invoices[0].invoice_licence.transactions
    assert [draft.facts.agreements for draft in transactions] == [(), ("S126",)]
    assert [draft.section_126_factor for draft in transactions] == [None, Decimal("0.5")]


def test_two_part_tariff_without_approved_volume_requires_review() -> None:
    charge_version = build_charge_version(abstraction_period=(1, 4, 31, 10))
    agreement = LicenceAgreement(
        id=uuid4(),
        code="S127",
        start_date=date(2010, 4, 1),
        end_date=None,
        factor=None,
    )
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(
            charge_version, agreements=[agreement]
        ),
        reference_data=FakeReferenceData(
            roles(HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=ACCOUNT_A))
        ),
    )

    result = processor.process(
        batch=build_batch(),
        charge_version_year=build_unit(
            charge_version,
            transaction_type=TransactionType.TWO_PART_TARIFF,
            is_summer=True,
        ),
    )

    assert isinstance(result, Ok)
    [draft] = result.value.invoices[0].invoice_licence.transactions
    assert draft.is_volume_review_required
    assert draft.facts.volume is None
    assert draft.facts.is_two_part_tariff
    assert draft.facts.description == "Second Part Spray Irrigation - Direct Charge"


def test_two_part_tariff_uses_the_approved_volume() -> None:
    charge_version = build_charge_version(abstraction_period=(1, 4, 31, 10))
    element = charge_version.charge_elements[0]
    agreement = LicenceAgreement(
        id=uuid4(),
        code="S127",
        start_date=date(2010, 4, 1),
        end_date=None,
        factor=None,
    )
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(
            charge_version,
            agreements=[agreement],
            volumes={element.id: Decimal("42.5")},
        ),
        reference_data=FakeReferenceData(
            roles(HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=ACCOUNT_A))
        ),
    )

    result = processor.process(
        batch=build_batch(),
        charge_version_year=build_unit(
            charge_version,
            transaction_type=TransactionType.TWO_PART_TARIFF,
            is_summer=True,
        ),
    )

    assert isinstance(result, Ok)
    [draft] = result.value.invoices[0].invoice_licence.transactions
    assert draft.facts.volume == Decimal("42.5")
    assert not draft.is_volume_review_required
    assert draft.facts.agreements == ("S127",)


def test_period_without_billing_account_raises_instead_of_charging() -> None:
    charge_version = build_charge_version()
    processor = ChargeProcessor(
        charge_version_repository=FakeChargeVersionRepository(charge_version),
        reference_data=FakeReferenceData(roles()),
    )
    period = EffectivePeriod(
        date_range=DateRange(start=date(2019, 4, 1), end=date(2020, 3, 31)),
        licence_holder=HOLDER,
        billing_account=None,
    )

    with pytest.raises(ValidationError) as exc_info:
        processor._facts(
            licence=charge_version.licence,
            element=charge_version.charge_elements[0],
            financial_year=FinancialYear(year_ending=2020),
            period=period,
            billable_days=366,
            volume=Decimal("200"),
            description="Spray Irrigation - Direct",
            is_compensation_charge=False,
            is_two_part_tariff=False,
        )

    assert exc_info.value.details == {
        "licence_number": "01/123",
        "start_date": "2019-04-01",
    }
