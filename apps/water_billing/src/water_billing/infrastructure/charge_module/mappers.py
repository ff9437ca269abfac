"""Mapping between local billing rows and Charge Module payloads."""

from __future__ import annotations

import string
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from water_billing.db.models.batch import Batch
from water_billing.db.models.charge_version import ChargeElementSource
from water_billing.db.models.licence import Licence
from water_billing.db.models.licence_agreement import (
    CANAL_AGREEMENT_PREFIX,
    TWO_PART_TARIFF_AGREEMENT,
)
from water_billing.db.models.transaction import Transaction
from water_billing.domain.errors import ValidationError, compose_error_message
from water_billing.infrastructure.charge_module.client import LedgerTransaction

DEFAULT_SECTION_126_FACTOR = Decimal("1")
LEDGER_DATE_FORMAT = "%d-%b-%Y"


def format_ledger_date(value: date) -> str:
    """Format dates as the Charge Module expects, e.g. ``01-APR-2019``."""

    return value.strftime(LEDGER_DATE_FORMAT).upper()


def parse_ledger_date(value: str) -> date:
    return datetime.strptime(value, LEDGER_DATE_FORMAT).date()


def _title(value: str) -> str:
    return string.capwords(value)


def _number(value: Decimal) -> int | float:
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return int(normalized)
    return float(normalized)


def build_transaction_payload(
    *,
    batch: Batch,
    transaction: Transaction,
    licence: Licence,
) -> dict[str, Any]:
    """Build the Charge Module request body for one candidate transaction.

    Raises ``ValidationError`` when the transaction cannot be charged as it
    stands, e.g. a two-part tariff charge still waiting for a volume.
    """

    if transaction.volume is None:
        raise ValidationError(
            message=compose_error_message(
                cause="Transaction has no volume to charge.",
                action="Approve a billing volume for the charge element.",
            ),
            details={"transaction_id": str(transaction.id)},
        )

    period_start = format_ledger_date(transaction.charge_period_start)
    period_end = format_ledger_date(transaction.charge_period_end)
    agreements = set(transaction.agreements)
    section_126_factor = transaction.section_126_factor or DEFAULT_SECTION_126_FACTOR

    return {
        "clientId": str(transaction.id),
        "periodStart": period_start,
        "periodEnd": period_end,
        "credit": transaction.is_credit,
        "billableDays": transaction.billable_days,
        "authorisedDays": transaction.authorised_days,
        "volume": _number(transaction.volume),
        "twoPartTariff": transaction.is_two_part_tariff,
        "compensationCharge": transaction.is_compensation_charge,
        "section126Factor": _number(section_126_factor),
        "section127Agreement": TWO_PART_TARIFF_AGREEMENT in agreements,
        "section130Agreement": any(
            code.startswith(CANAL_AGREEMENT_PREFIX) for code in agreements
        ),
        "customerReference": transaction.invoice_account_number,
        "lineDescription": transaction.description,
        "chargePeriod": f"{period_start} - {period_end}",
        "batchNumber": str(batch.id),
        "source": _title(transaction.source),
        "season": _title(transaction.season),
        "loss": _title(transaction.loss),
        "eiucSource": (
            "Tidal" if transaction.source == ChargeElementSource.TIDAL else "Other"
        ),
        "chargeElementId": (
            str(transaction.charge_element_id)
            if transaction.charge_element_id is not None
            else None
        ),
        "waterUndertaker": licence.is_water_undertaker,
        "regionalChargingArea": licence.regional_charging_area,
        "licenceNumber": transaction.licence_number,
        "region": transaction.region_code,
        "areaCode": licence.historical_area_code,
    }


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    return Decimal(str(value))


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def ledger_calculation_values(
    ledger_transaction: LedgerTransaction,
    *,
    is_de_minimis: bool,
) -> dict[str, Any]:
    """Column values written from a ledger transaction's calculation."""

    response = ledger_transaction.charging_response
    return {
        "value": ledger_transaction.charge_value,
        "is_de_minimis": is_de_minimis,
        "calc_source_factor": _decimal(response.get("sourceFactor")),
        "calc_season_factor": _decimal(response.get("seasonFactor")),
        "calc_loss_factor": _decimal(response.get("lossFactor")),
        "calc_suc_factor": _decimal(response.get("sucFactor")),
        "calc_s126_factor": _text(response.get("abatementAdjustment")),
        "calc_s127_factor": _text(response.get("s127Agreement")),
        "calc_eiuc_factor": _decimal(response.get("eiucFactor")),
        "calc_eiuc_source_factor": _decimal(response.get("eiucSourceFactor")),
    }
