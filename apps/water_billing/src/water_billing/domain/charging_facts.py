"""Charging facts of a transaction and their stable fingerprint."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from water_billing.domain.errors import ValidationError, compose_error_message


def _format_decimal(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value.normalize(), "f")


@dataclass(slots=True, frozen=True)
class ChargingFacts:
    """Exactly the transaction attributes that decide what is charged.

    Two transactions with equal facts describe the same charge, whatever their
    status, ids, value or credit flag. Agreement codes are stored sorted.
    """

    charge_period_start: date
    charge_period_end: date
    billable_days: int
    authorised_days: int
    volume: Decimal | None
    description: str
    is_compensation_charge: bool
    is_new_licence: bool
    agreements: tuple[str, ...]
    invoice_account_number: str
    source: str
    season: str
    loss: str
    licence_number: str
    region_code: str
    is_two_part_tariff: bool

    def __post_init__(self) -> None:
        object.__setattr__(self, "agreements", tuple(sorted(set(self.agreements))))
        problems: list[str] = []
        if self.charge_period_end < self.charge_period_start:
            problems.append("charge period ends before it starts")
        if self.billable_days < 0 or self.authorised_days < 0:
            problems.append("day counts must be non-negative")
        if self.billable_days > self.authorised_days:
            problems.append("billable days exceed authorised days")
        if self.volume is not None and self.volume < 0:
            problems.append("volume must be non-negative")
        for label, text in (
            ("description", self.description),
            ("invoice_account_number", self.invoice_account_number),
            ("licence_number", self.licence_number),
            ("region_code", self.region_code),
        ):
            if not text or not text.strip():
                problems.append(f"{label} is required")
        if problems:
            raise ValidationError(
                message=compose_error_message(
                    cause=f"Invalid charging facts: {'; '.join(problems)}.",
                    action="Correct the charge version data and rebuild the batch.",
                ),
                details={
                    "licence_number": self.licence_number,
                    "problems": problems,
                },
            )

    def canonical(self) -> dict[str, Any]:
        """Plain JSON-ready mapping of the facts, in a fixed representation."""

        return {
            "period_start": self.charge_period_start.isoformat(),
            "period_end": self.charge_period_end.isoformat(),
            "billable_days": self.billable_days,
            "authorised_days": self.authorised_days,
            "volume": _format_decimal(self.volume),
            "description": self.description,
            "is_compensation_charge": self.is_compensation_charge,
            "is_new_licence": self.is_new_licence,
            "agreements": "-".join(self.agreements),
            "account_number": self.invoice_account_number,
            "source": self.source,
            "season": self.season,
            "loss": self.loss,
            "licence_number": self.licence_number,
            "region_code": self.region_code,
            "is_two_part_tariff": self.is_two_part_tariff,
        }

    def fingerprint(self) -> str:
        payload = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
