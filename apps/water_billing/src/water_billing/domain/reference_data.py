"""Licence holder and billing account history supplied by the CRM."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from water_billing.domain.date_range_splitter import HistorySegment


@dataclass(slots=True, frozen=True)
class LicenceHolder:
    """Company holding a licence, with the contact snapshot used on invoices."""

    company_id: str
    company_name: str
    contact: dict[str, Any] | None = field(default=None, compare=False)
    address: dict[str, Any] | None = field(default=None, compare=False)


@dataclass(slots=True, frozen=True)
class BillingAccount:
    invoice_account_id: str
    invoice_account_number: str


@dataclass(slots=True, frozen=True)
class LicenceRoleHistory:
    licence_holders: list[HistorySegment[LicenceHolder]]
    billing_accounts: list[HistorySegment[BillingAccount]]


def same_licence_holder(left: LicenceHolder, right: LicenceHolder) -> bool:
    return left.company_id == right.company_id
