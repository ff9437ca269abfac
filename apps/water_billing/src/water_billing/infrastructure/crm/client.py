"""HTTP client for licence holder and billing account history."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from water_billing.core.settings import Settings, get_settings
from water_billing.domain.date_range import DateRange
from water_billing.domain.date_range_splitter import HistorySegment
from water_billing.domain.errors import ReferenceDataError, compose_error_message
from water_billing.domain.reference_data import (
    BillingAccount,
    LicenceHolder,
    LicenceRoleHistory,
)

logger = logging.getLogger(__name__)


class ReferenceDataProvider(Protocol):
    def get_licence_roles(self, licence_number: str) -> LicenceRoleHistory: ...


class CrmModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CrmCompany(CrmModel):
    id: str
    name: str


class CrmInvoiceAccount(CrmModel):
    id: str
    account_number: str


class CrmLicenceHolderRole(CrmModel):
    start_date: date
    end_date: date | None = None
    company: CrmCompany
    contact: dict[str, Any] | None = None
    address: dict[str, Any] | None = None


class CrmBillingAccountRole(CrmModel):
    start_date: date
    end_date: date | None = None
    invoice_account: CrmInvoiceAccount


class CrmLicenceRoles(CrmModel):
    licence_holders: list[CrmLicenceHolderRole] = Field(default_factory=list)
    billing_accounts: list[CrmBillingAccountRole] = Field(default_factory=list)

    def to_history(self) -> LicenceRoleHistory:
        return LicenceRoleHistory(
            licence_holders=[
                HistorySegment(
                    date_range=DateRange(start=role.start_date, end=role.end_date),
                    value=LicenceHolder(
                        company_id=role.company.id,
                        company_name=role.company.name,
                        contact=role.contact,
                        address=role.address,
                    ),
                )
                for role in self.licence_holders
            ],
            billing_accounts=[
                HistorySegment(
                    date_range=DateRange(start=role.start_date, end=role.end_date),
                    value=BillingAccount(
                        invoice_account_id=role.invoice_account.id,
                        invoice_account_number=role.invoice_account.account_number,
                    ),
                )
                for role in self.billing_accounts
            ],
        )


class CrmClient:
    """Reads licence role history; any failure is a ``ReferenceDataError``."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("CRM timeout must be greater than zero.")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CrmClient:
        resolved = settings or get_settings()
        return cls(
            base_url=resolved.crm_base_url,
            timeout_seconds=resolved.crm_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def get_licence_roles(self, licence_number: str) -> LicenceRoleHistory:
        path = f"v2/licences/{quote(licence_number, safe='')}/roles"
        try:
            response = self._client.get(path)
        except httpx.HTTPError as exc:
            logger.warning(
                "crm_request_failed",
                extra={"licence_number": licence_number, "error": str(exc)},
            )
            raise ReferenceDataError(
                message=compose_error_message(
                    cause=f"CRM request for licence {licence_number} failed: {exc}.",
                    action="Retry later.",
                ),
                details={"licence_number": licence_number},
            ) from exc

        if not response.is_success:
            raise ReferenceDataError(
                message=compose_error_message(
                    cause=(
                        f"CRM returned status {response.status_code} "
                        f"for licence {licence_number}."
                    ),
                    action="Check the licence exists in the CRM and retry.",
                ),
                details={
                    "licence_number": licence_number,
                    "status_code": response.status_code,
                },
            )

        try:
            roles = CrmLicenceRoles.model_validate(response.json())
        except ValueError as exc:
            raise ReferenceDataError(
                message=compose_error_message(
                    cause=f"CRM returned malformed roles for licence {licence_number}.",
                    action="Retry later.",
                ),
                details={"licence_number": licence_number},
            ) from exc
        return roles.to_history()
