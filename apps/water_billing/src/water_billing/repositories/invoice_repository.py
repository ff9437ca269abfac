"""Persistence operations for invoices and invoice licences."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from water_billing.db.models.invoice import Invoice, InvoiceLicence
from water_billing.db.models.transaction import Transaction


class InvoiceRepository:
    """Repository for the invoice and invoice licence levels of a batch."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, invoice_id: UUID) -> Invoice | None:
        return self._session.get(Invoice, invoice_id)

    def find(
        self,
        *,
        batch_id: UUID,
        invoice_account_number: str,
        financial_year_ending: int,
    ) -> Invoice | None:
        statement = select(Invoice).where(
            Invoice.batch_id == batch_id,
            Invoice.invoice_account_number == invoice_account_number,
            Invoice.financial_year_ending == financial_year_ending,
        )
        return self._session.scalar(statement)

    def get_or_create(
        self,
        *,
        batch_id: UUID,
        invoice_account_id: str,
        invoice_account_number: str,
        financial_year_ending: int,
    ) -> Invoice:
        """Return the batch invoice for an account and year, creating it once."""

        existing = self.find(
            batch_id=batch_id,
            invoice_account_number=invoice_account_number,
            financial_year_ending=financial_year_ending,
        )
        if existing is not None:
            return existing

        duplicate_error: IntegrityError | None = None
        with self._session.begin_nested():
            invoice = Invoice(
                batch_id=batch_id,
                invoice_account_id=invoice_account_id,
                invoice_account_number=invoice_account_number,
                financial_year_ending=financial_year_ending,
                is_de_minimis=False,
            )
            self._session.add(invoice)
            try:
                self._session.flush()
                return invoice
            except IntegrityError as exc:
                duplicate_error = exc

        existing = self.find(
            batch_id=batch_id,
            invoice_account_number=invoice_account_number,
            financial_year_ending=financial_year_ending,
        )
        if existing is None:
            if duplicate_error is not None:
                raise duplicate_error
            msg = "Failed to load row after idempotent insert attempt."
            raise RuntimeError(msg)
        return existing

    def find_invoice_licence(
        self,
        *,
        invoice_id: UUID,
        licence_number: str,
    ) -> InvoiceLicence | None:
        statement = select(InvoiceLicence).where(
            InvoiceLicence.invoice_id == invoice_id,
            InvoiceLicence.licence_number == licence_number,
        )
        return self._session.scalar(statement)

    def get_or_create_invoice_licence(
        self,
        *,
        invoice_id: UUID,
        licence_id: UUID,
        licence_number: str,
        company_id: str | None = None,
        company_name: str | None = None,
        contact: dict[str, Any] | None = None,
        address: dict[str, Any] | None = None,
    ) -> InvoiceLicence:
        """Return the invoice licence for a licence number, creating it once."""

        existing = self.find_invoice_licence(
            invoice_id=invoice_id,
            licence_number=licence_number,
        )
        if existing is not None:
            return existing

        duplicate_error: IntegrityError | None = None
        with self._session.begin_nested():
            invoice_licence = InvoiceLicence(
                invoice_id=invoice_id,
                licence_id=licence_id,
                licence_number=licence_number,
                company_id=company_id,
                company_name=company_name,
                contact=contact,
                address=address,
            )
            self._session.add(invoice_licence)
            try:
                self._session.flush()
                return invoice_licence
            except IntegrityError as exc:
                duplicate_error = exc

        existing = self.find_invoice_licence(
            invoice_id=invoice_id,
            licence_number=licence_number,
        )
        if existing is None:
            if duplicate_error is not None:
                raise duplicate_error
            msg = "Failed to load row after idempotent insert attempt."
            raise RuntimeError(msg)
        return existing

    def list_for_batch(self, batch_id: UUID) -> list[Invoice]:
        """Invoices of a batch with licences and transactions loaded."""

        statement = (
            select(Invoice)
            .where(Invoice.batch_id == batch_id)
            .options(
                selectinload(Invoice.invoice_licences).selectinload(
                    InvoiceLicence.transactions
                )
            )
            .order_by(Invoice.invoice_account_number, Invoice.financial_year_ending)
            .execution_options(populate_existing=True)
        )
        return list(self._session.scalars(statement))

    def update_from_ledger(
        self,
        invoice: Invoice,
        *,
        external_id: str,
        net_total: Decimal | None,
        invoice_value: Decimal | None,
        credit_note_value: Decimal | None,
        is_de_minimis: bool,
        invoice_number: str | None,
    ) -> Invoice:
        invoice.external_id = external_id
        invoice.net_total = net_total
        invoice.invoice_value = invoice_value
        invoice.credit_note_value = credit_note_value
        invoice.is_de_minimis = is_de_minimis
        invoice.invoice_number = invoice_number
        self._session.flush()
        return invoice

    def delete_empty_for_batch(self, batch_id: UUID) -> tuple[int, int]:
        """Remove invoice licences without transactions, then empty invoices."""

        empty_licence_ids = list(
            self._session.scalars(
                select(InvoiceLicence.id)
                .join(Invoice, Invoice.id == InvoiceLicence.invoice_id)
                .where(
                    Invoice.batch_id == batch_id,
                    ~exists().where(
                        Transaction.invoice_licence_id == InvoiceLicence.id
                    ),
                )
            )
        )
        if empty_licence_ids:
            self._session.execute(
                delete(InvoiceLicence)
                .where(InvoiceLicence.id.in_(empty_licence_ids))
                .execution_options(synchronize_session=False)
            )

        empty_invoice_ids = list(
            self._session.scalars(
                select(Invoice.id).where(
                    Invoice.batch_id == batch_id,
                    ~exists().where(InvoiceLicence.invoice_id == Invoice.id),
                )
            )
        )
        if empty_invoice_ids:
            self._session.execute(
                delete(Invoice)
                .where(Invoice.id.in_(empty_invoice_ids))
                .execution_options(synchronize_session=False)
            )
        return len(empty_licence_ids), len(empty_invoice_ids)

    def delete_invoice(self, invoice_id: UUID) -> None:
        """Delete one invoice with its licences and transactions."""

        licence_ids = select(InvoiceLicence.id).where(
            InvoiceLicence.invoice_id == invoice_id
        )
        self._session.execute(
            delete(Transaction)
            .where(Transaction.invoice_licence_id.in_(licence_ids))
            .execution_options(synchronize_session=False)
        )
        self._session.execute(
            delete(InvoiceLicence)
            .where(InvoiceLicence.invoice_id == invoice_id)
            .execution_options(synchronize_session=False)
        )
        self._session.execute(
            delete(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(synchronize_session=False)
        )

    def delete_for_batch(self, batch_id: UUID) -> None:
        invoice_ids = select(Invoice.id).where(Invoice.batch_id == batch_id)
        self._session.execute(
            delete(InvoiceLicence)
            .where(InvoiceLicence.invoice_id.in_(invoice_ids))
            .execution_options(synchronize_session=False)
        )
        self._session.execute(
            delete(Invoice)
            .where(Invoice.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
