"""Create licence inputs, batch outputs and billing job queue tables.

Revision ID: 001_create_billing_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_create_billing_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

UUID = postgresql.UUID(as_uuid=True)

charge_version_status_enum = sa.Enum(
    "current", "superseded", "draft", name="charge_version_status"
)
charge_element_source_enum = sa.Enum(
    "supported", "unsupported", "tidal", "kielder", name="charge_element_source"
)
charge_element_season_enum = sa.Enum(
    "summer", "winter", "all year", name="charge_element_season"
)
charge_element_loss_enum = sa.Enum(
    "high", "medium", "low", "very low", name="charge_element_loss"
)
return_requirement_status_enum = sa.Enum(
    "current", "superseded", "draft", name="return_requirement_status"
)
batch_type_enum = sa.Enum(
    "annual", "supplementary", "two_part_tariff", name="batch_type"
)
batch_season_enum = sa.Enum(
    "summer", "winter_all_year", "all_year", name="batch_season"
)
batch_status_enum = sa.Enum(
    "processing", "ready", "sent", "empty", "error", name="batch_status"
)
batch_error_code_enum = sa.Enum(
    "failed_to_populate_charge_versions",
    "failed_to_process_charge_versions",
    "failed_to_prepare_transactions",
    "failed_to_create_charge",
    "failed_to_refresh_totals",
    "failed_to_delete_batch",
    name="batch_error_code",
)
transaction_type_enum = sa.Enum("annual", "two_part_tariff", name="transaction_type")
charge_version_year_status_enum = sa.Enum(
    "processing", "ready", "error", name="charge_version_year_status"
)
transaction_status_enum = sa.Enum(
    "candidate", "charge_created", "approved", "error", name="transaction_status"
)
billing_job_status_enum = sa.Enum(
    "pending", "active", "completed", "failed", name="billing_job_status"
)

ALL_ENUMS = (
    charge_version_status_enum,
    charge_element_source_enum,
    charge_element_season_enum,
    charge_element_loss_enum,
    return_requirement_status_enum,
    batch_type_enum,
    batch_season_enum,
    batch_status_enum,
    batch_error_code_enum,
    transaction_type_enum,
    charge_version_year_status_enum,
    transaction_status_enum,
    billing_job_status_enum,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def _flag(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.false())


def _create_input_tables() -> None:
    op.create_table(
        "regions",
        sa.Column("id", UUID, nullable=False),
        sa.Column("code", sa.String(length=8), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_regions_code"),
    )

    op.create_table(
        "licences",
        sa.Column("id", UUID, nullable=False),
        sa.Column("licence_number", sa.String(length=64), nullable=False),
        sa.Column("region_id", UUID, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        _flag("is_water_undertaker"),
        sa.Column("regional_charging_area", sa.String(length=64), nullable=False),
        sa.Column("historical_area_code", sa.String(length=16), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["region_id"], ["regions.id"], name="fk_licences_region_id"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("licence_number", name="uq_licences_licence_number"),
    )

    op.create_table(
        "charge_versions",
        sa.Column("id", UUID, nullable=False),
        sa.Column("licence_id", UUID, nullable=False),
        sa.Column("status", charge_version_status_enum, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        _flag("is_two_part_tariff"),
        _flag("include_in_supplementary_billing"),
        _created_at(),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_charge_versions_date_range",
        ),
        sa.ForeignKeyConstraint(
            ["licence_id"], ["licences.id"], name="fk_charge_versions_licence_id"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_charge_versions_licence_status",
        "charge_versions",
        ["licence_id", "status"],
    )

    op.create_table(
        "charge_elements",
        sa.Column("id", UUID, nullable=False),
        sa.Column("charge_version_id", UUID, nullable=False),
        sa.Column("abstraction_period_start_day", sa.SmallInteger(), nullable=False),
        sa.Column("abstraction_period_start_month", sa.SmallInteger(), nullable=False),
        sa.Column("abstraction_period_end_day", sa.SmallInteger(), nullable=False),
        sa.Column("abstraction_period_end_month", sa.SmallInteger(), nullable=False),
        sa.Column("authorised_annual_quantity", sa.Numeric(20, 6), nullable=False),
        sa.Column("billable_annual_quantity", sa.Numeric(20, 6), nullable=True),
        sa.Column("source", charge_element_source_enum, nullable=False),
        sa.Column("season", charge_element_season_enum, nullable=False),
        sa.Column("loss", charge_element_loss_enum, nullable=False),
        sa.Column("purpose_use_code", sa.String(length=16), nullable=False),
        sa.Column("purpose_use_name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("time_limited_start_date", sa.Date(), nullable=True),
        sa.Column("time_limited_end_date", sa.Date(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "authorised_annual_quantity >= 0",
            name="ck_charge_elements_authorised_non_negative",
        ),
        sa.CheckConstraint(
            "billable_annual_quantity IS NULL OR billable_annual_quantity >= 0",
            name="ck_charge_elements_billable_non_negative",
        ),
        sa.ForeignKeyConstraint(
            ["charge_version_id"],
            ["charge_versions.id"],
            name="fk_charge_elements_charge_version_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "licence_agreements",
        sa.Column("id", UUID, nullable=False),
        sa.Column("licence_id", UUID, nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("factor", sa.Numeric(8, 4), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["licence_id"],
            ["licences.id"],
            name="fk_licence_agreements_licence_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_licence_agreements_licence_id", "licence_agreements", ["licence_id"]
    )

    op.create_table(
        "return_requirements",
        sa.Column("id", UUID, nullable=False),
        sa.Column("licence_id", UUID, nullable=False),
        sa.Column("status", return_requirement_status_enum, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_summer", sa.Boolean(), nullable=False),
        _flag("is_two_part_tariff"),
        sa.ForeignKeyConstraint(
            ["licence_id"],
            ["licences.id"],
            name="fk_return_requirements_licence_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_return_requirements_licence_id", "return_requirements", ["licence_id"]
    )

    op.create_table(
        "billing_volumes",
        sa.Column("id", UUID, nullable=False),
        sa.Column("charge_element_id", UUID, nullable=False),
        sa.Column("financial_year_ending", sa.Integer(), nullable=False),
        sa.Column("is_summer", sa.Boolean(), nullable=False),
        sa.Column("calculated_volume", sa.Numeric(20, 6), nullable=True),
        sa.Column("volume", sa.Numeric(20, 6), nullable=True),
        _flag("is_approved"),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["charge_element_id"],
            ["charge_elements.id"],
            name="fk_billing_volumes_charge_element_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_billing_volumes_element_year_season",
        "billing_volumes",
        ["charge_element_id", "financial_year_ending", "is_summer"],
        unique=True,
    )


def _create_batch_tables() -> None:
    op.create_table(
        "batches",
        sa.Column("id", UUID, nullable=False),
        sa.Column("region_id", UUID, nullable=False),
        sa.Column("batch_type", batch_type_enum, nullable=False),
        sa.Column("season", batch_season_enum, nullable=False),
        sa.Column("start_financial_year_ending", sa.Integer(), nullable=False),
        sa.Column("end_financial_year_ending", sa.Integer(), nullable=False),
        sa.Column("status", batch_status_enum, nullable=False),
        sa.Column("error_code", batch_error_code_enum, nullable=True),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("bill_run_number", sa.Integer(), nullable=True),
        sa.Column("invoice_count", sa.Integer(), nullable=True),
        sa.Column("credit_note_count", sa.Integer(), nullable=True),
        sa.Column("invoice_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("credit_note_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("net_total", sa.Numeric(14, 2), nullable=True),
        sa.Column("prepared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generate_requested_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "start_financial_year_ending <= end_financial_year_ending",
            name="ck_batches_financial_year_order",
        ),
        sa.CheckConstraint(
            "(status = 'error' AND error_code IS NOT NULL) "
            "OR (status != 'error' AND error_code IS NULL)",
            name="ck_batches_error_code_matches_status",
        ),
        sa.ForeignKeyConstraint(
            ["region_id"], ["regions.id"], name="fk_batches_region_id"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_batches_region_status", "batches", ["region_id", "status"])

    op.create_table(
        "charge_version_years",
        sa.Column("id", UUID, nullable=False),
        sa.Column("batch_id", UUID, nullable=False),
        sa.Column("charge_version_id", UUID, nullable=False),
        sa.Column("financial_year_ending", sa.Integer(), nullable=False),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("is_summer", sa.Boolean(), nullable=False),
        sa.Column("status", charge_version_year_status_enum, nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["batches.id"],
            name="fk_charge_version_years_batch_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["charge_version_id"],
            ["charge_versions.id"],
            name="fk_charge_version_years_charge_version_id",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_charge_version_years_unit",
        "charge_version_years",
        [
            "batch_id",
            "charge_version_id",
            "financial_year_ending",
            "transaction_type",
            "is_summer",
        ],
        unique=True,
    )
    op.create_index(
        "ix_charge_version_years_batch_status",
        "charge_version_years",
        ["batch_id", "status"],
    )

    op.create_table(
        "invoices",
        sa.Column("id", UUID, nullable=False),
        sa.Column("batch_id", UUID, nullable=False),
        sa.Column("invoice_account_id", sa.String(length=64), nullable=False),
        sa.Column("invoice_account_number", sa.String(length=32), nullable=False),
        sa.Column("financial_year_ending", sa.Integer(), nullable=False),
        sa.Column("net_total", sa.Numeric(14, 2), nullable=True),
        sa.Column("invoice_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("credit_note_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("invoice_number", sa.String(length=32), nullable=True),
        _flag("is_de_minimis"),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["batches.id"],
            name="fk_invoices_batch_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_invoices_batch_account_year",
        "invoices",
        ["batch_id", "invoice_account_number", "financial_year_ending"],
        unique=True,
    )

    op.create_table(
        "invoice_licences",
        sa.Column("id", UUID, nullable=False),
        sa.Column("invoice_id", UUID, nullable=False),
        sa.Column("licence_id", UUID, nullable=False),
        sa.Column("licence_number", sa.String(length=64), nullable=False),
        sa.Column("company_id", sa.String(length=64), nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("contact", postgresql.JSONB(), nullable=True),
        sa.Column("address", postgresql.JSONB(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["invoice_id"],
            ["invoices.id"],
            name="fk_invoice_licences_invoice_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["licence_id"], ["licences.id"], name="fk_invoice_licences_licence_id"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_invoice_licences_invoice_licence",
        "invoice_licences",
        ["invoice_id", "licence_number"],
        unique=True,
    )

    factor = sa.Numeric(10, 6)
    op.create_table(
        "transactions",
        sa.Column("id", UUID, nullable=False),
        sa.Column("batch_id", UUID, nullable=False),
        sa.Column("invoice_licence_id", UUID, nullable=False),
        sa.Column("charge_version_year_id", UUID, nullable=True),
        sa.Column("charge_element_id", UUID, nullable=True),
        sa.Column("source_transaction_id", UUID, nullable=True),
        sa.Column("status", transaction_status_enum, nullable=False),
        sa.Column("value", sa.Numeric(14, 2), nullable=True),
        _flag("is_credit"),
        sa.Column("charge_period_start", sa.Date(), nullable=False),
        sa.Column("charge_period_end", sa.Date(), nullable=False),
        sa.Column("billable_days", sa.Integer(), nullable=False),
        sa.Column("authorised_days", sa.Integer(), nullable=False),
        sa.Column("volume", sa.Numeric(20, 6), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_compensation_charge", sa.Boolean(), nullable=False),
        sa.Column("is_new_licence", sa.Boolean(), nullable=False),
        sa.Column("is_two_part_tariff", sa.Boolean(), nullable=False),
        sa.Column("agreements", postgresql.JSONB(), nullable=False),
        sa.Column("section_126_factor", sa.Numeric(8, 4), nullable=True),
        sa.Column("invoice_account_number", sa.String(length=32), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("season", sa.String(length=32), nullable=False),
        sa.Column("loss", sa.String(length=32), nullable=False),
        sa.Column("licence_number", sa.String(length=64), nullable=False),
        sa.Column("region_code", sa.String(length=8), nullable=False),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _flag("is_minimum_charge"),
        _flag("is_de_minimis"),
        _flag("is_volume_review_required"),
        sa.Column("calc_source_factor", factor, nullable=True),
        sa.Column("calc_season_factor", factor, nullable=True),
        sa.Column("calc_loss_factor", factor, nullable=True),
        sa.Column("calc_suc_factor", factor, nullable=True),
        sa.Column("calc_s126_factor", sa.String(length=32), nullable=True),
        sa.Column("calc_s127_factor", sa.String(length=32), nullable=True),
        sa.Column("calc_eiuc_factor", factor, nullable=True),
        sa.Column("calc_eiuc_source_factor", factor, nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "billable_days >= 0 AND authorised_days >= 0",
            name="ck_transactions_days_non_negative",
        ),
        sa.CheckConstraint(
            "charge_period_end >= charge_period_start",
            name="ck_transactions_charge_period_order",
        ),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["batches.id"],
            name="fk_transactions_batch_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["invoice_licence_id"],
            ["invoice_licences.id"],
            name="fk_transactions_invoice_licence_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["charge_version_year_id"],
            ["charge_version_years.id"],
            name="fk_transactions_charge_version_year_id",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["charge_element_id"],
            ["charge_elements.id"],
            name="fk_transactions_charge_element_id",
        ),
        sa.ForeignKeyConstraint(
            ["source_transaction_id"],
            ["transactions.id"],
            name="fk_transactions_source_transaction_id",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_transactions_batch_status", "transactions", ["batch_id", "status"]
    )
    op.create_index("ix_transactions_fingerprint", "transactions", ["fingerprint"])
    op.create_index(
        "ix_transactions_external_id",
        "transactions",
        ["external_id"],
        postgresql_where=sa.text("external_id IS NOT NULL"),
    )


def _create_job_tables() -> None:
    op.create_table(
        "billing_jobs",
        sa.Column("id", UUID, nullable=False),
        sa.Column("job_key", sa.String(length=255), nullable=False),
        sa.Column("stage_name", sa.String(length=64), nullable=False),
        sa.Column("batch_id", UUID, nullable=False),
        sa.Column("message", postgresql.JSONB(), nullable=False),
        sa.Column("status", billing_job_status_enum, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retry_limit", sa.Integer(), nullable=False),
        sa.Column("backoff_seconds", sa.Float(), nullable=False),
        sa.Column("poll_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "attempts >= 0", name="ck_billing_jobs_attempts_non_negative"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("uq_billing_jobs_job_key", "billing_jobs", ["job_key"], unique=True)
    op.create_index(
        "ix_billing_jobs_status_run_after", "billing_jobs", ["status", "run_after"]
    )
    op.create_index("ix_billing_jobs_batch_id", "billing_jobs", ["batch_id"])
    op.create_table(
        "billing_stage_locks",
        sa.Column("stage_name", sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint("stage_name"),
    )


def upgrade() -> None:
    _create_input_tables()
    _create_batch_tables()
    _create_job_tables()


def downgrade() -> None:
    for table_name in (
        "billing_stage_locks",
        "billing_jobs",
        "transactions",
        "invoice_licences",
        "invoices",
        "charge_version_years",
        "batches",
        "billing_volumes",
        "return_requirements",
        "licence_agreements",
        "charge_elements",
        "charge_versions",
        "licences",
        "regions",
    ):
        op.drop_table(table_name)
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.drop(bind, checkfirst=True)
