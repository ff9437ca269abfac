"""ORM models for the water_billing domain."""

from water_billing.db.models.batch import (
    Batch,
    BatchErrorCode,
    BatchSeason,
    BatchStatus,
    BatchType,
)
from water_billing.db.models.billing_job import (
    BillingJob,
    BillingJobStatus,
    BillingStageLock,
)
from water_billing.db.models.billing_volume import BillingVolume
from water_billing.db.models.charge_version import (
    ChargeElement,
    ChargeVersion,
    ChargeVersionStatus,
)
from water_billing.db.models.charge_version_year import (
    ChargeVersionYear,
    ChargeVersionYearStatus,
    TransactionType,
)
from water_billing.db.models.invoice import Invoice, InvoiceLicence
from water_billing.db.models.licence import Licence
from water_billing.db.models.licence_agreement import LicenceAgreement
from water_billing.db.models.region import Region
from water_billing.db.models.return_requirement import (
    ReturnRequirement,
    ReturnRequirementStatus,
)
from water_billing.db.models.transaction import Transaction, TransactionStatus

__all__ = [
    "Batch",
    "BatchErrorCode",
    "BatchSeason",
    "BatchStatus",
    "BatchType",
    "BillingJob",
    "BillingJobStatus",
    "BillingStageLock",
    "BillingVolume",
    "ChargeElement",
    "ChargeVersion",
    "ChargeVersionStatus",
    "ChargeVersionYear",
    "ChargeVersionYearStatus",
    "Invoice",
    "InvoiceLicence",
    "Licence",
    "LicenceAgreement",
    "Region",
    "ReturnRequirement",
    "ReturnRequirementStatus",
    "Transaction",
    "TransactionStatus",
]
