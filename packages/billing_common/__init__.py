"""Common domain models and helpers shared by the utility bill apps."""

from .billing import (
    BillingPeriod,
    CategoryCharge,
    ConsolidatedBill,
    Payment,
    Tenant,
    TenantShare,
    UtilityBill,
    UtilityCategory,
    UtilityProvider,
    address_to_tenant,
    compute_tenant_share,
    consolidate_bills,
    from_minor_units,
    round_currency,
    to_minor_units,
    total_of,
)

__all__ = [
    "BillingPeriod",
    "CategoryCharge",
    "ConsolidatedBill",
    "Payment",
    "Tenant",
    "TenantShare",
    "UtilityBill",
    "UtilityCategory",
    "UtilityProvider",
    "address_to_tenant",
    "compute_tenant_share",
    "consolidate_bills",
    "from_minor_units",
    "round_currency",
    "to_minor_units",
    "total_of",
]
