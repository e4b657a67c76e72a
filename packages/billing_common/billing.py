"""Utility billing domain models and helper functions.

These dataclasses describe utility providers, tenants and the bills that are
split between them. They intentionally avoid persistence and HTTP concerns so
the same models can be used by the Flask UI, the mailbox scanner and tests.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field, replace
from datetime import MAXYEAR, MINYEAR, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

CENT = Decimal("0.01")
# Keeps a period and both of its neighbours representable as dates.
FIRST_YEAR = MINYEAR + 1
LAST_YEAR = MAXYEAR - 1


class UtilityCategory(str, Enum):
    """Categories a utility provider can bill for."""

    WATER = "Water"
    GAS = "Gas"
    ELECTRICITY = "Electricity"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def parse(cls, raw: str) -> "UtilityCategory":
        """Return the category matching ``raw`` regardless of case.

        Raises:
            ValueError: When ``raw`` does not name a known category.
        """

        candidate = (raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == candidate:
                return member
        raise ValueError(f"Unknown utility category: {raw!r}")


def round_currency(amount: Decimal) -> Decimal:
    """Round ``amount`` to whole cents using half-up rounding."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Return ``amount`` expressed in cents for storage."""

    return int((Decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: Optional[int]) -> Decimal:
    return Decimal(cents or 0) / Decimal(100)


@dataclass(frozen=True, slots=True)
class BillingPeriod:
    """A calendar month identifying one billing cycle."""

    month: int
    year: int

    def __post_init__(self) -> None:
        if not 1 <= int(self.month) <= 12:
            raise ValueError("Month must be between 1 and 12.")
        if not FIRST_YEAR <= int(self.year) <= LAST_YEAR:
            raise ValueError(f"Year must be between {FIRST_YEAR} and {LAST_YEAR}.")

    @classmethod
    def containing(cls, moment: date) -> "BillingPeriod":
        """Return the period that contains ``moment``."""

        return cls(month=moment.month, year=moment.year)

    def bounds(self) -> Tuple[date, date]:
        """Return the half-open ``[start, end)`` date range of the period.

        ``end`` is the first day of the following month, so December rolls
        over to January of the next year.
        """

        if self.month == 12:
            end = date(self.year + 1, 1, 1)
        else:
            end = date(self.year, self.month + 1, 1)
        return date(self.year, self.month, 1), end

    def next(self) -> "BillingPeriod":
        """Return the following month; the last supported month returns itself."""

        if self.month == 12:
            if self.year == LAST_YEAR:
                return self
            return BillingPeriod(month=1, year=self.year + 1)
        return BillingPeriod(month=self.month + 1, year=self.year)

    def previous(self) -> "BillingPeriod":
        if self.month == 1:
            if self.year == FIRST_YEAR:
                return self
            return BillingPeriod(month=12, year=self.year - 1)
        return BillingPeriod(month=self.month - 1, year=self.year)

    @property
    def label(self) -> str:
        """Human readable label such as ``"January 2025"``."""

        return f"{calendar.month_name[self.month]} {self.year}"


@dataclass(slots=True)
class UtilityProvider:
    """A company that emails utility bills to the landlord."""

    user_id: str
    name: str
    category: UtilityCategory
    id: Optional[int] = None


@dataclass(slots=True)
class Tenant:
    """A tenant and the percentage of each utility category they pay."""

    user_id: str
    name: str
    email: str
    shares: Dict[str, Decimal] = field(default_factory=dict)
    secondary_name: Optional[str] = None
    outstanding_balance: Decimal = field(default_factory=Decimal)
    id: Optional[int] = None

    def share_for(self, category: str) -> Decimal:
        """Return the configured percentage for ``category`` (0 when unset)."""

        key = category.value if isinstance(category, UtilityCategory) else category
        return Decimal(self.shares.get(key) or 0)


@dataclass(slots=True)
class UtilityBill:
    """Raw amount found in the mailbox for one provider and period."""

    provider: UtilityProvider
    amount: Decimal
    month: int
    year: int
    message_ids: Tuple[str, ...] = ()

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(month=self.month, year=self.year)


@dataclass(slots=True)
class CategoryCharge:
    """Amount billed for one category within a consolidated bill."""

    provider_id: Optional[int]
    provider_name: str
    amount: Decimal
    message_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "amount_cents": to_minor_units(self.amount),
            "message_ids": list(self.message_ids),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "CategoryCharge":
        return cls(
            provider_id=payload.get("provider_id"),  # type: ignore[arg-type]
            provider_name=str(payload.get("provider_name") or ""),
            amount=from_minor_units(payload.get("amount_cents")),  # type: ignore[arg-type]
            message_ids=tuple(payload.get("message_ids") or ()),  # type: ignore[arg-type]
        )


@dataclass(slots=True)
class ConsolidatedBill:
    """All utility charges for one period, keyed by category."""

    user_id: str
    month: int
    year: int
    categories: Dict[str, CategoryCharge] = field(default_factory=dict)
    total_amount: Decimal = field(default_factory=Decimal)
    tenant_id: Optional[int] = None
    paid: bool = False
    date_sent: Optional[datetime] = None
    date_paid: Optional[datetime] = None
    payment_message_id: Optional[str] = None
    id: Optional[int] = None

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(month=self.month, year=self.year)


@dataclass(slots=True)
class TenantShare:
    """Dollar amounts a tenant owes for a consolidated bill."""

    tenant: Tenant
    shares: Dict[str, Decimal]
    total: Decimal

    @property
    def amount_due(self) -> Decimal:
        """Share for the period plus the tenant's carried-over balance."""

        return self.total + self.tenant.outstanding_balance

    def percentage_for(self, category: str) -> Decimal:
        return self.tenant.share_for(category)


@dataclass(slots=True)
class Payment:
    """Payment notification parsed from a tenant email."""

    message_id: str
    date: str
    sent_from: str
    amount: Decimal


def consolidate_bills(
    user_id: str, bills: Iterable[UtilityBill], month: int, year: int
) -> ConsolidatedBill:
    """Fold raw provider bills for one period into a :class:`ConsolidatedBill`.

    Providers sharing a category are summed into a single
    :class:`CategoryCharge`. The returned bill is not addressed to a tenant;
    use :func:`address_to_tenant` for that.

    Raises:
        ValueError: When a bill belongs to a different period.
    """

    period = BillingPeriod(month=month, year=year)
    categories: Dict[str, CategoryCharge] = {}
    for bill in bills:
        if bill.period != period:
            raise ValueError(
                f"Bill for {bill.provider.name} belongs to {bill.period.label}, "
                f"not {period.label}."
            )
        key = UtilityCategory(bill.provider.category).value
        existing = categories.get(key)
        if existing is None:
            categories[key] = CategoryCharge(
                provider_id=bill.provider.id,
                provider_name=bill.provider.name,
                amount=Decimal(bill.amount),
                message_ids=tuple(bill.message_ids),
            )
            continue
        categories[key] = CategoryCharge(
            provider_id=existing.provider_id,
            provider_name=f"{existing.provider_name} + {bill.provider.name}",
            amount=existing.amount + Decimal(bill.amount),
            message_ids=existing.message_ids + tuple(bill.message_ids),
        )
    return ConsolidatedBill(
        user_id=user_id,
        month=period.month,
        year=period.year,
        categories=categories,
        total_amount=total_of(categories.values()),
    )


def total_of(charges: Iterable[CategoryCharge]) -> Decimal:
    """Return the sum of category amounts."""

    return sum((charge.amount for charge in charges), Decimal())


def compute_tenant_share(bill: ConsolidatedBill, tenant: Tenant) -> TenantShare:
    """Derive ``tenant``'s dollar share of each category in ``bill``."""

    shares: Dict[str, Decimal] = {}
    for category, charge in bill.categories.items():
        shares[category] = charge.amount * tenant.share_for(category) / Decimal(100)
    return TenantShare(
        tenant=tenant,
        shares=shares,
        total=sum(shares.values(), Decimal()),
    )


def address_to_tenant(bill: ConsolidatedBill, tenant_id: int) -> ConsolidatedBill:
    """Return a copy of ``bill`` addressed to ``tenant_id``."""

    return replace(bill, tenant_id=tenant_id, categories=dict(bill.categories))
