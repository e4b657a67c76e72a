"""Form parsing and validation helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Tuple

from packages.billing_common import BillingPeriod, UtilityCategory

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SHARE_FIELD_PREFIX = "shares_"
MAX_NAME_LENGTH = 120


@dataclass(slots=True)
class ProviderFormData:
    """Validated provider details returned by :func:`parse_provider_form`."""

    name: str
    category: UtilityCategory


@dataclass(slots=True)
class TenantFormData:
    """Validated tenant details returned by :func:`parse_tenant_form`."""

    name: str
    email: str
    secondary_name: Optional[str]
    shares: Dict[str, Decimal]


def share_field_name(category: str) -> str:
    return f"{SHARE_FIELD_PREFIX}{category}"


def parse_provider_form(
    form: Mapping[str, str]
) -> Tuple[Optional[ProviderFormData], List[str]]:
    """Validate a provider form submission.

    Returns a tuple of ``(result, errors)``. ``result`` is ``None`` when
    validation fails.
    """

    errors: List[str] = []
    name = form.get("name", "").strip()
    if not name:
        errors.append("Provider name is required.")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Provider name must be at most {MAX_NAME_LENGTH} characters.")

    category: Optional[UtilityCategory] = None
    try:
        category = UtilityCategory.parse(form.get("category", ""))
    except ValueError:
        errors.append(
            "Category must be one of: " + ", ".join(UtilityCategory.values()) + "."
        )

    if errors or category is None:
        return None, errors
    return ProviderFormData(name=name, category=category), []


def parse_tenant_form(
    form: Mapping[str, str]
) -> Tuple[Optional[TenantFormData], List[str]]:
    """Validate a tenant form submission.

    Share percentages are read from ``shares_<Category>`` fields. Blank
    fields mean the tenant pays nothing for that category.
    """

    errors: List[str] = []
    name = form.get("name", "").strip()
    email = form.get("email", "").strip()
    secondary_name = form.get("secondary_name", "").strip() or None

    if not name:
        errors.append("Tenant name is required.")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Tenant name must be at most {MAX_NAME_LENGTH} characters.")
    if not email:
        errors.append("Tenant email is required.")
    elif not EMAIL_RE.match(email):
        errors.append("Tenant email must be a valid email address.")

    shares: Dict[str, Decimal] = {}
    for category in UtilityCategory.values():
        raw = form.get(share_field_name(category), "").strip()
        if not raw:
            continue
        try:
            value = Decimal(raw)
        except (InvalidOperation, ValueError):
            errors.append(f"{category} share must be a valid number.")
            continue
        if not value.is_finite() or value < 0 or value > 100:
            errors.append(f"{category} share must be between 0 and 100.")
            continue
        shares[category] = value

    if errors:
        return None, errors
    return (
        TenantFormData(
            name=name, email=email, secondary_name=secondary_name, shares=shares
        ),
        [],
    )


def parse_balance_form(form: Mapping[str, str]) -> Tuple[Optional[Decimal], List[str]]:
    """Validate an outstanding balance submission. Negative values are credit."""

    raw = form.get("outstanding_balance", "").strip()
    if not raw:
        return None, ["Outstanding balance is required."]
    try:
        value = Decimal(raw.replace("$", "").replace(",", ""))
    except (InvalidOperation, ValueError):
        return None, ["Outstanding balance must be a valid number."]
    if not value.is_finite():
        return None, ["Outstanding balance must be a valid number."]
    return value, []


def parse_period_args(
    args: Mapping[str, str], today: Optional[date] = None
) -> Tuple[BillingPeriod, List[str]]:
    """Return the period selected by ``month`` and ``year`` query arguments.

    Missing or invalid values fall back to the month containing ``today``;
    the errors list explains what was ignored.
    """

    fallback = BillingPeriod.containing(today or date.today())
    errors: List[str] = []
    month_raw = (args.get("month") or "").strip()
    year_raw = (args.get("year") or "").strip()
    if not month_raw and not year_raw:
        return fallback, []

    try:
        month = int(month_raw) if month_raw else fallback.month
        year = int(year_raw) if year_raw else fallback.year
        return BillingPeriod(month=month, year=year), []
    except ValueError:
        errors.append("Invalid billing period; showing the current month instead.")
    return fallback, errors
