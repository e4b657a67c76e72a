"""Business logic helpers for the bill manager UI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from flask import render_template

from packages.billing_common import (
    ConsolidatedBill,
    Tenant,
    TenantShare,
    UtilityCategory,
    compute_tenant_share,
    round_currency,
)


@dataclass(slots=True)
class EmailContent:
    """Subject and bodies of a bill breakdown email."""

    subject: str
    html: str
    text: str


@dataclass(slots=True)
class BreakdownRow:
    """One provider line of a tenant's bill breakdown."""

    category: str
    provider_name: str
    total: object
    percentage: object
    share: object


def categories_for_select() -> Iterable[str]:
    """Return categories presented in provider and tenant forms."""

    return UtilityCategory.values()


def breakdown_rows(bill: ConsolidatedBill, share: TenantShare) -> List[BreakdownRow]:
    """Return display rows pairing each category charge with the tenant share."""

    return [
        BreakdownRow(
            category=category,
            provider_name=charge.provider_name,
            total=round_currency(charge.amount),
            percentage=share.percentage_for(category),
            share=round_currency(share.shares.get(category, 0)),
        )
        for category, charge in bill.categories.items()
    ]


def bill_email_subject(bill: ConsolidatedBill) -> str:
    return f"Utility Bills for {bill.period.label.replace(' ', ' of ', 1)}"


def build_preview(bill: ConsolidatedBill, tenant: Tenant) -> str:
    """Render a plain-text breakdown of ``tenant``'s share of ``bill``."""

    share = compute_tenant_share(bill, tenant)
    lines = [
        f"Hello {tenant.name},",
        "",
        f"Here is your utility bill breakdown for {bill.period.label}.",
        "",
    ]
    rows = breakdown_rows(bill, share)
    if not rows:
        lines.append("  - No utility charges recorded for this period.")
    for row in rows:
        lines.append(
            f"  - {row.category} ({row.provider_name}): ${row.total:.2f} total | "
            f"{row.percentage}% | your share ${row.share:.2f}"
        )
    lines.extend(
        [
            "",
            f"Your share for this month: ${round_currency(share.total):.2f}",
            f"Outstanding balance: ${round_currency(tenant.outstanding_balance):.2f}",
            f"Total amount due: ${round_currency(share.amount_due):.2f}",
        ]
    )
    return "\n".join(lines)


def build_bill_email(bill: ConsolidatedBill, tenant: Tenant) -> EmailContent:
    """Build the email sent to ``tenant`` for ``bill``.

    Requires an active Flask application context for template rendering.
    """

    share = compute_tenant_share(bill, tenant)
    html = render_template(
        "emails/bill_breakdown.html",
        bill=bill,
        tenant=tenant,
        rows=breakdown_rows(bill, share),
        tenant_total=round_currency(share.total),
        outstanding=round_currency(tenant.outstanding_balance),
        amount_due=round_currency(share.amount_due),
    )
    return EmailContent(
        subject=bill_email_subject(bill),
        html=html,
        text=build_preview(bill, tenant),
    )
