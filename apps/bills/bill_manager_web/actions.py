"""User-facing operations invoked by the blueprints.

Each action returns an :class:`ActionResult`. Domain errors raised by the
repository or mailbox surface their own message; anything unexpected is
logged and replaced by the action's generic message so tracebacks never
reach the browser. :class:`~bill_manager_web.errors.AuthError` is re-raised
so the application error handler can send the user back to the login page.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional, TypeVar

from packages.billing_common import (
    BillingPeriod,
    ConsolidatedBill,
    Tenant,
    TenantShare,
    UtilityCategory,
    UtilityProvider,
    address_to_tenant,
    compute_tenant_share,
    consolidate_bills,
)

from .accounts import AccountUser
from .errors import AuthError, BillManagerError, NotFoundError
from .mail_limits import MailLimits, enforce_mail_rate_limit, log_email_dispatch
from .mailbox import Mailbox, fetch_bills, find_payment
from .repositories import BillsRepository, utcnow
from .services import build_bill_email

logger = logging.getLogger(__name__)

T = TypeVar("T")

BILL_EMAIL_FEATURE = "bill_email"


@dataclass(slots=True)
class ActionResult:
    """Outcome of an action: ``data`` on success, ``error`` otherwise."""

    success: bool
    data: Any = None
    error: Optional[str] = None


@dataclass(slots=True)
class DashboardData:
    """Everything the dashboard renders for one billing period."""

    user: AccountUser
    period: BillingPeriod
    providers: List[UtilityProvider]
    tenants: List[Tenant]
    bill: ConsolidatedBill
    tenant_shares: List[TenantShare]
    saved_bills: List[ConsolidatedBill] = field(default_factory=list)
    last_month_bills: List[ConsolidatedBill] = field(default_factory=list)
    last_month_total: Decimal = field(default_factory=Decimal)
    outstanding_total: Decimal = field(default_factory=Decimal)


def action(default_message: str) -> Callable[[Callable[..., T]], Callable[..., ActionResult]]:
    """Wrap a function so it returns an :class:`ActionResult`.

    Args:
        default_message: Error shown when an unexpected exception occurs.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., ActionResult]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> ActionResult:
            try:
                return ActionResult(success=True, data=func(*args, **kwargs))
            except AuthError:
                raise
            except BillManagerError as exc:
                logger.info("%s failed: %s", func.__name__, exc)
                return ActionResult(success=False, error=str(exc))
            except Exception:
                logger.exception("Unexpected error in %s", func.__name__)
                return ActionResult(success=False, error=default_message)

        return wrapper

    return decorator


def _consolidated_for(
    repo: BillsRepository, mailbox: Mailbox, user: AccountUser, period: BillingPeriod
) -> ConsolidatedBill:
    providers = repo.list_providers(user.id)
    raw_bills = fetch_bills(mailbox, providers, period)
    return consolidate_bills(user.id, raw_bills, period.month, period.year)


# Dashboard ---------------------------------------------------------------


@action("Failed to fetch dashboard data")
def load_dashboard(
    repo: BillsRepository, mailbox: Mailbox, user: AccountUser, period: BillingPeriod
) -> DashboardData:
    """Fetch bills for ``period`` and derive every tenant's share."""

    providers = repo.list_providers(user.id)
    tenants = repo.list_tenants(user.id)
    bill = consolidate_bills(
        user.id, fetch_bills(mailbox, providers, period), period.month, period.year
    )
    last_month_bills = repo.list_consolidated_bills(user.id, period.previous())
    return DashboardData(
        user=user,
        period=period,
        providers=providers,
        tenants=tenants,
        bill=bill,
        tenant_shares=[compute_tenant_share(bill, tenant) for tenant in tenants],
        saved_bills=repo.list_consolidated_bills(user.id, period),
        last_month_bills=last_month_bills,
        # Saved bills of one period all carry the same household total.
        last_month_total=last_month_bills[0].total_amount if last_month_bills else Decimal(),
        outstanding_total=sum(
            (tenant.outstanding_balance for tenant in tenants), Decimal()
        ),
    )


# Consolidated bills --------------------------------------------------------


@action("Failed to save bill")
def save_tenant_bill(
    repo: BillsRepository,
    mailbox: Mailbox,
    user: AccountUser,
    tenant_id: int,
    period: BillingPeriod,
) -> ConsolidatedBill:
    """Recompute ``period`` and save a copy addressed to ``tenant_id``."""

    tenant = repo.get_tenant(user.id, tenant_id)
    bill = _consolidated_for(repo, mailbox, user, period)
    saved = repo.add_consolidated_bill(address_to_tenant(bill, tenant.id))
    logger.info("Saved bill %s for tenant %s (%s)", saved.id, tenant.id, period.label)
    return saved


@action("Failed to send email")
def send_bill_email(
    repo: BillsRepository,
    mailbox: Mailbox,
    user: AccountUser,
    bill_id: int,
    limits: MailLimits,
) -> str:
    """Email the tenant their breakdown and mark the bill as sent.

    Returns:
        str: Gmail message ID of the sent email.

    Raises:
        NotFoundError: When the bill is unknown or not addressed to a tenant.
        MailRateLimitError: When the configured send limits are exhausted.
    """

    bill = repo.get_consolidated_bill(user.id, bill_id)
    tenant = _tenant_for(repo, user, bill)
    enforce_mail_rate_limit(repo, limits, user.id, tenant.email)
    content = build_bill_email(bill, tenant)
    message_id = mailbox.send(tenant.email, content.subject, content.html, content.text)
    repo.mark_bill_sent(user.id, bill.id)
    log_email_dispatch(repo, BILL_EMAIL_FEATURE, user.id, tenant.email)
    logger.info("Sent bill %s to tenant %s as message %s", bill.id, tenant.id, message_id)
    return message_id


@action("Failed to update bill")
def mark_bill_paid(
    repo: BillsRepository,
    user: AccountUser,
    bill_id: int,
    payment_message_id: Optional[str] = None,
) -> ConsolidatedBill:
    repo.mark_bill_paid(user.id, bill_id, payment_message_id=payment_message_id)
    return repo.get_consolidated_bill(user.id, bill_id)


@action("Failed to check payment")
def check_bill_payment(
    repo: BillsRepository,
    mailbox: Mailbox,
    user: AccountUser,
    bill_id: int,
    today: Optional[date] = None,
) -> Optional[str]:
    """Look for the tenant's payment email since the bill was sent.

    Returns the payment message ID when one is found (the bill is then marked
    paid) and ``None`` otherwise.
    """

    bill = repo.get_consolidated_bill(user.id, bill_id)
    if bill.paid:
        return bill.payment_message_id
    tenant = _tenant_for(repo, user, bill)
    sent = bill.date_sent or datetime(bill.year, bill.month, 1)
    start = sent.date() if isinstance(sent, datetime) else sent
    # Gmail treats before: as exclusive.
    end = (today or utcnow().date()) + timedelta(days=1)
    payment = find_payment(mailbox, tenant, start, end)
    if payment is None:
        return None
    repo.mark_bill_paid(user.id, bill.id, payment_message_id=payment.message_id)
    logger.info("Bill %s paid by tenant %s (%s)", bill.id, tenant.id, payment.message_id)
    return payment.message_id


@action("Failed to delete bill")
def delete_bill(repo: BillsRepository, user: AccountUser, bill_id: int) -> None:
    repo.delete_consolidated_bill(user.id, bill_id)


def _tenant_for(
    repo: BillsRepository, user: AccountUser, bill: ConsolidatedBill
) -> Tenant:
    if bill.tenant_id is None:
        raise NotFoundError("Bill is not addressed to a tenant.")
    return repo.get_tenant(user.id, bill.tenant_id)


# Providers -----------------------------------------------------------------


@action("Failed to create provider")
def create_provider(
    repo: BillsRepository, user: AccountUser, name: str, category: UtilityCategory
) -> UtilityProvider:
    return repo.add_provider(
        UtilityProvider(user_id=user.id, name=name, category=category)
    )


@action("Failed to update provider")
def update_provider(
    repo: BillsRepository,
    user: AccountUser,
    provider_id: int,
    name: str,
    category: UtilityCategory,
) -> None:
    repo.update_provider(user.id, provider_id, name=name, category=category)


@action("Failed to delete provider")
def delete_provider(repo: BillsRepository, user: AccountUser, provider_id: int) -> None:
    repo.delete_provider(user.id, provider_id)


# Tenants -------------------------------------------------------------------


@action("Failed to create tenant")
def create_tenant(
    repo: BillsRepository,
    user: AccountUser,
    name: str,
    email: str,
    shares: Mapping[str, Decimal],
    secondary_name: Optional[str] = None,
) -> Tenant:
    return repo.add_tenant(
        Tenant(
            user_id=user.id,
            name=name,
            email=email,
            shares=dict(shares),
            secondary_name=secondary_name,
        )
    )


@action("Failed to update tenant")
def update_tenant(
    repo: BillsRepository,
    user: AccountUser,
    tenant_id: int,
    name: str,
    email: str,
    shares: Mapping[str, Decimal],
    secondary_name: Optional[str] = None,
) -> None:
    repo.update_tenant(
        user.id,
        tenant_id,
        name=name,
        email=email,
        secondary_name=secondary_name,
        shares=shares,
    )


@action("Failed to update balance")
def update_tenant_balance(
    repo: BillsRepository, user: AccountUser, tenant_id: int, balance: Decimal
) -> Decimal:
    return repo.update_tenant_balance(user.id, tenant_id, balance)


@action("Failed to delete tenant")
def delete_tenant(repo: BillsRepository, user: AccountUser, tenant_id: int) -> None:
    repo.delete_tenant(user.id, tenant_id)
