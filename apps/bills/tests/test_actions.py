"""Tests for the action layer."""

from __future__ import annotations

import base64
import email
from datetime import date
from decimal import Decimal

import pytest
from google.auth.exceptions import RefreshError

from packages.billing_common import BillingPeriod, UtilityCategory

from bill_manager_web import actions
from bill_manager_web.errors import AuthError
from bill_manager_web.mail_limits import MailLimits

JANUARY = BillingPeriod(month=1, year=2025)
EVEN_SHARES = {"Water": Decimal("50"), "Gas": Decimal("50"), "Electricity": Decimal("50")}


@pytest.fixture()
def household(repo, user, fake_gmail):
    """Three providers with January bills and one tenant paying half."""

    for name, category in (
        ("Water Co", UtilityCategory.WATER),
        ("Gas Co", UtilityCategory.GAS),
        ("Power Co", UtilityCategory.ELECTRICITY),
    ):
        assert actions.create_provider(repo, user, name, category).success
    fake_gmail.add_message("w1", "Water Co bill", "Amount due: $100.00", match="Water Co")
    fake_gmail.add_message("g1", "Gas Co bill", "Amount due: $50.00", match="Gas Co")
    fake_gmail.add_message("e1", "Power Co bill", "Amount due: $75.00", match="Power Co")
    result = actions.create_tenant(repo, user, "Alice", "alice@example.com", EVEN_SHARES)
    assert result.success
    return result.data


def test_load_dashboard_computes_shares(repo, mailbox, user, household):
    result = actions.load_dashboard(repo, mailbox, user, JANUARY)

    assert result.success
    data = result.data
    assert data.bill.total_amount == Decimal("225.00")
    assert [share.total for share in data.tenant_shares] == [Decimal("112.5")]
    assert data.saved_bills == []
    assert data.last_month_total == Decimal("0")
    assert data.outstanding_total == Decimal("0")


def test_load_dashboard_without_messages(repo, mailbox, user):
    actions.create_provider(repo, user, "Water Co", UtilityCategory.WATER)
    actions.create_provider(repo, user, "Gas Co", UtilityCategory.GAS)

    result = actions.load_dashboard(repo, mailbox, user, JANUARY)

    assert result.success
    assert result.data.bill.total_amount == Decimal("0")
    assert all(charge.amount == 0 for charge in result.data.bill.categories.values())


def test_fetch_failure_returns_generic_error(repo, mailbox, user, household, fake_gmail):
    fake_gmail.error = OSError("boom")

    result = actions.load_dashboard(repo, mailbox, user, JANUARY)

    assert result.success is False
    assert result.error == "Failed to fetch bills"


def test_unexpected_errors_are_hidden(repo, mailbox, user, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(repo, "list_providers", explode)

    result = actions.load_dashboard(repo, mailbox, user, JANUARY)

    assert result == actions.ActionResult(
        success=False, error="Failed to fetch dashboard data"
    )


def test_auth_errors_propagate(repo, mailbox, user, household, fake_gmail):
    fake_gmail.error = RefreshError("revoked")
    with pytest.raises(AuthError):
        actions.load_dashboard(repo, mailbox, user, JANUARY)


def test_duplicate_provider_message_surfaces(repo, user):
    actions.create_provider(repo, user, "Water Co", UtilityCategory.WATER)
    result = actions.create_provider(repo, user, "Water Co", UtilityCategory.WATER)
    assert result.success is False
    assert result.error == 'Utility provider "Water Co" already exists.'


def test_save_send_and_check_payment(app, repo, mailbox, user, household, fake_gmail):
    saved = actions.save_tenant_bill(repo, mailbox, user, household.id, JANUARY)
    assert saved.success
    bill = saved.data
    assert bill.tenant_id == household.id
    assert bill.total_amount == Decimal("225.00")

    duplicate = actions.save_tenant_bill(repo, mailbox, user, household.id, JANUARY)
    assert duplicate.success is False

    with app.test_request_context():
        sent = actions.send_bill_email(repo, mailbox, user, bill.id, MailLimits())
    assert sent.success, sent.error
    raw = fake_gmail.sent[0]["raw"]
    message = email.message_from_bytes(base64.urlsafe_b64decode(raw))
    assert message["To"] == "alice@example.com"
    assert message["Subject"] == "Utility Bills for January of 2025"
    html = message.get_payload()[1].get_payload(decode=True).decode()
    assert "Your % Share" in html
    assert "$112.50" in html
    assert repo.get_consolidated_bill(user.id, bill.id).date_sent is not None

    missing = actions.check_bill_payment(repo, mailbox, user, bill.id)
    assert missing.success and missing.data is None

    fake_gmail.add_message(
        "pay-1",
        "Payment received",
        "Date: Feb 2, 2025\nSent From: Alice\nAmount: $112.50",
        match="from:Alice",
    )
    found = actions.check_bill_payment(repo, mailbox, user, bill.id)
    assert found.success and found.data == "pay-1"
    paid = repo.get_consolidated_bill(user.id, bill.id)
    assert paid.paid is True
    assert paid.payment_message_id == "pay-1"


def test_send_respects_recipient_limit(app, repo, mailbox, user, household):
    bill = actions.save_tenant_bill(repo, mailbox, user, household.id, JANUARY).data
    limits = MailLimits(per_recipient_per_day=1)

    with app.test_request_context():
        first = actions.send_bill_email(repo, mailbox, user, bill.id, limits)
        second = actions.send_bill_email(repo, mailbox, user, bill.id, limits)

    assert first.success
    assert second.success is False
    assert second.error == "Rate limit exceeded: per recipient per day."


def test_mark_paid_and_balance(repo, mailbox, user, household):
    bill = actions.save_tenant_bill(repo, mailbox, user, household.id, JANUARY).data

    result = actions.mark_bill_paid(repo, user, bill.id)
    assert result.success and result.data.paid

    balance = actions.update_tenant_balance(repo, user, household.id, Decimal("12.345"))
    assert balance.data == Decimal("12.35")
    # Marking a bill paid never touches the carried-over balance.
    assert repo.get_tenant(user.id, household.id).outstanding_balance == Decimal("12.35")


def test_last_month_total_uses_saved_bills(repo, mailbox, user, household):
    actions.save_tenant_bill(repo, mailbox, user, household.id, JANUARY)
    february = BillingPeriod(month=2, year=2025)

    result = actions.load_dashboard(repo, mailbox, user, february)

    assert result.success
    assert result.data.last_month_total == Decimal("225.00")
    assert len(result.data.last_month_bills) == 1


def test_check_payment_searches_until_tomorrow(repo, mailbox, user, household, fake_gmail):
    bill = actions.save_tenant_bill(repo, mailbox, user, household.id, JANUARY).data
    fake_gmail.queries.clear()

    actions.check_bill_payment(repo, mailbox, user, bill.id, today=date(2025, 2, 5))

    assert fake_gmail.queries == ["from:Alice after:2025-01-01 before:2025-02-06"]
