"""Tests for Gmail bill scanning and payment parsing."""

from __future__ import annotations

import base64
import email
from datetime import date
from decimal import Decimal

import pytest
from google.auth.exceptions import RefreshError

from packages.billing_common import BillingPeriod, Tenant, UtilityCategory, UtilityProvider

from bill_manager_web.errors import AuthError, FetchError, ParseError
from bill_manager_web.mailbox import (
    billing_search_query,
    extract_amounts,
    fetch_bills,
    find_payment,
    is_bill_message,
    message_body,
    parse_amount,
    parse_payment_details,
)

from conftest import encode_body

JANUARY = BillingPeriod(month=1, year=2025)


def _provider(name: str, category: UtilityCategory, provider_id: int) -> UtilityProvider:
    return UtilityProvider(id=provider_id, user_id="u1", name=name, category=category)


def test_search_query_uses_calendar_bounds():
    assert billing_search_query("Water Co", JANUARY) == (
        "Water Co after:2025-01-01 before:2025-02-01"
    )
    assert billing_search_query("Gas Co", BillingPeriod(month=12, year=2024)).endswith(
        "before:2025-01-01"
    )


def test_parse_amount_variants():
    assert parse_amount("$1,234.56") == Decimal("1234.56")
    assert parse_amount("$ 45.00") == Decimal("45.00")
    with pytest.raises(ParseError):
        parse_amount("1,23.45")


def test_extract_amounts_skips_malformed_tokens():
    text = "Previous: $1,23.45. Amount due: $20.00 and fees 5.25"
    assert extract_amounts(text) == [Decimal("20.00"), Decimal("5.25")]


def test_is_bill_message_requires_provider_and_bill():
    assert is_bill_message("Your Water Co bill is ready", "water co")
    assert not is_bill_message("Water Co newsletter", "Water Co")
    assert not is_bill_message("Gas Co bill", "Water Co")


def test_message_body_prefers_plain_text_and_strips_html():
    multipart = {
        "mimeType": "multipart/alternative",
        "parts": [
            {"mimeType": "text/html", "body": {"data": encode_body("<p>$9.99</p>")}},
            {"mimeType": "text/plain", "body": {"data": encode_body("Due $10.00")}},
        ],
    }
    assert message_body(multipart) == "Due $10.00"

    html_only = {
        "mimeType": "multipart/mixed",
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [{"mimeType": "text/html", "body": {"data": encode_body("<b>$7.50</b>")}}],
            }
        ],
    }
    assert "$7.50" in message_body(html_only)
    assert "<b>" not in message_body(html_only)


def test_html_bill_ignores_style_and_script_blocks(mailbox, fake_gmail):
    markup = (
        "<html><HEAD><title>Bill 2.00</title></HEAD>"
        "<style type=\"text/css\">\ntd{padding:1.25em;line-height:1.50}\n</style>"
        "<script>var fee = 3.00;</script>"
        "<body><p>Amount&nbsp;due: &#36;60.00</p></body></html>"
    )
    fake_gmail.add_message(
        "h1", "Water Co bill", markup, match="Water Co", mime_type="text/html"
    )

    bills = fetch_bills(mailbox, [_provider("Water Co", UtilityCategory.WATER, 1)], JANUARY)

    assert bills[0].amount == Decimal("60.00")
    assert "$60.00" in message_body(fake_gmail.stored["h1"]["payload"])


def test_fetch_bills_sums_matching_messages(mailbox, fake_gmail):
    fake_gmail.add_message("w1", "Water Co bill", "Amount due: $60.00", match="Water Co")
    fake_gmail.add_message("w2", "Water Co bill (adjustment)", "Amount due: $40.00", match="Water Co")
    fake_gmail.add_message("w3", "Water Co newsletter", "Save $5.00 today", match="Water Co")
    providers = [
        _provider("Water Co", UtilityCategory.WATER, 1),
        _provider("Gas Co", UtilityCategory.GAS, 2),
    ]

    bills = fetch_bills(mailbox, providers, JANUARY)

    assert [bill.amount for bill in bills] == [Decimal("100.00"), Decimal("0")]
    assert bills[0].message_ids == ("w1", "w2")
    assert bills[1].message_ids == ()
    assert fake_gmail.queries == [
        "Water Co after:2025-01-01 before:2025-02-01",
        "Gas Co after:2025-01-01 before:2025-02-01",
    ]


def test_search_follows_pagination(mailbox, fake_gmail):
    for index in range(3):
        fake_gmail.add_message(f"m{index}", "Power Co bill", "$1.00", match="Power Co")
    fake_gmail.page_size = 1

    assert mailbox.search("Power Co") == ["m0", "m1", "m2"]


def test_api_failures_raise_fetch_error(mailbox, fake_gmail):
    fake_gmail.error = OSError("connection reset")
    with pytest.raises(FetchError, match="Failed to fetch bills"):
        fetch_bills(mailbox, [_provider("Water Co", UtilityCategory.WATER, 1)], JANUARY)


def test_refresh_failure_raises_auth_error(mailbox, fake_gmail):
    fake_gmail.error = RefreshError("token revoked")
    with pytest.raises(AuthError):
        mailbox.search("Water Co")


def test_parse_payment_details():
    body = "Date: Feb 3, 2025\nSent From: Alice\nAmount: $1,112.50\n"
    payment = parse_payment_details("p1", body)
    assert payment is not None
    assert payment.sent_from == "Alice"
    assert payment.date == "Feb 3, 2025"
    assert payment.amount == Decimal("1112.50")
    assert parse_payment_details("p2", "Thanks for the reminder!") is None


def test_find_payment_uses_tenant_name(mailbox, fake_gmail):
    fake_gmail.add_message("chat", "Hi", "See you soon", match="from:Alice")
    fake_gmail.add_message(
        "pay", "Payment", "Date: Feb 3\nSent From: Alice\nAmount: $112.50", match="from:Alice"
    )
    tenant = Tenant(user_id="u1", name="Alice", email="alice@example.com")

    payment = find_payment(mailbox, tenant, date(2025, 2, 1), date(2025, 2, 10))

    assert payment is not None
    assert payment.message_id == "pay"
    assert fake_gmail.queries == ["from:Alice after:2025-02-01 before:2025-02-10"]


def test_send_builds_html_message(mailbox, fake_gmail):
    message_id = mailbox.send("alice@example.com", "Hello", "<p>Hi <b>Alice</b></p>")

    assert message_id == "sent-1"
    raw = fake_gmail.sent[0]["raw"]
    parsed = email.message_from_bytes(base64.urlsafe_b64decode(raw))
    assert parsed["To"] == "alice@example.com"
    assert parsed["Subject"] == "Hello"
    assert parsed.is_multipart()
    assert [part.get_content_type() for part in parsed.get_payload()] == [
        "text/plain",
        "text/html",
    ]
