"""Gmail access: bill scanning, payment detection and outbound email.

The :class:`Mailbox` wrapper hides the ``googleapiclient`` call chain
(``service.users().messages().list(...).execute()``) so the rest of the app
deals with plain message objects. Any API or transport failure is raised as
:class:`~bill_manager_web.errors.FetchError`.
"""

from __future__ import annotations

import base64
import html
import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from email.message import EmailMessage
from typing import Any, Dict, Iterable, Iterator, List, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiError

from packages.billing_common import (
    BillingPeriod,
    Payment,
    Tenant,
    UtilityBill,
    UtilityProvider,
)

from .accounts import AccountUser, require_fresh_token
from .errors import AuthError, FetchError, ParseError

logger = logging.getLogger(__name__)

GMAIL_USER = "me"

# Matches 123.45, $123.45 and 1,234.56 style amounts.
_AMOUNT_RE = re.compile(r"\$?\s?\d[\d,]*\.\d{2}(?!\d)")
_GROUPED_RE = re.compile(r"^\d{1,3}(?:,\d{3})+\.\d{2}$")
_PAYMENT_DATE_RE = re.compile(r"Date:\s*(.+)", re.IGNORECASE)
_PAYMENT_FROM_RE = re.compile(r"Sent From:\s*(.+)", re.IGNORECASE)
_PAYMENT_AMOUNT_RE = re.compile(r"Amount:\s*\$?([\d,]+\.\d{2})", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_HIDDEN_BLOCK_RE = re.compile(
    r"<(head|style|script)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)


@dataclass(slots=True)
class MailMessage:
    """Subset of a Gmail message used by the bill scanner."""

    id: str
    subject: str
    snippet: str
    body: str

    @property
    def text(self) -> str:
        return self.body or self.snippet


def billing_search_query(name: str, period: BillingPeriod) -> str:
    """Return the Gmail search string for ``name`` within ``period``."""

    start, end = period.bounds()
    return f"{name} after:{_query_date(start)} before:{_query_date(end)}"


def payment_search_query(tenant_name: str, start: date, end: date) -> str:
    return f"from:{tenant_name} after:{_query_date(start)} before:{_query_date(end)}"


def _query_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def parse_amount(token: str) -> Decimal:
    """Convert a currency token such as ``$1,234.56`` to :class:`Decimal`.

    Raises:
        ParseError: When the token is not a valid amount once the currency
            symbol and thousands separators are removed.
    """

    number = token.replace("$", "").strip()
    if "," in number and not _GROUPED_RE.match(number):
        raise ParseError(f"Malformed thousands separators: {token!r}")
    cleaned = number.replace(",", "")
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ParseError(f"Unparseable amount: {token!r}") from exc
    if not value.is_finite():
        raise ParseError(f"Unparseable amount: {token!r}")
    return value


def extract_amounts(text: str) -> List[Decimal]:
    """Return every currency amount found in ``text``.

    Tokens that match the pattern but fail to parse are skipped so one
    malformed value never discards the rest of the message.
    """

    amounts: List[Decimal] = []
    for token in _AMOUNT_RE.findall(text or ""):
        try:
            amounts.append(parse_amount(token))
        except ParseError as exc:
            logger.debug("Skipping amount token: %s", exc)
    return amounts


def is_bill_message(subject: str, provider_name: str) -> bool:
    """Return whether ``subject`` looks like a bill from ``provider_name``."""

    lowered = (subject or "").lower()
    return provider_name.lower() in lowered and "bill" in lowered


def parse_payment_details(message_id: str, body: str) -> Optional[Payment]:
    """Parse a payment notification body; ``None`` when fields are missing."""

    date_match = _PAYMENT_DATE_RE.search(body or "")
    sent_from_match = _PAYMENT_FROM_RE.search(body or "")
    amount_match = _PAYMENT_AMOUNT_RE.search(body or "")
    if not date_match or not sent_from_match or not amount_match:
        return None
    try:
        amount = parse_amount(amount_match.group(1))
    except ParseError:
        return None
    return Payment(
        message_id=message_id,
        date=date_match.group(1).strip(),
        sent_from=sent_from_match.group(1).strip(),
        amount=amount,
    )


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", "replace")


def _html_to_text(markup: str) -> str:
    text = _HIDDEN_BLOCK_RE.sub(" ", markup)
    return html.unescape(_TAG_RE.sub(" ", text))


def message_body(payload: Dict[str, Any]) -> str:
    """Return the text of a Gmail message payload.

    ``text/plain`` parts win over ``text/html``; nested multiparts are walked
    depth first. HTML markup is stripped along with head, style and script
    blocks.
    """

    body = payload.get("body") or {}
    if body.get("data"):
        text = _decode(body["data"])
        if payload.get("mimeType") == "text/html":
            return _html_to_text(text)
        return text

    parts = payload.get("parts") or []
    html_fallback = ""
    for part in parts:
        mime_type = part.get("mimeType", "")
        data = (part.get("body") or {}).get("data")
        if mime_type == "text/plain" and data:
            return _decode(data)
        if mime_type == "text/html" and data and not html_fallback:
            html_fallback = _html_to_text(_decode(data))
    if html_fallback:
        return html_fallback
    for part in parts:
        if part.get("parts"):
            nested = message_body(part)
            if nested:
                return nested
    return ""


class Mailbox:
    """Thin wrapper over the Gmail ``users.messages`` resource."""

    def __init__(self, service: Any, user_id: str = GMAIL_USER):
        self._service = service
        self._user_id = user_id

    @classmethod
    def for_user(cls, user: Optional[AccountUser]) -> "Mailbox":
        """Open the mailbox of the signed-in ``user``.

        Raises:
            AuthError: When the user is signed out or their token expired.
        """

        token = require_fresh_token(user)
        credentials = Credentials(token=token)
        service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        return cls(service)

    def _messages(self):
        return self._service.users().messages()

    def search(self, query: str) -> List[str]:
        """Return the IDs of every message matching ``query``."""

        return list(self._iter_message_ids(query))

    def _iter_message_ids(self, query: str) -> Iterator[str]:
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"userId": self._user_id, "q": query}
            if page_token:
                params["pageToken"] = page_token
            response = self._execute(self._messages().list(**params))
            for message in response.get("messages") or []:
                yield message["id"]
            page_token = response.get("nextPageToken")
            if not page_token:
                return

    def get_message(self, message_id: str) -> MailMessage:
        response = self._execute(
            self._messages().get(userId=self._user_id, id=message_id, format="full")
        )
        payload = response.get("payload") or {}
        subject = "No Subject"
        for header in payload.get("headers") or []:
            if (header.get("name") or "").lower() == "subject":
                subject = header.get("value") or subject
                break
        return MailMessage(
            id=response.get("id", message_id),
            subject=subject,
            snippet=response.get("snippet", ""),
            body=message_body(payload),
        )

    def send(self, to: str, subject: str, html_body: str, text_body: str = "") -> str:
        """Send an HTML email from the signed-in account; return the message ID."""

        msg = EmailMessage()
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text_body or _TAG_RE.sub("", html_body))
        msg.add_alternative(html_body, subtype="html")
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        response = self._execute(
            self._messages().send(userId=self._user_id, body={"raw": raw})
        )
        return response.get("id", "")

    @staticmethod
    def _execute(request: Any) -> Dict[str, Any]:
        try:
            return request.execute()
        except RefreshError as exc:
            raise AuthError("Your Google session has expired. Please sign in again.") from exc
        except (GoogleApiError, TransportError, OSError) as exc:
            raise FetchError("Failed to fetch bills") from exc


def fetch_provider_bill(
    mailbox: Mailbox, provider: UtilityProvider, period: BillingPeriod
) -> UtilityBill:
    """Search the mailbox for one provider's bills in ``period``.

    A provider without matching messages yields an amount of zero.
    """

    message_ids = mailbox.search(billing_search_query(provider.name, period))
    amount = Decimal()
    matched: List[str] = []
    for message_id in message_ids:
        message = mailbox.get_message(message_id)
        if not is_bill_message(message.subject, provider.name):
            continue
        amounts = extract_amounts(message.text)
        if amounts:
            matched.append(message.id)
            amount += sum(amounts, Decimal())
    return UtilityBill(
        provider=provider,
        amount=amount,
        month=period.month,
        year=period.year,
        message_ids=tuple(matched),
    )


def fetch_bills(
    mailbox: Mailbox, providers: Iterable[UtilityProvider], period: BillingPeriod
) -> List[UtilityBill]:
    """Return one :class:`UtilityBill` per provider for ``period``.

    Providers are queried one after another; any API failure aborts the
    whole fetch with :class:`FetchError`.
    """

    bills = [fetch_provider_bill(mailbox, provider, period) for provider in providers]
    logger.info(
        "Fetched %d provider bills for %s (%d with amounts)",
        len(bills),
        period.label,
        sum(1 for bill in bills if bill.amount),
    )
    return bills


def find_payment(
    mailbox: Mailbox, tenant: Tenant, start: date, end: date
) -> Optional[Payment]:
    """Return the first payment notification from ``tenant`` in ``[start, end)``."""

    for message_id in mailbox.search(payment_search_query(tenant.name, start, end)):
        message = mailbox.get_message(message_id)
        payment = parse_payment_details(message.id, message.text)
        if payment is not None:
            return payment
    return None
