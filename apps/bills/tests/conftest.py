"""Test fixtures for the bill manager app."""

from __future__ import annotations

import base64
import time
from pathlib import Path
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest

APP_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = Path(__file__).resolve().parents[3]
for candidate in (APP_ROOT, PROJECT_ROOT):
    if str(candidate) not in sys.path:
        sys.path.append(str(candidate))

from bill_manager_web import AppConfig, create_app  # noqa: E402
from bill_manager_web.accounts import AccountUser  # noqa: E402
from bill_manager_web.mailbox import Mailbox  # noqa: E402
from bill_manager_web.repositories import BillsRepository  # noqa: E402


def encode_body(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


class FakeRequest:
    """Mimics a ``googleapiclient`` request object."""

    def __init__(self, service: "FakeGmailService", handler: Callable[[], Dict[str, Any]]):
        self._service = service
        self._handler = handler

    def execute(self) -> Dict[str, Any]:
        if self._service.error is not None:
            raise self._service.error
        return self._handler()


class FakeMessages:
    def __init__(self, service: "FakeGmailService"):
        self._service = service

    def list(self, userId: str, q: str, pageToken: Optional[str] = None) -> FakeRequest:
        return FakeRequest(self._service, lambda: self._service.handle_list(q, pageToken))

    def get(self, userId: str, id: str, format: str = "full") -> FakeRequest:
        return FakeRequest(self._service, lambda: self._service.handle_get(id))

    def send(self, userId: str, body: Dict[str, Any]) -> FakeRequest:
        return FakeRequest(self._service, lambda: self._service.handle_send(body))


class FakeGmailService:
    """In-memory stand-in for the Gmail ``users().messages()`` resource.

    Messages are returned by ``list`` when their ``match`` string appears in
    the search query.
    """

    def __init__(self) -> None:
        self.stored: Dict[str, Dict[str, Any]] = {}
        self.matches: Dict[str, str] = {}
        self.queries: List[str] = []
        self.sent: List[Dict[str, Any]] = []
        self.page_size: Optional[int] = None
        self.error: Optional[BaseException] = None

    def add_message(
        self,
        message_id: str,
        subject: str,
        body: str,
        match: str,
        mime_type: str = "text/plain",
    ) -> None:
        self.stored[message_id] = {
            "id": message_id,
            "snippet": body[:100],
            "payload": {
                "mimeType": mime_type,
                "headers": [{"name": "Subject", "value": subject}],
                "body": {"data": encode_body(body)},
            },
        }
        self.matches[message_id] = match

    def users(self) -> "FakeGmailService":
        return self

    def messages(self) -> FakeMessages:
        return FakeMessages(self)

    def handle_list(self, query: str, page_token: Optional[str]) -> Dict[str, Any]:
        self.queries.append(query)
        ids = [mid for mid, match in self.matches.items() if match in query]
        start = int(page_token or 0)
        size = self.page_size or len(ids) or 1
        page = ids[start : start + size]
        response: Dict[str, Any] = {}
        if page:
            response["messages"] = [{"id": mid, "threadId": mid} for mid in page]
        if start + size < len(ids):
            response["nextPageToken"] = str(start + size)
        return response

    def handle_get(self, message_id: str) -> Dict[str, Any]:
        return self.stored[message_id]

    def handle_send(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.sent.append(body)
        return {"id": f"sent-{len(self.sent)}"}


@pytest.fixture()
def fake_gmail() -> FakeGmailService:
    return FakeGmailService()


@pytest.fixture()
def mailbox(fake_gmail: FakeGmailService) -> Mailbox:
    return Mailbox(fake_gmail)


@pytest.fixture()
def app(tmp_path: Path, fake_gmail: FakeGmailService):
    """Return a Flask app configured for testing."""

    db_path = tmp_path / "test.db"
    config = AppConfig(
        database_url=f"sqlite:///{db_path}",
        secret_key="testing",
        csrf_enabled=False,
        ratelimit_enabled=False,
    )
    application = create_app(config)
    application.config.update(
        TESTING=True,
        MAILBOX_FACTORY=lambda user: Mailbox(fake_gmail),
    )
    yield application


@pytest.fixture()
def client(app):
    """Return a Flask test client."""

    return app.test_client()


@pytest.fixture()
def repo(app) -> BillsRepository:
    return BillsRepository(app.config["DB_ENGINE"])


@pytest.fixture()
def user(repo: BillsRepository) -> AccountUser:
    """Persist a landlord account with a token valid for one hour."""

    return repo.upsert_user(
        AccountUser(
            id="google-123",
            email="landlord@example.com",
            name="Lee Landlord",
            access_token="token",
            access_token_exp=int(time.time()) + 3600,
        )
    )


@pytest.fixture()
def logged_in_client(client, user: AccountUser):
    """Return a test client whose session belongs to ``user``."""

    with client.session_transaction() as session:
        session["_user_id"] = user.id
        session["_fresh"] = True
    return client
