"""Outbound email safety checks for bill notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import MailRateLimitError
from .repositories import BillsRepository, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _RateLimitWindow:
    """Represents a configurable rate-limit window."""

    label: str
    limit: int
    interval: timedelta


@dataclass(frozen=True)
class MailLimits:
    """Configured per-user and per-recipient send limits (0 disables)."""

    per_user_per_hour: int = 0
    per_recipient_per_day: int = 0

    def windows(self) -> List[_RateLimitWindow]:
        return [
            _RateLimitWindow(
                label="per user per hour",
                limit=self.per_user_per_hour,
                interval=timedelta(hours=1),
            ),
            _RateLimitWindow(
                label="per recipient per day",
                limit=self.per_recipient_per_day,
                interval=timedelta(days=1),
            ),
        ]


def normalise_email(value: str) -> str:
    """Return a trimmed, lowercase representation of ``value``."""

    return (value or "").strip().lower()


def enforce_mail_rate_limit(
    repo: BillsRepository,
    limits: MailLimits,
    user_id: Optional[str],
    recipient: str,
    now: Callable[[], datetime] = utcnow,
) -> None:
    """Raise :class:`MailRateLimitError` when a send would exceed policy.

    Args:
        repo: Repository used to count historical dispatches.
        limits: Active limits; windows with a limit of zero are skipped.
        user_id: Landlord requesting the send.
        recipient: Target email address.
        now: Clock used to position the windows.
    """

    normalised_recipient = normalise_email(recipient)
    for window in limits.windows():
        if window.limit <= 0:
            continue
        if window.label.startswith("per user") and user_id is None:
            continue

        since = now() - window.interval
        try:
            if window.label.startswith("per user"):
                count = repo.count_email_dispatches(since, user_id=user_id)
            else:
                count = repo.count_email_dispatches(
                    since, recipient=normalised_recipient
                )
        except SQLAlchemyError as exc:
            logger.warning("Failed to enforce mail rate limit (%s): %s", window.label, exc)
            continue

        if count >= window.limit:
            raise MailRateLimitError(f"Rate limit exceeded: {window.label}.")


def log_email_dispatch(
    repo: BillsRepository, feature: str, user_id: Optional[str], recipient: str
) -> None:
    """Record a successfully dispatched email in the audit log."""

    repo.log_email_dispatch(feature, user_id, normalise_email(recipient))
