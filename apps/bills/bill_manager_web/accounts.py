"""Signed-in landlord account and Google token freshness checks."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from flask_login import UserMixin

from .errors import AuthError


def is_token_expired(token_exp: Optional[int], now: Optional[float] = None) -> bool:
    """Return ``True`` when ``token_exp`` (epoch seconds) is not in the future."""

    if token_exp is None:
        return True
    current = time.time() if now is None else now
    return token_exp <= current


@dataclass
class AccountUser(UserMixin):
    """Landlord account persisted after a Google sign-in."""

    id: str
    email: str
    name: str = ""
    access_token: Optional[str] = None
    access_token_exp: Optional[int] = None

    def get_id(self) -> str:
        return self.id

    def token_expired(self, now: Optional[float] = None) -> bool:
        return is_token_expired(self.access_token_exp, now)


def require_fresh_token(user: Optional[AccountUser], now: Optional[float] = None) -> str:
    """Return ``user``'s access token or raise :class:`AuthError`.

    Raises:
        AuthError: When no account is signed in, the account has no token, or
            the token has expired. Callers redirect to the login page rather
            than retrying.
    """

    if user is None or not getattr(user, "is_authenticated", False):
        raise AuthError("You must sign in with Google to continue.")
    if not user.access_token:
        raise AuthError("User is not logged in.")
    if user.token_expired(now):
        raise AuthError("Your Google session has expired. Please sign in again.")
    return user.access_token
