"""Google sign-in routes.

- ``/login`` renders the sign-in page.
- ``/login/google`` starts the OAuth 2.0 authorization code flow.
- ``/oauth2callback`` exchanges the code, stores the access token and its
  expiry on the user row and starts a session with
  :func:`flask_login.login_user`.
- ``/logout`` forgets the token and ends the session.
- ``/settings`` shows the signed-in account.
"""

from __future__ import annotations

import calendar
from typing import Any, Dict, Optional

from flask import (
    Blueprint,
    Response,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_login import current_user, login_required, login_user, logout_user
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from .. import get_repository, limiter, signed_in_user
from ..accounts import AccountUser

auth_bp = Blueprint("auth", __name__)

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

_STATE_KEY = "oauth_state"
_VERIFIER_KEY = "oauth_code_verifier"


def _login_rate_limit_value() -> str:
    """Return the rate limit applied to sign-in attempts."""

    value = current_app.config.get("AUTH_LOGIN_RATE_LIMIT", "10 per minute")
    return str(value or "10 per minute")


def _redirect_uri() -> str:
    return current_app.config.get("GOOGLE_REDIRECT_URI") or url_for(
        "auth.oauth2callback", _external=True
    )


def _build_flow(state: Optional[str] = None, code_verifier: Optional[str] = None) -> Flow:
    """Return an OAuth flow configured from the app's Google client settings."""

    client_config = {
        "web": {
            "client_id": current_app.config.get("GOOGLE_CLIENT_ID", ""),
            "client_secret": current_app.config.get("GOOGLE_CLIENT_SECRET", ""),
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
        }
    }
    return Flow.from_client_config(
        client_config,
        scopes=SCOPES,
        state=state,
        redirect_uri=_redirect_uri(),
        code_verifier=code_verifier,
    )


def _fetch_profile(credentials: Any) -> Dict[str, Any]:
    """Return the Google profile (``id``, ``email``, ``name``) for ``credentials``."""

    service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
    return service.userinfo().get().execute()


def _expiry_epoch(credentials: Any) -> Optional[int]:
    expiry = getattr(credentials, "expiry", None)
    if expiry is None:
        return None
    # google-auth stores expiry as naive UTC.
    return calendar.timegm(expiry.utctimetuple())


@auth_bp.get("/login")
def login() -> Any:
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.dashboard"))
    return render_template("login.html")


@auth_bp.post("/login/google")
@limiter.limit(_login_rate_limit_value)
def login_google() -> Response:
    """Redirect to Google's consent screen."""

    flow = _build_flow()
    authorization_url, state = flow.authorization_url(
        access_type="online", include_granted_scopes="true", prompt="consent"
    )
    session[_STATE_KEY] = state
    session[_VERIFIER_KEY] = getattr(flow, "code_verifier", None)
    return redirect(authorization_url)


@auth_bp.get("/oauth2callback")
def oauth2callback() -> Response:
    """Finish the OAuth flow and sign the user in."""

    state = session.pop(_STATE_KEY, None)
    code_verifier = session.pop(_VERIFIER_KEY, None)
    if "error" in request.args:
        flash("Google sign-in was cancelled.", "warning")
        return redirect(url_for("auth.login"))
    if not state or request.args.get("state") != state:
        flash("Sign-in session expired. Please try again.", "warning")
        return redirect(url_for("auth.login"))

    flow = _build_flow(state=state, code_verifier=code_verifier)
    try:
        flow.fetch_token(authorization_response=request.url)
        credentials = flow.credentials
        profile = _fetch_profile(credentials)
    except Exception:
        current_app.logger.exception("Google sign-in failed")
        flash("Google sign-in failed. Please try again.", "danger")
        return redirect(url_for("auth.login"))

    user = AccountUser(
        id=str(profile["id"]),
        email=profile.get("email", ""),
        name=profile.get("name", ""),
        access_token=credentials.token,
        access_token_exp=_expiry_epoch(credentials),
    )
    get_repository().upsert_user(user)
    login_user(user)
    current_app.logger.info("User %s signed in", user.id)
    return redirect(url_for("dashboard.dashboard"))


@auth_bp.post("/logout")
@login_required
def logout() -> Response:
    get_repository().clear_user_token(signed_in_user().id)
    logout_user()
    flash("You have been signed out.", "info")
    return redirect(url_for("auth.login"))


@auth_bp.get("/settings")
@login_required
def settings() -> str:
    user = signed_in_user()
    return render_template("settings.html", user=user, token_expired=user.token_expired())
