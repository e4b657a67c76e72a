"""Utility Bill Manager Flask application factory."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

from flask import Flask, current_app, flash, g, redirect, render_template, url_for
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager, current_user, logout_user
from flask_wtf.csrf import CSRFProtect

from .accounts import AccountUser, require_fresh_token
from .config import AppConfig, load_config
from .database import create_db_engine, init_schema
from .errors import AuthError, NotFoundError
from .mail_limits import MailLimits
from .mailbox import Mailbox
from .repositories import BillsRepository

login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message_category = "info"
csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address)

MailboxFactory = Callable[[AccountUser], Mailbox]


@login_manager.user_loader
def load_user(user_id: str) -> Optional[AccountUser]:
    return get_repository().get_user(user_id)


def create_app(config: AppConfig | None = None) -> Flask:
    """Build and configure the bill manager Flask application.

    Args:
        config: Optional :class:`AppConfig` override. When ``None`` the helper
            loads configuration via :func:`load_config`, which reads the
            environment and an optional ``.env`` file.

    Returns:
        Flask: Initialised application. The SQLAlchemy engine is stored on
        ``app.config['DB_ENGINE']`` for :func:`get_repository`.
    """

    app = Flask(__name__, instance_relative_config=True)
    app_config = config or load_config()
    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    app.config.update(
        SECRET_KEY=app_config.secret_key,
        WTF_CSRF_ENABLED=app_config.csrf_enabled,
        RATELIMIT_ENABLED=app_config.ratelimit_enabled,
        RATELIMIT_STORAGE_URI=app_config.ratelimit_storage_uri,
        GOOGLE_CLIENT_ID=app_config.google_client_id,
        GOOGLE_CLIENT_SECRET=app_config.google_client_secret,
        GOOGLE_REDIRECT_URI=app_config.google_redirect_uri,
        MAIL_LIMITS=MailLimits(
            per_user_per_hour=app_config.mail_rate_limit_per_user_per_hour,
            per_recipient_per_day=app_config.mail_rate_limit_per_recipient_per_day,
        ),
    )
    if app_config.oauth_insecure_transport:
        # oauthlib refuses plain http callbacks unless this is set.
        os.environ["OAUTHLIB_INSECURE_TRANSPORT"] = "1"

    level = logging.getLevelName(app_config.log_level)
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger(__name__).setLevel(level)

    engine = create_db_engine(app_config.database_url)
    init_schema(engine)
    app.config["DB_ENGINE"] = engine

    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    from .blueprints.auth import auth_bp
    from .blueprints.bills import bills_bp
    from .blueprints.dashboard import dashboard_bp
    from .blueprints.providers import providers_bp
    from .blueprints.tenants import tenants_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(providers_bp, url_prefix="/providers")
    app.register_blueprint(tenants_bp, url_prefix="/tenants")
    app.register_blueprint(bills_bp, url_prefix="/bills")

    @app.errorhandler(AuthError)
    def handle_auth_error(exc: AuthError):
        app.logger.info("Authentication required: %s", exc)
        logout_user()
        flash(str(exc), "warning")
        return redirect(url_for("auth.login"))

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError):
        return render_template("errors/404.html", message=str(exc)), 404

    @app.errorhandler(404)
    def handle_404(_: Any):
        return render_template("errors/404.html", message="Page not found."), 404

    @app.teardown_appcontext
    def teardown(_: Any) -> None:
        g.pop("bills_repo", None)

    @app.cli.command("init-db")
    def init_db_command() -> None:
        """Initialize the database tables."""

        init_schema(engine)
        import click

        click.echo("Database initialized.")

    return app


def get_repository() -> BillsRepository:
    """Return a repository cached on :mod:`flask.g` for the active request."""

    if not hasattr(g, "bills_repo"):
        engine = current_app.config["DB_ENGINE"]
        g.bills_repo = BillsRepository(engine)
    return g.bills_repo


def signed_in_user() -> AccountUser:
    """Return the concrete :class:`AccountUser` behind ``current_user``."""

    return current_user._get_current_object()  # type: ignore[attr-defined]


def open_mailbox() -> Mailbox:
    """Open the Gmail mailbox of the signed-in user.

    ``app.config['MAILBOX_FACTORY']`` may replace :meth:`Mailbox.for_user`,
    which tests use to inject a fake Gmail service.

    Raises:
        AuthError: When the session user has no usable Google token.
    """

    user = signed_in_user()
    require_fresh_token(user)
    factory: MailboxFactory = current_app.config.get("MAILBOX_FACTORY") or Mailbox.for_user
    return factory(user)


def mail_limits() -> MailLimits:
    return current_app.config.get("MAIL_LIMITS") or MailLimits()


__all__ = [
    "create_app",
    "AppConfig",
    "get_repository",
    "open_mailbox",
    "mail_limits",
    "signed_in_user",
]
