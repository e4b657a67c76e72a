"""Configuration helper tests."""

from __future__ import annotations

import importlib
import logging

from bill_manager_web.config import _resolve_secret_key, load_config


def test_resolve_secret_key_prefers_env(monkeypatch):
    monkeypatch.setenv("BILLS_SECRET_KEY", "override-key")
    assert _resolve_secret_key() == "override-key"


def test_resolve_secret_key_generates_ephemeral(monkeypatch, caplog):
    """Without a configured key a random one is generated and a warning logged."""

    monkeypatch.delenv("BILLS_SECRET_KEY", raising=False)
    with caplog.at_level(logging.WARNING, logger="bill_manager.config"):
        key = _resolve_secret_key()
    assert len(key) >= 32
    assert "BILLS_SECRET_KEY" in caplog.text


def test_load_config_reads_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BILLS_DATABASE", "sqlite:///custom.db")
    monkeypatch.setenv("BILLS_SECRET_KEY", "secret")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setenv("BILLS_MAIL_RATE_LIMIT_PER_RECIPIENT_PER_DAY", "2")
    monkeypatch.setenv("BILLS_CSRF_ENABLED", "false")
    monkeypatch.setenv("BILLS_LOG_LEVEL", "debug")

    config = load_config()

    assert config.database_url == "sqlite:///custom.db"
    assert config.secret_key == "secret"
    assert config.google_client_id == "client-id"
    assert config.mail_rate_limit_per_recipient_per_day == 2
    assert config.mail_rate_limit_per_user_per_hour == 20
    assert config.csrf_enabled is False
    assert config.log_level == "DEBUG"


def test_load_config_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in (
        "BILLS_DATABASE",
        "GOOGLE_REDIRECT_URI",
        "OAUTHLIB_INSECURE_TRANSPORT",
        "BILLS_RATELIMIT_STORAGE_URI",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BILLS_SECRET_KEY", "secret")

    config = load_config()

    assert config.database_url == "sqlite:///instance/bills.db"
    assert (tmp_path / "instance").is_dir()
    assert config.google_redirect_uri is None
    assert config.oauth_insecure_transport is False
    assert config.ratelimit_storage_uri == "memory://"


def test_resolve_debug_flag(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BILLS_DATABASE", f"sqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("BILLS_SECRET_KEY", "secret")
    flask_app = importlib.import_module("flask_app")

    monkeypatch.delenv("FLASK_DEBUG", raising=False)
    assert flask_app.resolve_debug_flag() is False
    monkeypatch.setenv("FLASK_DEBUG", "on")
    assert flask_app.resolve_debug_flag() is True
    monkeypatch.setenv("FLASK_DEBUG", "maybe")
    assert flask_app.resolve_debug_flag() is False
