"""Database setup utilities for the bill manager."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False, default=""),
    Column("email", String(255), nullable=False),
    Column("access_token", Text, nullable=True),
    Column("access_token_exp", Integer, nullable=True),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
)

utility_providers = Table(
    "utility_providers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("category", String(32), nullable=False),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    UniqueConstraint("user_id", "name", name="uq_provider_user_name"),
)

tenants = Table(
    "tenants",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("secondary_name", String(255), nullable=True),
    # Percentages keyed by category value, stored as strings to keep precision.
    Column("shares", JSON, nullable=False, default=dict),
    Column("outstanding_balance_cents", Integer, nullable=False, default=0),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
)

consolidated_bills = Table(
    "consolidated_bills",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column(
        "tenant_id", ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True
    ),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("categories", JSON, nullable=False, default=dict),
    Column("total_amount_cents", Integer, nullable=False),
    Column("paid", Boolean, nullable=False, default=False),
    Column("date_sent", DateTime, nullable=True),
    Column("date_paid", DateTime, nullable=True),
    Column("payment_message_id", String(255), nullable=True),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
)

email_dispatch_log = Table(
    "email_dispatch_log",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", String(64), nullable=True),
    Column("feature", String(64), nullable=False),
    Column("recipient", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False),
)


def create_db_engine(database_url: str) -> Engine:
    """Return a SQLAlchemy engine for the provided URL."""

    return create_engine(database_url, future=True)


def init_schema(engine: Engine) -> None:
    """Create database tables if they do not exist."""

    metadata.create_all(engine)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Context manager that yields a SQLAlchemy :class:`Session`."""

    with Session(engine, future=True) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
