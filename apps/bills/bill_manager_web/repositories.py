"""Database access layer for the bill manager."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine

from packages.billing_common import (
    BillingPeriod,
    CategoryCharge,
    ConsolidatedBill,
    Tenant,
    UtilityCategory,
    UtilityProvider,
    from_minor_units,
    round_currency,
    to_minor_units,
)

from .accounts import AccountUser
from .database import (
    consolidated_bills,
    email_dispatch_log,
    session_scope,
    tenants,
    users,
    utility_providers,
)
from .errors import DuplicateRecordError, NotFoundError


def utcnow() -> datetime:
    """Return the current UTC time as a naive timestamp for storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class BillsRepository:
    """Provides CRUD operations for accounts, providers, tenants and bills.

    Every lookup is scoped by the owning ``user_id`` so one landlord can never
    read or modify another landlord's records.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    # Accounts -----------------------------------------------------------

    def upsert_user(self, user: AccountUser) -> AccountUser:
        """Insert or refresh the account created by a Google sign-in."""

        values = {
            "name": user.name,
            "email": user.email,
            "access_token": user.access_token,
            "access_token_exp": user.access_token_exp,
        }
        with session_scope(self._engine) as session:
            exists = session.execute(
                select(users.c.id).where(users.c.id == user.id)
            ).scalar_one_or_none()
            if exists is None:
                session.execute(insert(users).values(id=user.id, **values))
            else:
                session.execute(update(users).where(users.c.id == user.id).values(**values))
        return user

    def get_user(self, user_id: str) -> Optional[AccountUser]:
        with session_scope(self._engine) as session:
            row = session.execute(
                select(users).where(users.c.id == user_id)
            ).one_or_none()
        if row is None:
            return None
        values = row._mapping
        return AccountUser(
            id=values["id"],
            email=values["email"],
            name=values["name"],
            access_token=values["access_token"],
            access_token_exp=values["access_token_exp"],
        )

    def clear_user_token(self, user_id: str) -> None:
        """Forget the stored access token, for example on logout."""

        with session_scope(self._engine) as session:
            session.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(access_token=None, access_token_exp=None)
            )

    # Providers ----------------------------------------------------------

    def add_provider(self, provider: UtilityProvider) -> UtilityProvider:
        """Persist a new provider and return it with an ID.

        Raises:
            DuplicateRecordError: When the user already has a provider with
                the same name.
        """

        with session_scope(self._engine) as session:
            self._ensure_unique_provider_name(session, provider.user_id, provider.name)
            result = session.execute(
                insert(utility_providers)
                .values(
                    user_id=provider.user_id,
                    name=provider.name,
                    category=UtilityCategory(provider.category).value,
                )
                .returning(utility_providers.c.id)
            )
            provider_id = result.scalar_one()
        return replace(provider, id=provider_id)

    def list_providers(self, user_id: str) -> List[UtilityProvider]:
        """Return the user's providers ordered by category then name."""

        with session_scope(self._engine) as session:
            rows = session.execute(
                select(utility_providers)
                .where(utility_providers.c.user_id == user_id)
                .order_by(utility_providers.c.category, utility_providers.c.name)
            ).all()
        return [self._row_to_provider(row) for row in rows]

    def get_provider(self, user_id: str, provider_id: int) -> UtilityProvider:
        with session_scope(self._engine) as session:
            row = session.execute(
                select(utility_providers).where(
                    utility_providers.c.id == provider_id,
                    utility_providers.c.user_id == user_id,
                )
            ).one_or_none()
        if row is None:
            raise NotFoundError("Utility provider not found or does not belong to user.")
        return self._row_to_provider(row)

    def update_provider(
        self, user_id: str, provider_id: int, *, name: str, category: UtilityCategory
    ) -> None:
        with session_scope(self._engine) as session:
            self._ensure_unique_provider_name(
                session, user_id, name, exclude_id=provider_id
            )
            result = session.execute(
                update(utility_providers)
                .where(
                    utility_providers.c.id == provider_id,
                    utility_providers.c.user_id == user_id,
                )
                .values(name=name, category=UtilityCategory(category).value)
            )
            if result.rowcount == 0:
                raise NotFoundError(
                    "Utility provider not found or does not belong to user."
                )

    def delete_provider(self, user_id: str, provider_id: int) -> None:
        with session_scope(self._engine) as session:
            result = session.execute(
                delete(utility_providers).where(
                    utility_providers.c.id == provider_id,
                    utility_providers.c.user_id == user_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(
                    "Utility provider not found or does not belong to user."
                )

    @staticmethod
    def _ensure_unique_provider_name(
        session, user_id: str, name: str, exclude_id: Optional[int] = None
    ) -> None:
        query = select(utility_providers.c.id).where(
            utility_providers.c.user_id == user_id,
            func.lower(utility_providers.c.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            query = query.where(utility_providers.c.id != exclude_id)
        if session.execute(query).first() is not None:
            raise DuplicateRecordError(f'Utility provider "{name}" already exists.')

    # Tenants ------------------------------------------------------------

    def add_tenant(self, tenant: Tenant) -> Tenant:
        """Persist a new tenant. New tenants start with a zero balance."""

        with session_scope(self._engine) as session:
            result = session.execute(
                insert(tenants)
                .values(
                    user_id=tenant.user_id,
                    name=tenant.name,
                    email=tenant.email,
                    secondary_name=tenant.secondary_name,
                    shares=self._shares_to_json(tenant.shares),
                    outstanding_balance_cents=0,
                )
                .returning(tenants.c.id)
            )
            tenant_id = result.scalar_one()
        return replace(tenant, id=tenant_id, outstanding_balance=Decimal("0"))

    def list_tenants(self, user_id: str) -> List[Tenant]:
        with session_scope(self._engine) as session:
            rows = session.execute(
                select(tenants)
                .where(tenants.c.user_id == user_id)
                .order_by(tenants.c.name)
            ).all()
        return [self._row_to_tenant(row) for row in rows]

    def get_tenant(self, user_id: str, tenant_id: int) -> Tenant:
        with session_scope(self._engine) as session:
            row = session.execute(
                select(tenants).where(
                    tenants.c.id == tenant_id, tenants.c.user_id == user_id
                )
            ).one_or_none()
        if row is None:
            raise NotFoundError("Tenant not found or does not belong to user.")
        return self._row_to_tenant(row)

    def update_tenant(
        self,
        user_id: str,
        tenant_id: int,
        *,
        name: str,
        email: str,
        secondary_name: Optional[str],
        shares: Mapping[str, Decimal],
    ) -> None:
        """Update editable tenant details. The balance is left untouched."""

        with session_scope(self._engine) as session:
            result = session.execute(
                update(tenants)
                .where(tenants.c.id == tenant_id, tenants.c.user_id == user_id)
                .values(
                    name=name,
                    email=email,
                    secondary_name=secondary_name,
                    shares=self._shares_to_json(shares),
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Tenant not found or does not belong to user.")

    def update_tenant_balance(
        self, user_id: str, tenant_id: int, balance: Decimal
    ) -> Decimal:
        """Set the tenant's outstanding balance, rounded to cents."""

        rounded = round_currency(balance)
        with session_scope(self._engine) as session:
            result = session.execute(
                update(tenants)
                .where(tenants.c.id == tenant_id, tenants.c.user_id == user_id)
                .values(outstanding_balance_cents=to_minor_units(rounded))
            )
            if result.rowcount == 0:
                raise NotFoundError("Tenant not found or does not belong to user.")
        return rounded

    def delete_tenant(self, user_id: str, tenant_id: int) -> None:
        """Remove a tenant. Their saved bills are kept but unassigned."""

        with session_scope(self._engine) as session:
            result = session.execute(
                delete(tenants).where(
                    tenants.c.id == tenant_id, tenants.c.user_id == user_id
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Tenant not found or does not belong to user.")
            session.execute(
                update(consolidated_bills)
                .where(consolidated_bills.c.tenant_id == tenant_id)
                .values(tenant_id=None)
            )

    @staticmethod
    def _shares_to_json(shares: Mapping[str, Decimal]) -> Dict[str, str]:
        return {
            UtilityCategory(category).value: str(Decimal(value))
            for category, value in shares.items()
        }

    # Consolidated bills -------------------------------------------------

    def add_consolidated_bill(self, bill: ConsolidatedBill) -> ConsolidatedBill:
        """Persist ``bill``. Only one bill per user, period and tenant exists.

        Raises:
            DuplicateRecordError: When a bill for the same period and tenant
                has already been saved.
        """

        with session_scope(self._engine) as session:
            query = select(consolidated_bills.c.id).where(
                consolidated_bills.c.user_id == bill.user_id,
                consolidated_bills.c.year == bill.year,
                consolidated_bills.c.month == bill.month,
            )
            if bill.tenant_id is None:
                query = query.where(consolidated_bills.c.tenant_id.is_(None))
            else:
                query = query.where(consolidated_bills.c.tenant_id == bill.tenant_id)
            if session.execute(query).first() is not None:
                raise DuplicateRecordError(
                    f"Consolidated bill for {bill.month}/{bill.year} already exists."
                )
            result = session.execute(
                insert(consolidated_bills)
                .values(
                    user_id=bill.user_id,
                    tenant_id=bill.tenant_id,
                    month=bill.month,
                    year=bill.year,
                    categories={
                        category: charge.to_dict()
                        for category, charge in bill.categories.items()
                    },
                    total_amount_cents=to_minor_units(bill.total_amount),
                    paid=bill.paid,
                    date_sent=bill.date_sent,
                    date_paid=bill.date_paid,
                    payment_message_id=bill.payment_message_id,
                )
                .returning(consolidated_bills.c.id)
            )
            bill_id = result.scalar_one()
        return replace(bill, id=bill_id, total_amount=round_currency(bill.total_amount))

    def list_consolidated_bills(
        self, user_id: str, period: Optional[BillingPeriod] = None
    ) -> List[ConsolidatedBill]:
        """Return saved bills, newest period first."""

        query = select(consolidated_bills).where(
            consolidated_bills.c.user_id == user_id
        )
        if period is not None:
            query = query.where(
                consolidated_bills.c.year == period.year,
                consolidated_bills.c.month == period.month,
            )
        query = query.order_by(
            consolidated_bills.c.year.desc(),
            consolidated_bills.c.month.desc(),
            consolidated_bills.c.id,
        )
        with session_scope(self._engine) as session:
            rows = session.execute(query).all()
        return [self._row_to_bill(row) for row in rows]

    def get_consolidated_bill(self, user_id: str, bill_id: int) -> ConsolidatedBill:
        with session_scope(self._engine) as session:
            row = session.execute(
                select(consolidated_bills).where(
                    consolidated_bills.c.id == bill_id,
                    consolidated_bills.c.user_id == user_id,
                )
            ).one_or_none()
        if row is None:
            raise NotFoundError("Bill not found or does not belong to user.")
        return self._row_to_bill(row)

    def mark_bill_sent(
        self, user_id: str, bill_id: int, sent_at: Optional[datetime] = None
    ) -> None:
        self._update_bill(user_id, bill_id, date_sent=sent_at or utcnow())

    def mark_bill_paid(
        self,
        user_id: str,
        bill_id: int,
        payment_message_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> None:
        self._update_bill(
            user_id,
            bill_id,
            paid=True,
            date_paid=paid_at or utcnow(),
            payment_message_id=payment_message_id,
        )

    def delete_consolidated_bill(self, user_id: str, bill_id: int) -> None:
        with session_scope(self._engine) as session:
            result = session.execute(
                delete(consolidated_bills).where(
                    consolidated_bills.c.id == bill_id,
                    consolidated_bills.c.user_id == user_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Bill not found or does not belong to user.")

    def _update_bill(self, user_id: str, bill_id: int, **values) -> None:
        with session_scope(self._engine) as session:
            result = session.execute(
                update(consolidated_bills)
                .where(
                    consolidated_bills.c.id == bill_id,
                    consolidated_bills.c.user_id == user_id,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("Bill not found or does not belong to user.")

    # Email dispatch log -------------------------------------------------

    def log_email_dispatch(
        self, feature: str, user_id: Optional[str], recipient: str
    ) -> None:
        with session_scope(self._engine) as session:
            session.execute(
                insert(email_dispatch_log).values(
                    user_id=user_id,
                    feature=feature,
                    recipient=recipient,
                    created_at=utcnow(),
                )
            )

    def count_email_dispatches(
        self,
        since: datetime,
        *,
        user_id: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> int:
        query = select(func.count(email_dispatch_log.c.id)).where(
            email_dispatch_log.c.created_at >= since
        )
        if user_id is not None:
            query = query.where(email_dispatch_log.c.user_id == user_id)
        if recipient is not None:
            query = query.where(email_dispatch_log.c.recipient == recipient)
        with session_scope(self._engine) as session:
            return int(session.execute(query).scalar() or 0)

    # Row mapping --------------------------------------------------------

    @staticmethod
    def _row_to_provider(row) -> UtilityProvider:
        values = row._mapping
        return UtilityProvider(
            id=values["id"],
            user_id=values["user_id"],
            name=values["name"],
            category=UtilityCategory(values["category"]),
        )

    @staticmethod
    def _row_to_tenant(row) -> Tenant:
        values = row._mapping
        return Tenant(
            id=values["id"],
            user_id=values["user_id"],
            name=values["name"],
            email=values["email"],
            secondary_name=values["secondary_name"],
            shares={
                category: Decimal(value)
                for category, value in (values["shares"] or {}).items()
            },
            outstanding_balance=from_minor_units(values["outstanding_balance_cents"]),
        )

    @staticmethod
    def _row_to_bill(row) -> ConsolidatedBill:
        values = row._mapping
        return ConsolidatedBill(
            id=values["id"],
            user_id=values["user_id"],
            tenant_id=values["tenant_id"],
            month=values["month"],
            year=values["year"],
            categories={
                category: CategoryCharge.from_dict(payload)
                for category, payload in (values["categories"] or {}).items()
            },
            total_amount=from_minor_units(values["total_amount_cents"]),
            paid=values["paid"],
            date_sent=values["date_sent"],
            date_paid=values["date_paid"],
            payment_message_id=values["payment_message_id"],
        )
