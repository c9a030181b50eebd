from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.db.types import UTCDateTime, new_id
from src.utils.time import utcnow


class Base(DeclarativeBase):
    pass


Money = Numeric(14, 2)


class User(Base):
    """Local profile row for a Supabase auth user (id is the auth user id)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)


class PlaidItem(Base):
    __tablename__ = "plaid_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    # Fernet token (or plaintext in unkeyed dev setups); see src.core.token_vault.
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    institution_id: Mapped[Optional[str]] = mapped_column(String(100))
    institution_name: Mapped[Optional[str]] = mapped_column(String(200))
    last_synced_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime())
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    accounts: Mapped[list["Account"]] = relationship(back_populates="plaid_item")


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("plaid_item_id", "account_id", name="uq_accounts_item_account"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    plaid_item_id: Mapped[Optional[str]] = mapped_column(ForeignKey("plaid_items.id"))
    account_id: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    official_name: Mapped[Optional[str]] = mapped_column(String(200))
    type: Mapped[Optional[str]] = mapped_column(String(50))
    subtype: Mapped[Optional[str]] = mapped_column(String(50))
    mask: Mapped[Optional[str]] = mapped_column(String(10))
    balance_current: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    balance_available: Mapped[Optional[Decimal]] = mapped_column(Money)
    balance_limit: Mapped[Optional[Decimal]] = mapped_column(Money)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    institution_name: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

    plaid_item: Mapped[Optional["PlaidItem"]] = relationship(back_populates="accounts")


class TransactionCategory(Base):
    __tablename__ = "transaction_categories"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_categories_user_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # NULL for the shared system categories.
    user_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    color: Mapped[Optional[str]] = mapped_column(String(16))
    parent_category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("transaction_categories.id"))
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class RecurringTransaction(Base):
    __tablename__ = "recurring_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "name", "account_id", name="uq_recurring_user_name_account"),
        Index("ix_recurring_user_next_due", "user_id", "next_due_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    account_id: Mapped[Optional[str]] = mapped_column(ForeignKey("accounts.id"))
    category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("transaction_categories.id"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    expected_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    average_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    frequency: Mapped[str] = mapped_column(String(40), nullable=False)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer)
    week_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    next_due_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    last_transaction_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, default="expense")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_subscription: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    total_occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    missed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

    account: Mapped[Optional["Account"]] = relationship()
    category: Mapped[Optional["TransactionCategory"]] = relationship()


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "transaction_id", name="uq_transactions_account_txn"),
        Index("ix_transactions_user_date", "user_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)

    plaid_category: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    plaid_primary_category: Mapped[Optional[str]] = mapped_column(String(100))
    plaid_detailed_category: Mapped[Optional[str]] = mapped_column(String(300))
    category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("transaction_categories.id"))
    user_category_name: Mapped[Optional[str]] = mapped_column(String(100))

    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    location_city: Mapped[Optional[str]] = mapped_column(String(100))
    location_state: Mapped[Optional[str]] = mapped_column(String(100))
    location_country: Mapped[Optional[str]] = mapped_column(String(100))
    location_address: Mapped[Optional[str]] = mapped_column(String(300))
    location_lat: Mapped[Optional[float]] = mapped_column(Float)
    location_lon: Mapped[Optional[float]] = mapped_column(Float)

    transaction_type: Mapped[Optional[str]] = mapped_column(String(20))
    payment_channel: Mapped[Optional[str]] = mapped_column(String(40))
    check_number: Mapped[Optional[str]] = mapped_column(String(40))

    pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_transaction_id: Mapped[Optional[str]] = mapped_column(ForeignKey("recurring_transactions.id"))
    excluded_from_budget: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_transfer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transfer_to_account_id: Mapped[Optional[str]] = mapped_column(ForeignKey("accounts.id"))

    notes: Mapped[Optional[str]] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    authorized_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    posted_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    expected_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    due_date: Mapped[Optional[dt.date]] = mapped_column(Date)

    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

    account: Mapped["Account"] = relationship(foreign_keys=[account_id])
    category: Mapped[Optional["TransactionCategory"]] = relationship()


def model_to_dict(row: Any) -> dict[str, Any]:
    """Column values of an ORM row keyed by column name."""
    return {c.key: getattr(row, c.key) for c in row.__table__.columns}
