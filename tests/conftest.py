from __future__ import annotations

import datetime as dt
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.adapters.supabase_auth.client import AuthServiceError, AuthSession, AuthUser
from src.db.init_db import seed_system_categories
from src.db.models import Account, Base, PlaidItem, Transaction

USER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_USER_ID = "22222222-2222-2222-2222-222222222222"
GOOD_TOKEN = "good-token"


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)


@pytest.fixture()
def session(engine) -> Session:
    SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)
    with SessionLocal() as s:
        yield s


class FakeAuthClient:
    def __init__(self) -> None:
        self.url = "https://project.supabase.co"
        self.anon_key = "anon-key"
        self.service_key = "service-key"
        self.users: dict[str, AuthUser] = {
            GOOD_TOKEN: AuthUser(id=USER_ID, email="pat@example.com", user_metadata={"full_name": "Pat Doe"}),
            "other-token": AuthUser(id=OTHER_USER_ID, email="sam@example.com"),
        }
        self.magic_links: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.oauth_redirects: list[str] = []
        self.fail_delete = False

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        if not self.configured:
            raise AuthServiceError("Server configuration error: Supabase credentials not set.")
        return self.users.get(access_token)

    def google_oauth_url(self, *, redirect_to: str) -> str:
        self.oauth_redirects.append(redirect_to)
        return f"https://project.supabase.co/auth/v1/authorize?provider=google&redirect_to={redirect_to}"

    def exchange_code(self, code: str) -> AuthSession:
        if code != "good-code":
            raise AuthServiceError("invalid flow state, no valid flow state found")
        return AuthSession(
            access_token="session-access",
            refresh_token="session-refresh",
            expires_at=1_900_000_000,
            user=self.users[GOOD_TOKEN],
        )

    def send_magic_link(self, *, email: str, redirect_to: str, data: dict[str, Any]) -> None:
        self.magic_links.append({"email": email, "redirect_to": redirect_to, "data": data})

    def delete_user(self, user_id: str) -> None:
        if self.fail_delete:
            raise AuthServiceError("admin API unavailable")
        self.deleted.append(user_id)


class FakePlaidClient:
    def __init__(self) -> None:
        self.configured = True
        self.accounts: list[dict[str, Any]] = [
            {
                "account_id": "plaid-checking",
                "name": "Plaid Checking",
                "official_name": "Plaid Gold Standard 0% Interest Checking",
                "type": "depository",
                "subtype": "checking",
                "mask": "0000",
                "balances": {"current": 110, "available": 100, "iso_currency_code": "USD"},
            },
            {
                "account_id": "plaid-credit",
                "name": "Plaid Credit Card",
                "type": "credit",
                "subtype": "credit card",
                "mask": "3333",
                "balances": {"current": 410, "available": None, "limit": 2000, "iso_currency_code": "USD"},
            },
        ]
        self.transactions: list[dict[str, Any]] = []
        self.streams: dict[str, list[dict[str, Any]]] = {"inflow_streams": [], "outflow_streams": []}
        self.removed: list[str] = []
        self.link_token_calls: list[dict[str, Any]] = []
        self.fail_transactions = False

    def create_link_token(self, **kwargs) -> str:
        self.link_token_calls.append(kwargs)
        return "link-sandbox-abc"

    def exchange_public_token(self, *, public_token: str) -> tuple[str, str]:
        return "access-sandbox-123", "item-sandbox-1"

    def item_get(self, *, access_token: str) -> dict[str, Any]:
        return {"item_id": "item-sandbox-1", "institution_id": "ins_109508"}

    def item_remove(self, *, access_token: str) -> None:
        self.removed.append(access_token)

    def institution_get_by_id(self, *, institution_id: str, country_codes=None) -> dict[str, Any]:
        return {"institution_id": institution_id, "name": "First Platypus Bank"}

    def get_accounts(self, *, access_token: str) -> list[dict[str, Any]]:
        return list(self.accounts)

    def transactions_get_all(self, *, access_token: str, start_date: dt.date, end_date: dt.date, page_size: int = 500):
        if self.fail_transactions:
            raise RuntimeError("ITEM_LOGIN_REQUIRED")
        return list(self.transactions)

    def transactions_recurring_get(self, *, access_token: str, account_ids=None) -> dict[str, Any]:
        return {k: list(v) for k, v in self.streams.items()}


class FakeAdvisorClient:
    def __init__(self, reply: str = "### Plan\n1. Trim dining out.") -> None:
        self.api_key = "or-key"
        self.reply = reply
        self.calls: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def chat(self, **kwargs) -> str:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture()
def fake_auth() -> FakeAuthClient:
    return FakeAuthClient()


@pytest.fixture()
def fake_plaid() -> FakePlaidClient:
    return FakePlaidClient()


@pytest.fixture()
def fake_advisor() -> FakeAdvisorClient:
    return FakeAdvisorClient()


@pytest.fixture()
def client(session, fake_auth, fake_plaid, fake_advisor, monkeypatch):
    from fastapi.testclient import TestClient

    from src.app import deps
    from src.app.main import create_app
    from src.rocketbucks.config import AppConfig

    monkeypatch.delenv("OPENROUTER_MODEL", raising=False)
    seed_system_categories(session)
    session.commit()

    app = create_app()

    def _db():
        yield session

    app.dependency_overrides[deps.db_session] = _db
    app.dependency_overrides[deps.get_auth_client] = lambda: fake_auth
    app.dependency_overrides[deps.get_plaid_client] = lambda: fake_plaid
    app.dependency_overrides[deps.get_advisor_client] = lambda: fake_advisor
    app.dependency_overrides[deps.get_config] = lambda: AppConfig()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {GOOD_TOKEN}"}


def make_item(session: Session, *, user_id: str = USER_ID, item_id: str = "item-1", **kw) -> PlaidItem:
    item = PlaidItem(
        user_id=user_id,
        item_id=item_id,
        access_token=kw.pop("access_token", "access-sandbox-1"),
        institution_name=kw.pop("institution_name", "First Platypus Bank"),
        **kw,
    )
    session.add(item)
    session.flush()
    return item


def make_account(session: Session, item: PlaidItem, *, account_id: str = "plaid-checking", **kw) -> Account:
    values = {
        "user_id": item.user_id,
        "plaid_item_id": item.id,
        "account_id": account_id,
        "name": "Checking",
        "type": "depository",
        "subtype": "checking",
        "mask": "0000",
        "balance_current": Decimal("100.00"),
        "institution_name": item.institution_name,
    }
    values.update(kw)
    acct = Account(**values)
    session.add(acct)
    session.flush()
    return acct


def make_txn(session: Session, account: Account, *, transaction_id: str, amount: str, date: dt.date, name: str, **kw) -> Transaction:
    values = {
        "user_id": account.user_id,
        "account_id": account.id,
        "transaction_id": transaction_id,
        "amount": Decimal(amount),
        "date": date,
        "name": name,
        "transaction_type": "expense" if Decimal(amount) > 0 else "income",
    }
    values.update(kw)
    txn = Transaction(**values)
    session.add(txn)
    session.flush()
    return txn
