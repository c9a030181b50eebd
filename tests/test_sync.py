from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from conftest import USER_ID, make_account, make_item, make_txn
from src.core.errors import NoLinkedItemsError, SyncRateLimited
from src.db.models import PlaidItem, RecurringTransaction, Transaction
from src.rocketbucks.config import AppConfig, CategorizationConfig
from src.rocketbucks.sync import (
    list_recent_transactions,
    map_plaid_transaction,
    sync_user_recurring,
    sync_user_transactions,
    upsert_transactions,
)

NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture()
def cfg(tmp_path) -> AppConfig:
    return AppConfig(categorization=CategorizationConfig(rules_path=str(tmp_path / "rules.yaml")))


def _plaid_txn(transaction_id, amount, date, name, **kw):
    tx = {
        "transaction_id": transaction_id,
        "account_id": "plaid-checking",
        "amount": amount,
        "date": date,
        "name": name,
        "pending": False,
    }
    tx.update(kw)
    return tx


def test_map_plaid_transaction_expense_with_plaid_categories():
    row = map_plaid_transaction(
        _plaid_txn(
            "tx-1",
            12.5,
            "2026-10-01",
            "Chipotle 1234",
            category=["Food and Drink", "Restaurants"],
            merchant_name="Chipotle",
            authorized_date="2026-09-30",
            location={"city": "Austin", "region": "TX", "lat": "30.26", "lon": None},
        ),
        user_id=USER_ID,
        account_map={"plaid-checking": "acct-1"},
    )
    assert row["account_id"] == "acct-1"
    assert row["amount"] == Decimal("12.50")
    assert row["transaction_type"] == "expense"
    assert row["plaid_primary_category"] == "Food and Drink"
    assert row["plaid_detailed_category"] == "Food and Drink > Restaurants"
    assert row["user_category_name"] is None
    assert row["authorized_date"] == dt.date(2026, 9, 30)
    assert row["location_city"] == "Austin"
    assert row["location_state"] == "TX"
    assert row["location_lat"] == 30.26
    assert row["location_lon"] is None


def test_map_plaid_transaction_auto_categorizes_and_flags_income():
    account_map = {"plaid-checking": "acct-1"}
    netflix = map_plaid_transaction(_plaid_txn("tx-2", 15.49, "2026-10-02", "Netflix.com"), user_id=USER_ID, account_map=account_map)
    assert netflix["user_category_name"] == "Entertainment"
    assert netflix["plaid_category"] == []

    pay = map_plaid_transaction(_plaid_txn("tx-3", -2500, "2026-10-03", "Qwerty Zzyzx"), user_id=USER_ID, account_map=account_map)
    assert pay["transaction_type"] == "income"
    assert pay["user_category_name"] is None

    assert map_plaid_transaction(_plaid_txn("tx-4", 1, "2026-10-03", "x", account_id="other"), user_id=USER_ID, account_map=account_map) is None
    assert map_plaid_transaction(_plaid_txn("tx-5", 1, "bad", "x"), user_id=USER_ID, account_map=account_map) is None


def test_upsert_keeps_user_owned_fields(session):
    acct = make_account(session, make_item(session))
    base = map_plaid_transaction(
        _plaid_txn("tx-1", 20, "2026-10-01", "Netflix"), user_id=USER_ID, account_map={"plaid-checking": acct.id}
    )
    assert upsert_transactions(session, [base]) == 1

    txn = session.query(Transaction).one()
    txn.notes = "shared with roommate"
    txn.tags = ["home"]
    txn.user_category_name = "Streaming"
    session.flush()

    again = dict(base, name="NETFLIX.COM", amount=Decimal("22.99"), notes=None, tags=[])
    assert upsert_transactions(session, [again]) == 1

    txn = session.query(Transaction).one()
    assert txn.name == "NETFLIX.COM"
    assert txn.amount == Decimal("22.99")
    assert txn.notes == "shared with roommate"
    assert txn.tags == ["home"]
    assert txn.user_category_name == "Streaming"


def test_sync_user_transactions_writes_rows_and_drops_pending_twin(session, fake_plaid, cfg):
    item = make_item(session)
    acct = make_account(session, item)
    make_txn(session, acct, transaction_id="pend-1", amount="9.99", date=dt.date(2026, 10, 15), name="Spotify", pending=True)
    session.commit()

    fake_plaid.transactions = [
        _plaid_txn("post-1", 9.99, "2026-10-16", "Spotify", pending_transaction_id="pend-1"),
        _plaid_txn("tx-2", -1200, "2026-10-15", "ACME Payroll"),
        _plaid_txn("tx-3", 3, "2026-10-15", "Unlinked", account_id="elsewhere"),
    ]
    out = sync_user_transactions(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)

    assert out["success"] is True
    assert out["synced_count"] == 2
    assert out["message"] == "Successfully synced 2 transactions and recurring charges"
    assert out["synced_at"] == NOW.isoformat()

    ids = sorted(t.transaction_id for t in session.query(Transaction))
    assert ids == ["post-1", "tx-2"]
    assert session.query(PlaidItem).one().last_synced_at is not None


def test_sync_rate_limit_reports_hours_remaining(session, fake_plaid, cfg):
    make_account(session, make_item(session, last_synced_at=NOW - dt.timedelta(hours=2, minutes=30)))
    session.commit()

    with pytest.raises(SyncRateLimited) as e:
        sync_user_transactions(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)
    assert e.value.hours_remaining == 22

    out = sync_user_transactions(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW, enforce_rate_limit=False)
    assert out["synced_count"] == 0
    assert out["message"] == "Successfully synced 0 transactions and recurring charges"


def test_sync_without_items_raises(session, fake_plaid, cfg):
    with pytest.raises(NoLinkedItemsError):
        sync_user_transactions(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)


def test_failing_item_is_skipped(session, fake_plaid, cfg):
    make_account(session, make_item(session))
    session.commit()
    fake_plaid.fail_transactions = True

    out = sync_user_transactions(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)

    assert out["success"] is True
    assert out["synced_count"] == 0
    assert session.query(PlaidItem).one().last_synced_at is None


def test_sync_recurring_stores_streams(session, fake_plaid, cfg):
    make_account(session, make_item(session))
    session.commit()
    fake_plaid.streams["outflow_streams"] = [
        {
            "account_id": "plaid-checking",
            "merchant_name": "Spotify",
            "description": "SPOTIFY",
            "frequency": "MONTHLY",
            "first_date": "2026-01-10",
            "last_date": "2026-10-10",
            "last_amount": {"amount": 10.99},
            "average_amount": {"amount": 10.99},
            "status": "MATURE",
        }
    ]

    out = sync_user_recurring(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)
    assert out["recurring_count"] == 1
    assert out["message"] == "Successfully synced 1 recurring charge"

    # Re-running updates the same row.
    sync_user_recurring(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)
    row = session.query(RecurringTransaction).one()
    assert row.is_subscription is True
    assert row.expected_amount == Decimal("10.99")


def test_sync_recurring_falls_back_to_detection(session, fake_plaid, cfg):
    acct = make_account(session, make_item(session))
    make_txn(session, acct, transaction_id="g1", amount="45.00", date=dt.date(2026, 8, 3), name="City Gym")
    make_txn(session, acct, transaction_id="g2", amount="45.00", date=dt.date(2026, 9, 3), name="City Gym")
    session.commit()

    out = sync_user_recurring(session, user_id=USER_ID, plaid=fake_plaid, cfg=cfg, now=NOW)

    assert out["recurring_count"] == 1
    row = session.query(RecurringTransaction).one()
    assert row.name == "City Gym"
    assert row.frequency == "monthly"
    assert row.notes == "Auto-detected from 2 transactions"


def test_list_recent_transactions(session, cfg):
    assert list_recent_transactions(session, user_id=USER_ID, cfg=cfg, today=NOW.date()) == {
        "transactions": [],
        "last_synced": None,
    }

    acct = make_account(session, make_item(session, last_synced_at=NOW))
    make_txn(session, acct, transaction_id="new", amount="5.00", date=dt.date(2026, 10, 17), name="Coffee")
    make_txn(session, acct, transaction_id="old", amount="5.00", date=dt.date(2026, 8, 1), name="Coffee")
    session.commit()

    out = list_recent_transactions(session, user_id=USER_ID, cfg=cfg, today=NOW.date())
    assert [t["transaction_id"] for t in out["transactions"]] == ["new"]
    assert out["transactions"][0]["accounts"]["mask"] == "0000"
    assert out["last_synced"] == NOW.isoformat()
