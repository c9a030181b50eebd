from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from conftest import OTHER_USER_ID, USER_ID, make_account, make_item, make_txn
from src.core.errors import NotFoundError, ValidationError
from src.db.models import RecurringTransaction, Transaction
from src.rocketbucks.transactions import (
    delete_transaction,
    parse_tags,
    search_transactions,
    update_transaction,
)


@pytest.fixture()
def seeded(session):
    acct = make_account(session, make_item(session))
    card = make_account(session, acct.plaid_item, account_id="plaid-credit", type="credit", subtype="credit card", mask="3333")
    make_txn(session, acct, transaction_id="a", amount="4.50", date=dt.date(2026, 10, 1), name="Starbucks 123", merchant_name="Starbucks", tags=["coffee"])
    make_txn(session, acct, transaction_id="b", amount="82.10", date=dt.date(2026, 10, 3), name="Whole Foods", tags=["groceries", "home"])
    make_txn(session, card, transaction_id="c", amount="15.49", date=dt.date(2026, 10, 5), name="NETFLIX.COM", pending=True)
    make_txn(session, card, transaction_id="d", amount="-2500.00", date=dt.date(2026, 9, 30), name="ACME Payroll")

    other = make_account(session, make_item(session, user_id=OTHER_USER_ID, item_id="item-2"))
    make_txn(session, other, transaction_id="z", amount="4.50", date=dt.date(2026, 10, 1), name="Starbucks")
    session.commit()
    return {"checking": acct, "card": card}


def _ids(out):
    return [t["transaction_id"] for t in out["transactions"]]


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, []),
        (["a", " b ", ""], ["a", "b"]),
        ('["x", "y"]', ["x", "y"]),
        ("x, y,,z", ["x", "y", "z"]),
        ("solo", ["solo"]),
    ],
)
def test_parse_tags(raw, expected):
    assert parse_tags(raw) == expected


def test_search_defaults_to_newest_first_and_scopes_to_user(session, seeded):
    out = search_transactions(session, user_id=USER_ID, params={})
    assert _ids(out) == ["c", "b", "a", "d"]
    assert out["count"] == 4
    assert out["limit"] == 100
    assert out["offset"] == 0


def test_search_text_matches_name_or_merchant(session, seeded):
    assert _ids(search_transactions(session, user_id=USER_ID, params={"search": "starbucks"})) == ["a"]
    assert _ids(search_transactions(session, user_id=USER_ID, params={"merchant_name": "STAR"})) == ["a"]


def test_search_filters(session, seeded):
    def run(**params):
        return _ids(search_transactions(session, user_id=USER_ID, params=params))

    assert run(account_id=seeded["card"].id) == ["c", "d"]
    assert run(transaction_type="income") == ["d"]
    assert run(start_date="2026-10-02", end_date="2026-10-04") == ["b"]
    assert run(pending="true") == ["c"]
    assert run(min_amount="10", max_amount="100") == ["c", "b"]
    assert run(tags="groceries") == ["b"]
    assert run(tags='["groceries","coffee"]') == []


def test_search_sorting_and_paging(session, seeded):
    out = search_transactions(session, user_id=USER_ID, params={"sort_by": "amount", "sort_order": "asc", "limit": "2", "offset": "1"})
    assert _ids(out) == ["a", "c"]
    assert out["count"] == 4
    # Unknown sort columns fall back to date.
    assert _ids(search_transactions(session, user_id=USER_ID, params={"sort_by": "secret"}))[0] == "c"


def test_search_rows_include_account_summary(session, seeded):
    row = search_transactions(session, user_id=USER_ID, params={"search": "netflix"})["transactions"][0]
    assert row["accounts"]["mask"] == "3333"
    assert row["amount"] == 15.49
    assert row["transaction_categories"] is None


def test_update_only_touches_editable_fields(session, seeded):
    txn = session.query(Transaction).filter(Transaction.transaction_id == "b").one()
    update_transaction(
        session,
        user_id=USER_ID,
        transaction_id=txn.id,
        data={"notes": "weekly shop", "tags": "food, home", "excluded_from_budget": "true", "amount": "0.01", "user_id": OTHER_USER_ID},
    )
    assert txn.notes == "weekly shop"
    assert txn.tags == ["food", "home"]
    assert txn.excluded_from_budget is True
    assert txn.amount == Decimal("82.10")
    assert txn.user_id == USER_ID


def test_update_links_and_unlinks_recurring(session, seeded):
    txn = session.query(Transaction).filter(Transaction.transaction_id == "c").one()
    rec = RecurringTransaction(user_id=USER_ID, name="Netflix", frequency="monthly", start_date=dt.date(2026, 1, 5))
    session.add(rec)
    session.flush()

    update_transaction(session, user_id=USER_ID, transaction_id=txn.id, data={"recurring_transaction_id": rec.id})
    assert txn.recurring_transaction_id == rec.id
    assert rec.total_occurrences == 1
    assert rec.next_due_date == dt.date(2026, 11, 5)

    update_transaction(session, user_id=USER_ID, transaction_id=txn.id, data={"recurring_transaction_id": None})
    assert txn.recurring_transaction_id is None

    with pytest.raises(ValidationError, match="Recurring transaction not found"):
        update_transaction(session, user_id=USER_ID, transaction_id=txn.id, data={"recurring_transaction_id": "missing"})


def test_update_and_delete_are_scoped_to_owner(session, seeded):
    theirs = session.query(Transaction).filter(Transaction.transaction_id == "z").one()
    with pytest.raises(NotFoundError, match="Transaction not found"):
        update_transaction(session, user_id=USER_ID, transaction_id=theirs.id, data={"notes": "mine"})
    with pytest.raises(NotFoundError):
        delete_transaction(session, user_id=USER_ID, transaction_id=theirs.id)

    mine = session.query(Transaction).filter(Transaction.transaction_id == "a").one()
    delete_transaction(session, user_id=USER_ID, transaction_id=mine.id)
    assert session.query(Transaction).filter(Transaction.user_id == USER_ID).count() == 3


def test_update_rejects_another_users_category(session, seeded):
    from src.db.models import TransactionCategory

    theirs = TransactionCategory(user_id=OTHER_USER_ID, name="Secret Fund", icon="🔒", color="#000000")
    system = TransactionCategory(user_id=None, name="Groceries", icon="🛒", color="#22c55e", is_system=True)
    session.add_all([theirs, system])
    session.flush()
    txn = session.query(Transaction).filter(Transaction.transaction_id == "b").one()

    with pytest.raises(ValidationError, match="Category not found"):
        update_transaction(session, user_id=USER_ID, transaction_id=txn.id, data={"category_id": theirs.id, "notes": "x"})
    assert txn.category_id is None
    assert txn.notes is None

    update_transaction(session, user_id=USER_ID, transaction_id=txn.id, data={"category_id": system.id})
    assert txn.category_id == system.id
    update_transaction(session, user_id=USER_ID, transaction_id=txn.id, data={"category_id": ""})
    assert txn.category_id is None
