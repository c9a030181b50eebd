from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from conftest import USER_ID, make_account, make_item, make_txn
from src.db.models import RecurringTransaction
from src.rocketbucks.advisor import SYSTEM_PROMPT, EmptyAdvice, build_messages, normalize_history, run_chat
from src.rocketbucks.config import AppConfig
from src.rocketbucks.insights import (
    build_financial_context,
    empty_context,
    looks_like_payment_or_transfer,
    summarize_context_for_prompt,
)

NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture()
def household(session):
    item = make_item(session)
    checking = make_account(
        session, item, name="Checking", balance_current=Decimal("1200"), balance_available=Decimal("1000")
    )
    make_account(session, item, account_id="plaid-credit", name="Card", type="credit", subtype="credit card", balance_current=Decimal("300"))

    make_txn(session, checking, transaction_id="kroger", amount="200.00", date=dt.date(2026, 10, 10), name="Kroger", user_category_name="Groceries")
    make_txn(session, checking, transaction_id="chipotle", amount="100.00", date=dt.date(2026, 10, 1), name="Chipotle", user_category_name="Dining")
    make_txn(session, checking, transaction_id="cc-pay", amount="500.00", date=dt.date(2026, 10, 5), name="Payment Thank You")
    make_txn(session, checking, transaction_id="payroll", amount="-3000.00", date=dt.date(2026, 10, 1), name="ACME Payroll", user_category_name="Income")
    make_txn(session, checking, transaction_id="prior", amount="200.00", date=dt.date(2026, 9, 1), name="Kroger", user_category_name="Groceries")
    make_txn(session, checking, transaction_id="ancient", amount="999.00", date=dt.date(2026, 6, 1), name="Old Purchase")

    session.add_all(
        [
            RecurringTransaction(
                user_id=USER_ID,
                name="Netflix",
                frequency="monthly",
                start_date=dt.date(2026, 1, 25),
                next_due_date=dt.date(2026, 10, 25),
                expected_amount=Decimal("15.49"),
                is_subscription=True,
            ),
            RecurringTransaction(
                user_id=USER_ID,
                name="ACME Payroll",
                frequency="biweekly",
                start_date=dt.date(2026, 1, 1),
                expected_amount=Decimal("3000.00"),
                transaction_type="income",
            ),
        ]
    )
    session.commit()


@pytest.mark.parametrize(
    "name,merchant,expected",
    [
        ("AMEX EPAYMENT ACH PMT", None, True),
        ("Payment Thank You - Web", None, True),
        ("Chase Credit Card Payment", None, True),
        ("Venmo", "Venmo", True),
        ("Online Transfer to SAV", None, True),
        ("Whole Foods", "Whole Foods", False),
    ],
)
def test_looks_like_payment_or_transfer(name, merchant, expected):
    assert looks_like_payment_or_transfer(name, merchant) is expected


def test_build_financial_context(session, household):
    ctx = build_financial_context(session, user_id=USER_ID, now=NOW)

    assert ctx["totals"] == {
        "total_assets": 1200.0,
        "total_liabilities": 300.0,
        "net_worth": 900.0,
        "liquid_cash": 1000.0,
        "invested": 0.0,
    }
    sp = ctx["spending"]
    assert sp["total_spending_30"] == 300.0
    assert sp["prev_spending_30"] == 200.0
    assert sp["spending_change"] == 100.0
    assert sp["average_daily"] == 10.0
    assert sp["total_income_30"] == 3000.0
    assert sp["net_cash_flow_30"] == 2700.0
    assert [(c["name"], c["percent"]) for c in sp["top_categories"]] == [("Groceries", 67), ("Dining", 33)]
    assert sp["large_purchases"][0] == {"name": "Kroger", "amount": 200.0, "date": "2026-10-10", "category": "General"}

    rc = ctx["recurring"]
    assert rc["subscription_count"] == 1
    assert rc["monthly_recurring"] == 15.49
    assert rc["upcoming_charges"] == [{"name": "Netflix", "amount": 15.49, "frequency": "monthly", "next_due_date": "2026-10-25"}]
    assert ctx["insights"] == [
        "Spending is up 50.0% vs the prior 30 days.",
        "Recurring charges represent 5.2% of monthly spend.",
    ]
    assert ctx["generated_at"] == NOW.isoformat()


def test_summary_lines(session, household):
    lines = summarize_context_for_prompt(build_financial_context(session, user_id=USER_ID, now=NOW)).splitlines()

    assert lines[0] == "Net worth $900 = assets $1,200 minus liabilities $300."
    assert lines[1] == "Liquid cash $1,000 | Invested assets $0."
    assert lines[2] == "30-day spending $300 (+$100 vs prior 30 days). Avg daily spend $10.00."
    assert lines[3] == "30-day income $3,000 | Net cash flow +$2,700."
    assert lines[4] == "Top categories last 30 days: Groceries: $200 (67% of spend); Dining: $100 (33% of spend)."
    assert lines[5] == "Largest recent purchases: Kroger $200 on 2026-10-10; Chipotle $100 on 2026-10-01."
    assert lines[6] == "Recurring/subscription expenses: 1 active, about $15 per month."
    assert lines[7] == "Upcoming bills: Netflix $15 due 2026-10-25."
    assert lines[8] == "Key accounts: Checking (depository): $1,200; Card (credit): $300."
    assert lines[9] == (
        "Insights: Spending is up 50.0% vs the prior 30 days. | Recurring charges represent 5.2% of monthly spend."
    )


def test_summary_for_empty_and_missing_context():
    assert summarize_context_for_prompt(None) == "No financial data is available yet."
    lines = summarize_context_for_prompt(empty_context(NOW)).splitlines()
    assert lines[0] == "Net worth $0 = assets $0 minus liabilities $0."
    assert lines[-1] == "Top categories last 30 days: no categorized spending recorded."


def test_normalize_history_keeps_tail_and_renames_ai():
    conversation = [
        {"role": "user", "content": "first"},
        {"role": "system", "content": "ignore me"},
        "garbage",
        {"role": "ai", "content": "x" * 50},
        {"role": "user", "content": 42},
        {"role": "user", "content": "latest"},
    ]
    assert normalize_history(conversation, max_history=2, max_chars=10) == [
        {"role": "assistant", "content": "x" * 10},
        {"role": "user", "content": "latest"},
    ]
    assert normalize_history("nope", max_history=8, max_chars=10) == []
    assert normalize_history(conversation, max_history=0, max_chars=10) == []


def test_build_messages_order():
    msgs = build_messages("Hi", context_summary="Net worth $1.", history=[{"role": "assistant", "content": "Hello"}])
    assert [m["role"] for m in msgs] == ["system", "system", "assistant", "user"]
    assert msgs[0]["content"] == SYSTEM_PROMPT
    assert msgs[1]["content"] == (
        "Financial snapshot:\nNet worth $1.\nOnly rely on these values unless the user provides newer numbers."
    )


def test_run_chat_calls_model_with_snapshot(session, household, fake_advisor, monkeypatch):
    monkeypatch.delenv("OPENROUTER_MODEL", raising=False)
    out = run_chat(
        session,
        user_id=USER_ID,
        message="  How do I save more?  ",
        conversation=[{"role": "user", "content": "Hello"}],
        client=fake_advisor,
        cfg=AppConfig(),
        now=NOW,
    )

    assert out["message"] == "### Plan\n1. Trim dining out."
    assert out["model"] == "anthropic/claude-3.5-sonnet"
    assert out["context"]["netWorth"] == 900.0
    assert out["context"]["monthlySpending"] == 300.0
    assert out["context"]["recurringTotal"] == 15.49
    assert out["context_summary"].startswith("Net worth $900")

    call = fake_advisor.calls[0]
    assert call["temperature"] == 0.35
    assert call["max_tokens"] == 600
    assert call["messages"][-1] == {"role": "user", "content": "How do I save more?"}
    assert call["messages"][2] == {"role": "user", "content": "Hello"}


def test_run_chat_model_override_and_empty_reply(session, fake_advisor, monkeypatch):
    monkeypatch.setenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
    fake_advisor.reply = ""
    with pytest.raises(EmptyAdvice):
        run_chat(session, user_id=USER_ID, message="hi", conversation=None, client=fake_advisor, cfg=AppConfig(), now=NOW)
    assert fake_advisor.calls[0]["model"] == "openai/gpt-4o-mini"
