from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Optional

from sqlalchemy.orm import Session

from src.db.models import Account, RecurringTransaction, Transaction
from src.rocketbucks.reports import account_totals, current_balance
from src.utils.money import format_currency, normalize_amount, percent_of
from src.utils.time import iso_or_none, utcnow

log = logging.getLogger(__name__)

CONTEXT_WINDOW_DAYS = 30
TRANSACTION_LIMIT = 600
RECURRING_LIMIT = 20

# Card payments and person-to-person transfers look like expenses but are not spending.
_NOT_SPENDING = [
    re.compile(r"payment.*(american express|amex|chase|discover|capital one|citibank|card)", re.I),
    re.compile(r"(american express|amex|chase|discover|capital one|citibank).*payment", re.I),
    re.compile(r"ach.*(payment|transfer)", re.I),
    re.compile(r"payment.*thank you", re.I),
    re.compile(r"online transfer", re.I),
    re.compile(r"zelle|venmo|paypal|cash app", re.I),
]


def _category(txn: Transaction) -> str:
    return txn.user_category_name or txn.plaid_primary_category or "Uncategorized"


def looks_like_payment_or_transfer(name: Optional[str], merchant_name: Optional[str]) -> bool:
    text = f"{(name or '').lower()} {(merchant_name or '').lower()}"
    return any(p.search(text) for p in _NOT_SPENDING)


def _is_expense(txn: Transaction) -> bool:
    return (
        txn.transaction_type == "expense"
        and normalize_amount(txn.amount) > 0
        and txn.date is not None
        and not txn.is_transfer
        and not looks_like_payment_or_transfer(txn.name, txn.merchant_name)
        and _category(txn) not in {"Income", "Transfer"}
    )


def empty_context(now: dt.datetime) -> dict[str, Any]:
    return {
        "totals": {"total_assets": 0.0, "total_liabilities": 0.0, "net_worth": 0.0, "liquid_cash": 0.0, "invested": 0.0},
        "spending": {
            "total_spending_30": 0.0,
            "prev_spending_30": 0.0,
            "spending_change": 0.0,
            "average_daily": 0.0,
            "total_income_30": 0.0,
            "net_cash_flow_30": 0.0,
            "top_categories": [],
            "large_purchases": [],
        },
        "recurring": {"subscription_count": 0, "monthly_recurring": 0.0, "upcoming_charges": [], "largest_charges": []},
        "accounts": {"top_accounts": []},
        "insights": [],
        "generated_at": iso_or_none(now),
    }


def build_financial_context(session: Session, *, user_id: str, now: Optional[dt.datetime] = None) -> dict[str, Any]:
    """
    Snapshot of balances, the last 30 days of cash flow, and recurring charges.

    Windows are date based: the last 30 days are [today-30, today] and the prior
    window is [today-60, today-30).
    """
    ts = now or utcnow()
    today = ts.date()
    cutoff_30 = today - dt.timedelta(days=CONTEXT_WINDOW_DAYS)
    cutoff_60 = today - dt.timedelta(days=2 * CONTEXT_WINDOW_DAYS)
    ctx = empty_context(ts)

    accounts = session.query(Account).filter(Account.user_id == user_id).all()
    recurring = (
        session.query(RecurringTransaction)
        .filter(RecurringTransaction.user_id == user_id)
        .order_by(RecurringTransaction.expected_amount.desc())
        .limit(RECURRING_LIMIT)
        .all()
    )
    transactions = (
        session.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.date >= cutoff_60, Transaction.date <= today)
        .order_by(Transaction.date.desc())
        .limit(TRANSACTION_LIMIT)
        .all()
    )

    t = account_totals(accounts)
    ctx["totals"].update(
        total_assets=t.total_assets,
        total_liabilities=t.total_liabilities,
        net_worth=t.net_worth,
        liquid_cash=t.liquid_cash,
        invested=t.invested,
    )
    ranked = sorted(accounts, key=current_balance, reverse=True)[:5]
    ctx["accounts"]["top_accounts"] = [
        {"name": a.name, "institution": a.institution_name, "type": a.type, "balance": current_balance(a)} for a in ranked
    ]

    expenses = [x for x in transactions if _is_expense(x)]
    last_30 = [x for x in expenses if x.date >= cutoff_30]
    prev_30 = [x for x in expenses if cutoff_60 <= x.date < cutoff_30]
    income_30 = [x for x in transactions if _category(x) == "Income" and x.date is not None and x.date >= cutoff_30]

    sp = ctx["spending"]
    sp["total_spending_30"] = sum(normalize_amount(x.amount) for x in last_30)
    sp["prev_spending_30"] = sum(normalize_amount(x.amount) for x in prev_30)
    sp["spending_change"] = sp["total_spending_30"] - sp["prev_spending_30"]
    sp["average_daily"] = sp["total_spending_30"] / CONTEXT_WINDOW_DAYS if sp["total_spending_30"] > 0 else 0.0
    sp["total_income_30"] = sum(abs(normalize_amount(x.amount)) for x in income_30)
    sp["net_cash_flow_30"] = sp["total_income_30"] - sp["total_spending_30"]

    per_category: dict[str, float] = {}
    for x in last_30:
        name = _category(x) or "Other"
        per_category[name] = per_category.get(name, 0.0) + normalize_amount(x.amount)
    sp["top_categories"] = sorted(
        (
            {"name": name, "amount": amount, "percent": percent_of(amount, sp["total_spending_30"])}
            for name, amount in per_category.items()
        ),
        key=lambda c: c["amount"],
        reverse=True,
    )[:4]
    sp["large_purchases"] = [
        {
            "name": x.merchant_name or x.name or "Transaction",
            "amount": normalize_amount(x.amount),
            "date": x.date.isoformat(),
            "category": x.plaid_primary_category or "General",
        }
        for x in sorted(last_30, key=lambda x: normalize_amount(x.amount), reverse=True)[:3]
    ]

    outgoing = [r for r in recurring if r.transaction_type == "expense"]
    rc = ctx["recurring"]
    rc["subscription_count"] = len(outgoing)
    rc["monthly_recurring"] = sum(normalize_amount(r.expected_amount) for r in outgoing)
    rc["upcoming_charges"] = [
        {
            "name": r.name,
            "amount": normalize_amount(r.expected_amount),
            "frequency": r.frequency or "monthly",
            "next_due_date": iso_or_none(r.next_due_date),
        }
        for r in sorted((r for r in outgoing if r.next_due_date), key=lambda r: r.next_due_date)[:5]
    ]
    rc["largest_charges"] = [
        {
            "name": r.name,
            "amount": normalize_amount(r.expected_amount),
            "frequency": r.frequency or "monthly",
            "is_subscription": bool(r.is_subscription),
        }
        for r in sorted(outgoing, key=lambda r: normalize_amount(r.expected_amount), reverse=True)[:5]
    ]

    notes: list[str] = []
    prev = sp["prev_spending_30"]
    if prev > 0 and abs(sp["spending_change"]) > prev * 0.1:
        change_pct = sp["spending_change"] / prev * 100
        notes.append(f"Spending is {'up' if change_pct > 0 else 'down'} {abs(change_pct):.1f}% vs the prior 30 days.")
    if rc["subscription_count"] > 0 and sp["total_spending_30"] > 0:
        share = rc["monthly_recurring"] / sp["total_spending_30"] * 100
        notes.append(f"Recurring charges represent {share:.1f}% of monthly spend.")
    ctx["insights"] = notes

    log.debug(
        "Built advisor context for %s: %d accounts, %d transactions, %d recurring",
        user_id,
        len(accounts),
        len(transactions),
        len(recurring),
    )
    return ctx


def summarize_context_for_prompt(ctx: Optional[dict[str, Any]]) -> str:
    if not ctx:
        return "No financial data is available yet."
    totals, sp, rc = ctx["totals"], ctx["spending"], ctx["recurring"]
    lines = [
        f"Net worth {format_currency(totals['net_worth'])} = assets {format_currency(totals['total_assets'])} "
        f"minus liabilities {format_currency(totals['total_liabilities'])}.",
        f"Liquid cash {format_currency(totals['liquid_cash'])} | Invested assets {format_currency(totals['invested'])}.",
        f"30-day spending {format_currency(sp['total_spending_30'])} "
        f"({format_currency(sp['spending_change'], include_sign=True)} vs prior 30 days). "
        f"Avg daily spend {format_currency(sp['average_daily'], decimals=2)}.",
        f"30-day income {format_currency(sp['total_income_30'])} | "
        f"Net cash flow {format_currency(sp['net_cash_flow_30'], include_sign=True)}.",
    ]

    if sp["top_categories"]:
        text = "; ".join(
            f"{c['name']}: {format_currency(c['amount'])} ({c.get('percent') or 0}% of spend)" for c in sp["top_categories"]
        )
        lines.append(f"Top categories last 30 days: {text}.")
    else:
        lines.append("Top categories last 30 days: no categorized spending recorded.")

    if sp["large_purchases"]:
        text = "; ".join(f"{p['name']} {format_currency(p['amount'])} on {p['date']}" for p in sp["large_purchases"])
        lines.append(f"Largest recent purchases: {text}.")

    if rc["subscription_count"] > 0:
        lines.append(
            f"Recurring/subscription expenses: {rc['subscription_count']} active, "
            f"about {format_currency(rc['monthly_recurring'])} per month."
        )

    if rc["upcoming_charges"]:
        text = "; ".join(
            f"{c['name']} {format_currency(c['amount'])} due {c.get('next_due_date') or 'soon'}" for c in rc["upcoming_charges"]
        )
        lines.append(f"Upcoming bills: {text}.")

    top_accounts = ctx["accounts"]["top_accounts"]
    if top_accounts:
        text = "; ".join(
            f"{a.get('name') or a.get('institution') or 'Account'} ({a.get('type') or 'account'}): "
            f"{format_currency(a['balance'])}"
            for a in top_accounts
        )
        lines.append(f"Key accounts: {text}.")

    if ctx.get("insights"):
        lines.append(f"Insights: {' | '.join(ctx['insights'])}")

    return "\n".join(lines)
