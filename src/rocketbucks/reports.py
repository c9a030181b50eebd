from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session, selectinload

from src.db.models import Account, Transaction
from src.utils.money import normalize_amount, percent_of, round2
from src.utils.time import add_months, utctoday

log = logging.getLogger(__name__)

LIABILITY_TYPES = {"credit", "loan", "mortgage", "liability", "other liability"}
NON_SPENDING_CATEGORIES = {"Income", "Transfer"}
BILL_CATEGORIES = {"Bills & Utilities", "Bills and Utilities"}
TREND_MONTHS = 6


def category_name(txn: Transaction) -> str:
    """User override, then the assigned category, then Plaid's primary category."""
    assigned = txn.category.name if txn.category is not None else None
    return txn.user_category_name or assigned or txn.plaid_primary_category or "Uncategorized"


def is_spending(txn: Transaction) -> bool:
    return (
        txn.transaction_type == "expense"
        and normalize_amount(txn.amount) > 0
        and category_name(txn) not in NON_SPENDING_CATEGORIES
    )


def is_income(txn: Transaction) -> bool:
    return category_name(txn) == "Income"


def is_bill(txn: Transaction) -> bool:
    return (
        txn.transaction_type == "expense"
        and normalize_amount(txn.amount) > 0
        and (bool(txn.is_recurring) or category_name(txn) in BILL_CATEGORIES)
    )


def _load(session: Session, *, user_id: str, start: dt.date, end: dt.date) -> list[Transaction]:
    return (
        session.query(Transaction)
        .options(selectinload(Transaction.category))
        .filter(Transaction.user_id == user_id, Transaction.date >= start, Transaction.date <= end)
        .order_by(Transaction.date.desc())
        .all()
    )


def _totals(rows: Iterable[Transaction]) -> tuple[float, float, float]:
    spending = income = bills = 0.0
    for t in rows:
        amt = normalize_amount(t.amount)
        if is_spending(t):
            spending += amt
        if is_income(t):
            income += abs(amt)
        if is_bill(t):
            bills += amt
    return round2(spending), round2(income), round2(bills)


def previous_period(start: dt.date, end: dt.date) -> tuple[dt.date, dt.date]:
    """The equally long window ending the day before `start`."""
    prev_end = start - dt.timedelta(days=1)
    return prev_end - (end - start), prev_end


def spending_summary(
    session: Session,
    *,
    user_id: str,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    today: Optional[dt.date] = None,
) -> dict[str, Any]:
    """
    Spending page aggregation for [start_date, end_date] (default: month to date).

    Amounts follow Plaid's sign convention: positive is money out.
    """
    d = today or utctoday()
    end = end_date or d
    start = start_date or end.replace(day=1)
    if start > end:
        start, end = end, start

    rows = _load(session, user_id=user_id, start=start, end=end)
    spending, income, bills = _totals(rows)

    prev_start, prev_end = previous_period(start, end)
    prev_spending, prev_income, prev_bills = _totals(_load(session, user_id=user_id, start=prev_start, end=prev_end))

    by_category: dict[str, list[float]] = defaultdict(list)
    by_merchant: dict[str, list[float]] = defaultdict(list)
    spend_rows = [t for t in rows if is_spending(t)]
    for t in spend_rows:
        amt = normalize_amount(t.amount)
        by_category[category_name(t)].append(amt)
        by_merchant[t.merchant_name or t.name].append(amt)

    categories = sorted(
        (
            {
                "name": name,
                "amount": round2(sum(amts)),
                "count": len(amts),
                "percent": percent_of(sum(amts), spending),
            }
            for name, amts in by_category.items()
        ),
        key=lambda c: c["amount"],
        reverse=True,
    )
    merchants = sorted(
        (
            {
                "name": name,
                "amount": round2(sum(amts)),
                "count": len(amts),
                "average": round2(sum(amts) / len(amts)),
            }
            for name, amts in by_merchant.items()
        ),
        key=lambda m: m["amount"],
        reverse=True,
    )[:3]
    largest = sorted(spend_rows, key=lambda t: normalize_amount(t.amount), reverse=True)[:3]

    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "spending": spending,
        "income": income,
        "bills": bills,
        "income_count": sum(1 for t in rows if is_income(t)),
        "spending_change": round2(spending - prev_spending),
        "income_change": round2(income - prev_income),
        "bills_change": round2(bills - prev_bills),
        "categories": categories,
        "top_merchants": merchants,
        "largest_purchases": [
            {
                "id": t.id,
                "name": t.merchant_name or t.name,
                "amount": round2(t.amount),
                "date": t.date.isoformat(),
                "category": category_name(t),
            }
            for t in largest
        ],
        "monthly_trend": monthly_trend(session, user_id=user_id, end=end),
    }


def monthly_trend(session: Session, *, user_id: str, end: dt.date, months: int = TREND_MONTHS) -> list[dict[str, Any]]:
    """Spending and income per YYYY-MM for the `months` calendar months ending with `end`'s month."""
    first = add_months(end.replace(day=1), -(months - 1))
    buckets: dict[str, dict[str, float]] = {}
    for i in range(months):
        buckets[add_months(first, i).strftime("%Y-%m")] = {"spending": 0.0, "income": 0.0}
    for t in _load(session, user_id=user_id, start=first, end=end):
        b = buckets.get(t.date.strftime("%Y-%m"))
        if b is None:
            continue
        if is_spending(t):
            b["spending"] += normalize_amount(t.amount)
        if is_income(t):
            b["income"] += abs(normalize_amount(t.amount))
    return [{"month": k, "spending": round2(v["spending"]), "income": round2(v["income"])} for k, v in buckets.items()]


@dataclass
class AccountTotals:
    total_assets: float = 0.0
    total_liabilities: float = 0.0
    liquid_cash: float = 0.0
    invested: float = 0.0
    by_type: dict[str, list[Account]] = field(default_factory=dict)

    @property
    def net_worth(self) -> float:
        return self.total_assets - self.total_liabilities


def current_balance(acct: Account) -> float:
    v = acct.balance_current if acct.balance_current is not None else acct.balance_available
    return normalize_amount(v)


def available_balance(acct: Account) -> float:
    v = acct.balance_available if acct.balance_available is not None else acct.balance_current
    return normalize_amount(v)


def account_totals(accounts: Iterable[Account]) -> AccountTotals:
    out = AccountTotals()
    for a in accounts:
        kind = (a.type or "").lower()
        out.by_type.setdefault(kind or "other", []).append(a)
        bal = current_balance(a)
        if kind in LIABILITY_TYPES:
            out.total_liabilities += abs(bal)
            continue
        out.total_assets += bal
        if kind == "depository":
            out.liquid_cash += available_balance(a)
        if kind == "investment":
            out.invested += bal
    return out


def net_worth(session: Session, *, user_id: str) -> dict[str, Any]:
    accounts = session.query(Account).filter(Account.user_id == user_id).order_by(Account.name.asc()).all()
    t = account_totals(accounts)
    groups = []
    for kind, members in sorted(t.by_type.items()):
        groups.append(
            {
                "type": kind,
                "is_liability": kind in LIABILITY_TYPES,
                "total": round2(sum(current_balance(a) for a in members)),
                "accounts": [
                    {
                        "id": a.id,
                        "name": a.name,
                        "mask": a.mask,
                        "subtype": a.subtype,
                        "institution_name": a.institution_name,
                        "balance_current": round2(current_balance(a)),
                    }
                    for a in members
                ],
            }
        )
    return {
        "total_assets": round2(t.total_assets),
        "total_liabilities": round2(t.total_liabilities),
        "net_worth": round2(t.net_worth),
        "liquid_cash": round2(t.liquid_cash),
        "invested": round2(t.invested),
        "groups": groups,
    }
