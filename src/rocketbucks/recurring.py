from __future__ import annotations

import datetime as dt
import logging
import re
from collections import defaultdict
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from src.core.errors import NotFoundError, ValidationError
from src.db.models import RecurringTransaction, Transaction
from src.rocketbucks.ownership import check_account_ref, check_category_ref
from src.rocketbucks.serialize import serialize_recurring
from src.utils.money import money_2dp, normalize_amount, to_decimal
from src.utils.time import add_months, add_years, parse_date, utctoday

log = logging.getLogger(__name__)

SUBSCRIPTION_KEYWORDS: tuple[str, ...] = (
    "cursor", "openai", "apple", "squarespace", "workspace", "worksp", "spotify", "netflix", "disney", "hulu",
    "amazon prime", "youtube premium", "adobe", "microsoft", "google", "dropbox", "slack", "zoom", "notion",
    "figma", "canva", "github", "gitlab", "atlassian", "jira", "confluence", "salesforce", "hubspot", "zendesk",
    "intercom", "mailchimp", "sendgrid", "twilio", "stripe", "paypal", "shopify", "wix", "wordpress", "webflow",
    "framer", "linear", "vercel", "netlify", "cloudflare", "aws", "azure", "gcp", "digitalocean", "heroku",
    "mongodb", "redis", "elastic", "datadog", "sentry", "new relic", "loggly", "papertrail",
)
SUBSCRIPTION_CATEGORY_MARKERS = ("subscription", "software", "streaming")
DETECTED_SUBSCRIPTION_MARKERS = ("subscription", "chatgpt", "cursor", "netflix", "spotify", "apple", "openai")

UPDATABLE_FIELDS = (
    "name",
    "merchant_name",
    "expected_amount",
    "average_amount",
    "frequency",
    "category_id",
    "account_id",
    "day_of_month",
    "day_of_week",
    "week_of_month",
    "start_date",
    "next_due_date",
    "end_date",
    "transaction_type",
    "is_active",
    "is_subscription",
    "notes",
)
_DATE_FIELDS = {"start_date", "next_due_date", "end_date", "last_transaction_date"}
_MONEY_FIELDS = {"expected_amount", "average_amount"}


def calculate_next_due_date(last_date: Any, frequency: Optional[str], today: Optional[dt.date] = None) -> Optional[dt.date]:
    """
    Next expected charge after `last_date`, rolled forward so it is not before today.

    Weekly, biweekly and monthly streams roll repeatedly; yearly and unknown
    frequencies step once (+1 year, +30 days).
    """
    last = parse_date(last_date)
    if last is None:
        return None
    now = today or utctoday()
    if last > now:
        return last

    freq = (frequency or "").strip().upper()
    if freq in {"WEEKLY", "BIWEEKLY"}:
        step = 7 if freq == "WEEKLY" else 14
        nxt = last + dt.timedelta(days=step)
        while nxt < now:
            nxt += dt.timedelta(days=step)
        return nxt
    if freq in {"MONTHLY", "APPROXIMATELY_MONTHLY"}:
        k = 1
        nxt = add_months(last, k)
        while nxt < now:
            k += 1
            nxt = add_months(last, k)
        return nxt
    if freq in {"ANNUALLY", "YEARLY"}:
        return add_years(last, 1)
    return last + dt.timedelta(days=30)


def advance_due_date(from_date: dt.date, frequency: Optional[str]) -> Optional[dt.date]:
    """Single step by frequency; None for irregular/unknown frequencies."""
    freq = (frequency or "").strip().lower()
    if freq == "daily":
        return from_date + dt.timedelta(days=1)
    if freq == "weekly":
        return from_date + dt.timedelta(weeks=1)
    if freq == "biweekly":
        return from_date + dt.timedelta(weeks=2)
    if freq == "monthly":
        return add_months(from_date, 1)
    if freq == "bimonthly":
        return add_months(from_date, 2)
    if freq == "quarterly":
        return add_months(from_date, 3)
    if freq in {"yearly", "annually"}:
        return add_years(from_date, 1)
    return None


def is_subscription_stream(stream: dict[str, Any]) -> bool:
    categories = [str(c).lower() for c in (stream.get("category") or [])]
    if any(marker in c for c in categories for marker in SUBSCRIPTION_CATEGORY_MARKERS):
        return True
    text = f"{stream.get('merchant_name') or ''} {stream.get('description') or ''}".lower()
    return any(kw in text for kw in SUBSCRIPTION_KEYWORDS)


def _stream_amount(stream: dict[str, Any], key: str) -> float:
    v = stream.get(key)
    if isinstance(v, dict):
        return normalize_amount(v.get("amount"))
    return 0.0


def map_recurring_stream(
    stream: dict[str, Any],
    *,
    user_id: str,
    account_map: dict[str, str],
    direction: str,
    today: Optional[dt.date] = None,
) -> Optional[dict[str, Any]]:
    """
    Plaid recurring stream -> recurring_transactions row values. `direction` is "outflow" or "inflow".
    Returns None when the stream's account is not linked.
    """
    db_account_id = account_map.get(str(stream.get("account_id") or ""))
    if not db_account_id:
        return None
    now = today or utctoday()
    last_amount = _stream_amount(stream, "last_amount")
    average_amount = _stream_amount(stream, "average_amount")
    expected = last_amount or average_amount
    is_outflow = direction == "outflow"
    if not is_outflow:
        expected = abs(expected)
        average_amount = abs(average_amount)

    categories = [str(c) for c in (stream.get("category") or [])]
    frequency = str(stream.get("frequency") or "unknown")
    txn_ids = stream.get("transaction_ids")
    occurrences = len(txn_ids) if isinstance(txn_ids, list) and txn_ids else int(stream.get("transaction_count") or 0)
    status = str(stream.get("status") or "").upper()
    return {
        "user_id": user_id,
        "account_id": db_account_id,
        "name": stream.get("merchant_name") or stream.get("description") or "Unknown",
        "merchant_name": stream.get("merchant_name") or None,
        "expected_amount": money_2dp(expected),
        "average_amount": money_2dp(average_amount),
        "frequency": frequency.lower(),
        "start_date": parse_date(stream.get("first_date")) or now,
        "last_transaction_date": parse_date(stream.get("last_date")),
        "next_due_date": calculate_next_due_date(stream.get("last_date"), frequency, today=now),
        "transaction_type": "expense" if is_outflow else "income",
        "is_subscription": is_subscription_stream(stream) if is_outflow else False,
        "is_active": status in {"MATURE", "ACTIVE"},
        "total_occurrences": occurrences,
        "notes": ", ".join(categories) or None,
    }


def map_recurring_streams(
    streams: dict[str, Any],
    *,
    user_id: str,
    account_map: dict[str, str],
    today: Optional[dt.date] = None,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for direction, key in (("outflow", "outflow_streams"), ("inflow", "inflow_streams")):
        for stream in streams.get(key) or []:
            row = map_recurring_stream(stream, user_id=user_id, account_map=account_map, direction=direction, today=today)
            if row is not None:
                rows.append(row)
    return rows


def upsert_recurring(session: Session, rows: list[dict[str, Any]]) -> int:
    """Insert or update on (user_id, name, account_id). Returns rows written."""
    written = 0
    for r in rows:
        existing = (
            session.query(RecurringTransaction)
            .filter(
                RecurringTransaction.user_id == r["user_id"],
                RecurringTransaction.name == r["name"],
                RecurringTransaction.account_id == r.get("account_id"),
            )
            .one_or_none()
        )
        if existing is None:
            session.add(RecurringTransaction(**r))
        else:
            for k, v in r.items():
                setattr(existing, k, v)
        session.flush()
        written += 1
    return written


def _merchant_key(txn: Transaction) -> str:
    merchant = (txn.merchant_name or txn.name or "").lower().strip()
    return re.sub(r"[^a-z0-9]", "", merchant)


def detect_recurring_patterns(transactions: list[Transaction], today: Optional[dt.date] = None) -> list[dict[str, Any]]:
    """
    Fallback detection when Plaid has no streams: any merchant charged two or more
    times becomes a recurring expense, with frequency from the mean gap in days.
    """
    groups: dict[str, list[Transaction]] = defaultdict(list)
    for t in transactions:
        if t.transaction_type != "expense" or normalize_amount(t.amount) <= 0:
            continue
        groups[_merchant_key(t)].append(t)

    out: list[dict[str, Any]] = []
    for txns in groups.values():
        if len(txns) < 2:
            continue
        txns.sort(key=lambda t: t.date)
        amounts = [normalize_amount(t.amount) for t in txns]
        avg_amount = sum(amounts) / len(amounts)
        gaps = [(txns[i].date - txns[i - 1].date).days for i in range(1, len(txns))]
        avg_days = sum(gaps) / len(gaps)
        if avg_days < 10:
            frequency = "weekly"
        elif avg_days < 20:
            frequency = "biweekly"
        elif avg_days < 45:
            frequency = "monthly"
        elif avg_days < 100:
            frequency = "quarterly"
        else:
            frequency = "yearly"

        first, last = txns[0], txns[-1]
        name = first.merchant_name or first.name
        lowered = name.lower()
        is_subscription = any(m in lowered for m in DETECTED_SUBSCRIPTION_MARKERS) or avg_amount < 100
        out.append(
            {
                "user_id": first.user_id,
                "account_id": first.account_id,
                "name": name,
                "merchant_name": first.merchant_name or None,
                "expected_amount": money_2dp(amounts[-1]),
                "average_amount": money_2dp(avg_amount),
                "frequency": frequency,
                "start_date": first.date,
                "last_transaction_date": last.date,
                "next_due_date": calculate_next_due_date(last.date, frequency, today=today),
                "transaction_type": "expense",
                "is_subscription": is_subscription,
                "is_active": True,
                "total_occurrences": len(txns),
                "notes": f"Auto-detected from {len(txns)} transactions",
            }
        )
    return out


def link_transaction_to_recurring(session: Session, txn: Transaction, recurring: RecurringTransaction) -> None:
    """
    Attach a transaction to a recurring row and refresh the row's stats
    (last date, occurrence count, average amount, next due date).
    """
    txn.recurring_transaction_id = recurring.id
    txn.is_recurring = True
    session.flush()

    recurring.last_transaction_date = txn.date
    recurring.total_occurrences = int(recurring.total_occurrences or 0) + 1
    avg = (
        session.query(func.avg(Transaction.amount))
        .filter(Transaction.recurring_transaction_id == recurring.id)
        .scalar()
    )
    if avg is not None:
        recurring.average_amount = money_2dp(avg)
    nxt = advance_due_date(txn.date, recurring.frequency)
    if nxt is not None:
        recurring.next_due_date = nxt
    session.flush()


def due_label(days: int) -> str:
    if days < 0:
        return f"{abs(days)} days ago"
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    return f"in {days} days"


def list_recurring(
    session: Session,
    *,
    user_id: str,
    active_only: bool = False,
    upcoming_only: bool = False,
    today: Optional[dt.date] = None,
) -> list[dict[str, Any]]:
    now = today or utctoday()
    q = (
        session.query(RecurringTransaction)
        .options(selectinload(RecurringTransaction.account), selectinload(RecurringTransaction.category))
        .filter(RecurringTransaction.user_id == user_id)
    )
    if active_only:
        q = q.filter(RecurringTransaction.is_active.is_(True))
    if upcoming_only:
        q = q.filter(RecurringTransaction.next_due_date >= now)
    q = q.order_by(RecurringTransaction.next_due_date.is_(None), RecurringTransaction.next_due_date.asc())

    out = []
    for row in q.all():
        d = serialize_recurring(row)
        if row.next_due_date is not None:
            days = (row.next_due_date - now).days
            d["days_until_due"] = days
            d["due_in"] = due_label(days)
        out.append(d)
    return out


def _coerce_fields(session: Session, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k in UPDATABLE_FIELDS:
        if k not in data:
            continue
        v = data[k]
        if k == "category_id":
            v = check_category_ref(session, user_id=user_id, category_id=v)
        elif k == "account_id":
            v = check_account_ref(session, user_id=user_id, account_id=v)
        elif k in _DATE_FIELDS and v is not None:
            parsed = parse_date(v)
            if parsed is None:
                raise ValidationError(f"Invalid date for {k}")
            v = parsed
        elif k in _MONEY_FIELDS and v is not None:
            d = to_decimal(v)
            if d is None:
                raise ValidationError(f"Invalid amount for {k}")
            v = money_2dp(d)
        out[k] = v
    return out


def create_recurring(session: Session, *, user_id: str, data: dict[str, Any], today: Optional[dt.date] = None) -> RecurringTransaction:
    if not data.get("name") or not data.get("frequency"):
        raise ValidationError("Name and frequency are required")
    fields = _coerce_fields(session, user_id, data)
    fields.setdefault("start_date", today or utctoday())
    fields.setdefault("expected_amount", Decimal("0"))
    fields["frequency"] = str(fields["frequency"]).lower()
    row = RecurringTransaction(user_id=user_id, **fields)
    session.add(row)
    session.flush()
    return row


def get_user_recurring(session: Session, *, user_id: str, recurring_id: str) -> RecurringTransaction:
    row = (
        session.query(RecurringTransaction)
        .filter(RecurringTransaction.id == recurring_id, RecurringTransaction.user_id == user_id)
        .one_or_none()
    )
    if row is None:
        raise NotFoundError("Recurring transaction not found")
    return row


def update_recurring(session: Session, *, user_id: str, recurring_id: str, data: dict[str, Any]) -> RecurringTransaction:
    row = get_user_recurring(session, user_id=user_id, recurring_id=recurring_id)
    for k, v in _coerce_fields(session, user_id, data).items():
        setattr(row, k, v)
    session.flush()
    return row


def deactivate_recurring(session: Session, *, user_id: str, recurring_id: str, today: Optional[dt.date] = None) -> None:
    row = get_user_recurring(session, user_id=user_id, recurring_id=recurring_id)
    row.is_active = False
    row.end_date = today or utctoday()
    session.flush()
