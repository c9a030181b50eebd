from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from src.core.errors import NotFoundError, ValidationError
from src.db.models import RecurringTransaction, Transaction
from src.rocketbucks.ownership import check_category_ref
from src.rocketbucks.recurring import link_transaction_to_recurring
from src.rocketbucks.serialize import serialize_transaction
from src.utils.money import to_decimal
from src.utils.time import parse_date

log = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "date": Transaction.date,
    "amount": Transaction.amount,
    "name": Transaction.name,
    "merchant_name": Transaction.merchant_name,
    "created_at": Transaction.created_at,
}
UPDATABLE_FIELDS = (
    "category_id",
    "user_category_name",
    "notes",
    "tags",
    "excluded_from_budget",
    "is_recurring",
)
DEFAULT_LIMIT = 100


def parse_tags(raw: Any) -> list[str]:
    """
    Tags arrive as a list, a JSON list string ('["a","b"]'), a comma list, or one value.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(t).strip() for t in raw if str(t).strip()]
    s = str(raw).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            parsed = json.loads(s)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(t).strip() for t in parsed if str(t).strip()]
    return [t.strip() for t in s.split(",") if t.strip()]


def _as_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def search_transactions(session: Session, *, user_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """
    Filtered, sorted, paginated transaction search.

    `count` is the total number of matches before limit/offset.
    """
    q = session.query(Transaction).filter(Transaction.user_id == user_id)

    text = str(params.get("search") or "").strip()
    if text:
        like = f"%{text.lower()}%"
        q = q.filter(
            or_(func.lower(Transaction.name).like(like), func.lower(func.coalesce(Transaction.merchant_name, "")).like(like))
        )
    for key in ("category_id", "user_category_name", "account_id", "transaction_type"):
        v = params.get(key)
        if v not in (None, ""):
            q = q.filter(getattr(Transaction, key) == v)
    merchant = str(params.get("merchant_name") or "").strip()
    if merchant:
        q = q.filter(func.lower(func.coalesce(Transaction.merchant_name, "")).like(f"%{merchant.lower()}%"))

    start = parse_date(params.get("start_date"))
    if start is not None:
        q = q.filter(Transaction.date >= start)
    end = parse_date(params.get("end_date"))
    if end is not None:
        q = q.filter(Transaction.date <= end)

    pending = _as_bool(params.get("pending"))
    if pending is not None:
        q = q.filter(Transaction.pending.is_(pending))

    lo = to_decimal(params.get("min_amount"))
    if lo is not None:
        q = q.filter(Transaction.amount >= lo)
    hi = to_decimal(params.get("max_amount"))
    if hi is not None:
        q = q.filter(Transaction.amount <= hi)

    sort_col = SORTABLE_COLUMNS.get(str(params.get("sort_by") or "date"), Transaction.date)
    ascending = str(params.get("sort_order") or "desc").lower() in {"asc", "ascending"}
    q = q.order_by(sort_col.asc() if ascending else sort_col.desc(), Transaction.id.asc())

    limit = max(1, _as_int(params.get("limit"), DEFAULT_LIMIT))
    offset = max(0, _as_int(params.get("offset"), 0))
    tags = parse_tags(params.get("tags"))
    opts = (selectinload(Transaction.account), selectinload(Transaction.category))

    if tags:
        # JSON arrays are not portably indexable; filter tags in Python before paging.
        wanted = set(tags)
        matched = [t for t in q.options(*opts).all() if wanted.issubset(set(t.tags or []))]
        page = matched[offset : offset + limit]
        total = len(matched)
    else:
        total = q.order_by(None).count()
        page = q.options(*opts).offset(offset).limit(limit).all()

    return {
        "transactions": [serialize_transaction(t) for t in page],
        "count": total,
        "limit": limit,
        "offset": offset,
    }


def get_user_transaction(session: Session, *, user_id: str, transaction_id: str) -> Transaction:
    txn = (
        session.query(Transaction)
        .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
        .one_or_none()
    )
    if txn is None:
        raise NotFoundError("Transaction not found")
    return txn


def update_transaction(session: Session, *, user_id: str, transaction_id: str, data: dict[str, Any]) -> Transaction:
    """Apply only the user-editable fields present in `data`."""
    txn = get_user_transaction(session, user_id=user_id, transaction_id=transaction_id)
    if "category_id" in data:
        data = {**data, "category_id": check_category_ref(session, user_id=user_id, category_id=data["category_id"])}
    rec = None
    rec_id = data.get("recurring_transaction_id")
    if rec_id:
        rec = (
            session.query(RecurringTransaction)
            .filter(RecurringTransaction.id == rec_id, RecurringTransaction.user_id == user_id)
            .one_or_none()
        )
        if rec is None:
            raise ValidationError("Recurring transaction not found")

    for key in UPDATABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "tags":
            value = parse_tags(value)
        elif key in {"excluded_from_budget", "is_recurring"}:
            value = bool(_as_bool(value))
        setattr(txn, key, value)

    if rec is not None:
        if txn.recurring_transaction_id != rec.id:
            link_transaction_to_recurring(session, txn, rec)
    elif "recurring_transaction_id" in data:
        txn.recurring_transaction_id = None
    session.flush()
    return txn


def delete_transaction(session: Session, *, user_id: str, transaction_id: str) -> None:
    txn = get_user_transaction(session, user_id=user_id, transaction_id=transaction_id)
    session.delete(txn)
    session.flush()
