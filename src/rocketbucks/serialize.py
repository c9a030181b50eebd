from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from src.db.models import Account, RecurringTransaction, Transaction, TransactionCategory, model_to_dict


def jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [jsonable(v) for v in value]
    return str(value)


def account_summary(acct: Optional[Account], *, full: bool = True) -> Optional[dict[str, Any]]:
    if acct is None:
        return None
    out = {"name": acct.name, "mask": acct.mask, "institution_name": acct.institution_name}
    if full:
        out["type"] = acct.type
        out["subtype"] = acct.subtype
    return out


def category_summary(cat: Optional[TransactionCategory]) -> Optional[dict[str, Any]]:
    if cat is None:
        return None
    return {"name": cat.name, "icon": cat.icon, "color": cat.color}


def serialize_account(acct: Account) -> dict[str, Any]:
    return jsonable(model_to_dict(acct))


def serialize_category(cat: TransactionCategory) -> dict[str, Any]:
    return jsonable(model_to_dict(cat))


def serialize_transaction(txn: Transaction, *, with_relations: bool = True) -> dict[str, Any]:
    out = model_to_dict(txn)
    if with_relations:
        out["accounts"] = account_summary(txn.account)
        out["transaction_categories"] = category_summary(txn.category)
    return jsonable(out)


def serialize_recurring(row: RecurringTransaction, *, with_relations: bool = True) -> dict[str, Any]:
    out = model_to_dict(row)
    if with_relations:
        out["accounts"] = account_summary(row.account, full=False)
        out["transaction_categories"] = category_summary(row.category)
    return jsonable(out)
