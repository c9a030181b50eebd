from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from src.adapters.plaid.client import PlaidClient, parse_plaid_date
from src.core.errors import NoLinkedItemsError, SyncRateLimited
from src.core.token_vault import TokenVaultError, mask_secret, open_access_token
from src.db.models import Account, PlaidItem, Transaction
from src.rocketbucks.categorize import UNCATEGORIZED, CategoryMapping, auto_categorize, load_mappings
from src.rocketbucks.config import AppConfig, get_app_config
from src.rocketbucks.recurring import detect_recurring_patterns, map_recurring_streams, upsert_recurring
from src.rocketbucks.serialize import serialize_transaction
from src.utils.money import money_2dp, normalize_amount
from src.utils.time import ensure_utc, iso_or_none, utcnow

log = logging.getLogger(__name__)

# Fields the user owns; a re-sync never overwrites them.
USER_FIELDS = frozenset({"category_id", "notes", "tags", "excluded_from_budget", "is_recurring", "recurring_transaction_id"})


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def map_plaid_transaction(
    tx: dict[str, Any],
    *,
    user_id: str,
    account_map: dict[str, str],
    mappings: Optional[list[CategoryMapping]] = None,
) -> Optional[dict[str, Any]]:
    """
    Plaid /transactions/get row -> transactions row values.

    Plaid amounts are positive for money leaving the account (expense) and negative
    for money coming in. Rows for unlinked accounts map to None.
    """
    db_account_id = account_map.get(str(tx.get("account_id") or ""))
    if not db_account_id:
        return None
    posted = parse_plaid_date(tx.get("date"))
    if posted is None:
        return None

    amount = normalize_amount(tx.get("amount"))
    categories = [str(c) for c in (tx.get("category") or []) if c]
    loc = tx.get("location") if isinstance(tx.get("location"), dict) else {}
    name = str(tx.get("name") or tx.get("merchant_name") or "Unknown")
    merchant = tx.get("merchant_name") or None

    user_category = None
    if not categories:
        auto = auto_categorize(name, merchant, mappings=mappings)
        if auto != UNCATEGORIZED:
            user_category = auto

    return {
        "user_id": user_id,
        "account_id": db_account_id,
        "transaction_id": str(tx.get("transaction_id") or ""),
        "amount": money_2dp(amount),
        "date": posted,
        "authorized_date": parse_plaid_date(tx.get("authorized_date")),
        "posted_date": posted,
        "name": name,
        "plaid_category": categories,
        "plaid_primary_category": categories[0] if categories else None,
        "plaid_detailed_category": " > ".join(categories) if categories else None,
        "user_category_name": user_category,
        "merchant_name": merchant,
        "location_city": loc.get("city") or None,
        "location_state": loc.get("region") or None,
        "location_country": loc.get("country") or None,
        "location_address": loc.get("address") or None,
        "location_lat": _opt_float(loc.get("lat")),
        "location_lon": _opt_float(loc.get("lon")),
        "transaction_type": "expense" if amount > 0 else "income",
        "payment_channel": tx.get("payment_channel") or None,
        "check_number": tx.get("check_number") or None,
        "pending": bool(tx.get("pending") or False),
        "is_transfer": amount == 0,
    }


def upsert_transactions(session: Session, rows: list[dict[str, Any]]) -> int:
    """Insert or update on (account_id, transaction_id). Returns rows written."""
    if not rows:
        return 0
    account_ids = {r["account_id"] for r in rows}
    txn_ids = {r["transaction_id"] for r in rows}
    existing: dict[tuple[str, str], Transaction] = {
        (t.account_id, t.transaction_id): t
        for t in session.query(Transaction).filter(
            Transaction.account_id.in_(account_ids), Transaction.transaction_id.in_(txn_ids)
        )
    }
    written = 0
    for r in rows:
        key = (r["account_id"], r["transaction_id"])
        cur = existing.get(key)
        if cur is None:
            cur = Transaction(**r)
            session.add(cur)
            existing[key] = cur
        else:
            for k, v in r.items():
                if k in USER_FIELDS:
                    continue
                if k == "user_category_name" and cur.user_category_name:
                    continue
                setattr(cur, k, v)
        written += 1
    session.flush()
    return written


def _account_map(session: Session, item: PlaidItem) -> dict[str, str]:
    return {a.account_id: a.id for a in session.query(Account).filter(Account.plaid_item_id == item.id)}


def sync_item_transactions(
    session: Session,
    *,
    item: PlaidItem,
    access_token: str,
    plaid: PlaidClient,
    start_date: dt.date,
    end_date: dt.date,
    page_size: int = 500,
    mappings: Optional[list[CategoryMapping]] = None,
) -> int:
    account_map = _account_map(session, item)
    raw = plaid.transactions_get_all(
        access_token=access_token, start_date=start_date, end_date=end_date, page_size=page_size
    )
    log.info("Fetched %d transactions from %s", len(raw), item.institution_name or mask_secret(item.item_id))

    rows = []
    for tx in raw:
        row = map_plaid_transaction(tx, user_id=item.user_id, account_map=account_map, mappings=mappings)
        if row is not None and row["transaction_id"]:
            rows.append(row)
    written = upsert_transactions(session, rows)

    # A posted transaction replaces its pending twin.
    superseded = {str(tx["pending_transaction_id"]) for tx in raw if tx.get("pending_transaction_id")}
    if superseded and account_map:
        removed = (
            session.query(Transaction)
            .filter(
                Transaction.account_id.in_(set(account_map.values())),
                Transaction.transaction_id.in_(superseded),
                Transaction.pending.is_(True),
            )
            .delete(synchronize_session=False)
        )
        if removed:
            log.info("Removed %d superseded pending transactions", removed)
    return written


def sync_item_recurring(
    session: Session,
    *,
    item: PlaidItem,
    access_token: str,
    plaid: PlaidClient,
    detect_fallback: bool = False,
    detection_limit: int = 500,
) -> int:
    """
    Store Plaid's recurring streams for one item. With detect_fallback, an item with no
    streams gets locally detected patterns from its newest transactions instead.
    """
    account_map = _account_map(session, item)
    streams = plaid.transactions_recurring_get(access_token=access_token, account_ids=list(account_map.keys()))
    log.info(
        "Found %d recurring inflows and %d outflows for %s",
        len(streams["inflow_streams"]),
        len(streams["outflow_streams"]),
        item.institution_name or mask_secret(item.item_id),
    )
    rows = map_recurring_streams(streams, user_id=item.user_id, account_map=account_map)
    if rows:
        return upsert_recurring(session, rows)
    if not detect_fallback or not account_map:
        return 0

    recent = (
        session.query(Transaction)
        .filter(Transaction.user_id == item.user_id, Transaction.account_id.in_(set(account_map.values())))
        .order_by(Transaction.date.desc())
        .limit(int(detection_limit))
        .all()
    )
    detected = detect_recurring_patterns(recent)
    if detected:
        log.info("Detected %d recurring patterns for %s", len(detected), item.institution_name or mask_secret(item.item_id))
    return upsert_recurring(session, detected)


def user_items(session: Session, user_id: str) -> list[PlaidItem]:
    return session.query(PlaidItem).filter(PlaidItem.user_id == user_id).order_by(PlaidItem.created_at.asc()).all()


def last_synced_at(session: Session, user_id: str) -> Optional[dt.datetime]:
    """Newest sync time across the user's items (falls back to updated_at)."""
    items = user_items(session, user_id)
    stamps = [i.last_synced_at or i.updated_at for i in items if (i.last_synced_at or i.updated_at)]
    return max(stamps) if stamps else None


def _check_rate_limit(items: list[PlaidItem], *, min_interval_hours: float, now: dt.datetime) -> None:
    if min_interval_hours <= 0:
        return
    stamps = [ensure_utc(i.last_synced_at) for i in items if i.last_synced_at is not None]
    if not stamps:
        return
    elapsed = (now - max(stamps)).total_seconds()
    window = min_interval_hours * 3600
    if elapsed < window:
        raise SyncRateLimited(hours_remaining=max(1, math.ceil((window - elapsed) / 3600)))


def sync_user_transactions(
    session: Session,
    *,
    user_id: str,
    plaid: PlaidClient,
    cfg: Optional[AppConfig] = None,
    now: Optional[dt.datetime] = None,
    enforce_rate_limit: bool = True,
) -> dict[str, Any]:
    """
    Pull the last `sync_window_days` of transactions plus recurring streams for every
    linked item. A failing item is logged and skipped; the rest still sync.
    """
    c = cfg or get_app_config()
    ts = now or utcnow()
    items = user_items(session, user_id)
    if not items:
        raise NoLinkedItemsError("No accounts connected. Please connect an account first.")
    if enforce_rate_limit:
        _check_rate_limit(items, min_interval_hours=c.sync.min_interval_hours, now=ts)

    end_date = ts.date()
    start_date = end_date - dt.timedelta(days=int(c.plaid.sync_window_days))
    mappings = load_mappings(c.categorization)
    log.info("Syncing transactions for user %s from %s to %s", user_id, start_date, end_date)

    total = 0
    for item in items:
        try:
            access_token = open_access_token(item.access_token)
        except TokenVaultError as e:
            log.error("Cannot open access token for item %s: %s", item.id, e)
            continue
        try:
            total += sync_item_transactions(
                session,
                item=item,
                access_token=access_token,
                plaid=plaid,
                start_date=start_date,
                end_date=end_date,
                page_size=c.plaid.page_size,
                mappings=mappings,
            )
            item.updated_at = ts
            item.last_synced_at = ts
            session.commit()
        except Exception as e:
            session.rollback()
            log.error("Error fetching transactions for item %s: %s", item.id, e)
            continue
        try:
            sync_item_recurring(session, item=item, access_token=access_token, plaid=plaid)
            session.commit()
        except Exception as e:
            session.rollback()
            log.warning("Failed to fetch recurring streams for %s: %s", item.institution_name or item.id, e)

    log.info("Sync complete for user %s: %d transactions", user_id, total)
    return {
        "success": True,
        "message": f"Successfully synced {total} transaction{'s' if total != 1 else ''} and recurring charges",
        "synced_count": total,
        "synced_at": ts.isoformat(),
    }


def sync_user_recurring(
    session: Session,
    *,
    user_id: str,
    plaid: PlaidClient,
    cfg: Optional[AppConfig] = None,
    now: Optional[dt.datetime] = None,
) -> dict[str, Any]:
    c = cfg or get_app_config()
    ts = now or utcnow()
    items = user_items(session, user_id)
    if not items:
        raise NoLinkedItemsError("No accounts connected")

    total = 0
    for item in items:
        try:
            access_token = open_access_token(item.access_token)
            total += sync_item_recurring(
                session,
                item=item,
                access_token=access_token,
                plaid=plaid,
                detect_fallback=True,
                detection_limit=c.sync.detection_limit,
            )
            session.commit()
        except Exception as e:
            session.rollback()
            log.error("Error syncing recurring for item %s: %s", item.id, e)

    return {
        "success": True,
        "message": f"Successfully synced {total} recurring charge{'s' if total != 1 else ''}",
        "recurring_count": total,
        "synced_at": ts.isoformat(),
    }


def list_recent_transactions(
    session: Session,
    *,
    user_id: str,
    cfg: Optional[AppConfig] = None,
    today: Optional[dt.date] = None,
) -> dict[str, Any]:
    c = cfg or get_app_config()
    end = today or utcnow().date()
    start = end - dt.timedelta(days=int(c.sync.list_window_days))
    has_items = session.query(func.count(PlaidItem.id)).filter(PlaidItem.user_id == user_id).scalar() or 0
    if not has_items:
        return {"transactions": [], "last_synced": None}

    rows = (
        session.query(Transaction)
        .options(selectinload(Transaction.account), selectinload(Transaction.category))
        .filter(Transaction.user_id == user_id, Transaction.date >= start, Transaction.date <= end)
        .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        .limit(int(c.sync.list_limit))
        .all()
    )
    return {
        "transactions": [serialize_transaction(t) for t in rows],
        "last_synced": iso_or_none(last_synced_at(session, user_id)),
    }
