from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.adapters.plaid.client import PlaidClient
from src.adapters.supabase_auth.client import AuthServiceError, SupabaseAuthClient
from src.core.token_vault import mask_secret, open_access_token, seal_access_token
from src.db.models import Account, PlaidItem, RecurringTransaction, Transaction, TransactionCategory, User
from src.rocketbucks.categorize import load_mappings
from src.rocketbucks.config import AppConfig, get_app_config
from src.rocketbucks.serialize import serialize_account
from src.rocketbucks.sync import sync_item_transactions
from src.utils.money import money_2dp
from src.utils.time import utcnow

log = logging.getLogger(__name__)

DEFAULT_INSTITUTION_NAME = "Unknown Bank"


def create_link_token(plaid: PlaidClient, *, user_id: str, cfg: Optional[AppConfig] = None) -> str:
    c = cfg or get_app_config()
    return plaid.create_link_token(
        client_user_id=user_id,
        client_name=c.plaid.client_name,
        products=list(c.plaid.products),
        country_codes=list(c.plaid.country_codes),
        language=c.plaid.language,
    )


def _balance(acct: dict[str, Any], key: str):
    balances = acct.get("balances") if isinstance(acct.get("balances"), dict) else {}
    v = balances.get(key)
    return None if v is None else money_2dp(v)


def upsert_accounts(
    session: Session,
    *,
    item: PlaidItem,
    plaid_accounts: list[dict[str, Any]],
) -> list[Account]:
    """Insert or update on (plaid_item_id, account_id)."""
    existing = {a.account_id: a for a in session.query(Account).filter(Account.plaid_item_id == item.id)}
    out: list[Account] = []
    for pa in plaid_accounts:
        account_id = str(pa.get("account_id") or "")
        if not account_id:
            continue
        balances = pa.get("balances") if isinstance(pa.get("balances"), dict) else {}
        values = {
            "user_id": item.user_id,
            "plaid_item_id": item.id,
            "account_id": account_id,
            "name": str(pa.get("name") or pa.get("official_name") or "Account"),
            "official_name": pa.get("official_name") or None,
            "type": pa.get("type") or None,
            "subtype": pa.get("subtype") or None,
            "mask": pa.get("mask") or None,
            "balance_current": _balance(pa, "current") or money_2dp(0),
            "balance_available": _balance(pa, "available"),
            "balance_limit": _balance(pa, "limit"),
            "currency_code": str(balances.get("iso_currency_code") or "USD"),
            "institution_name": item.institution_name,
        }
        acct = existing.get(account_id)
        if acct is None:
            acct = Account(**values)
            session.add(acct)
            existing[account_id] = acct
        else:
            for k, v in values.items():
                setattr(acct, k, v)
        out.append(acct)
    session.flush()
    return out


def link_plaid_item(
    session: Session,
    *,
    user_id: str,
    public_token: str,
    plaid: PlaidClient,
    cfg: Optional[AppConfig] = None,
    now: Optional[dt.datetime] = None,
) -> dict[str, Any]:
    """
    Exchange a Link public token, store the item and its accounts, then pull an
    initial window of transactions. Institution lookup and the initial pull are best-effort.
    """
    c = cfg or get_app_config()
    ts = now or utcnow()
    access_token, item_id = plaid.exchange_public_token(public_token=public_token)
    item_info = plaid.item_get(access_token=access_token)
    plaid_accounts = plaid.get_accounts(access_token=access_token)

    institution_id = item_info.get("institution_id") or None
    institution_name = DEFAULT_INSTITUTION_NAME
    if institution_id:
        try:
            inst = plaid.institution_get_by_id(institution_id=str(institution_id), country_codes=list(c.plaid.country_codes))
            institution_name = str(inst.get("name") or DEFAULT_INSTITUTION_NAME)
        except Exception as e:
            log.warning("Institution lookup failed for %s: %s", institution_id, e)

    item = session.query(PlaidItem).filter(PlaidItem.item_id == item_id).one_or_none()
    if item is None:
        item = PlaidItem(user_id=user_id, item_id=item_id, access_token=seal_access_token(access_token))
        session.add(item)
    elif item.user_id != user_id:
        raise PermissionError("Plaid item belongs to another user.")
    else:
        item.access_token = seal_access_token(access_token)
    item.institution_id = institution_id
    item.institution_name = institution_name
    item.updated_at = ts
    session.flush()

    accounts = upsert_accounts(session, item=item, plaid_accounts=plaid_accounts)
    session.commit()
    log.info(
        "Linked item %s (plaid %s, %s) with %d accounts for user %s",
        item.id,
        mask_secret(item_id),
        institution_name,
        len(accounts),
        user_id,
    )

    end_date = ts.date()
    start_date = end_date - dt.timedelta(days=int(c.plaid.sync_window_days))
    try:
        synced = sync_item_transactions(
            session,
            item=item,
            access_token=access_token,
            plaid=plaid,
            start_date=start_date,
            end_date=end_date,
            page_size=c.plaid.page_size,
            mappings=load_mappings(c.categorization),
        )
        session.commit()
        log.info("Initial sync stored %d transactions for item %s", synced, item.id)
    except Exception as e:
        session.rollback()
        log.warning("Initial transaction sync failed for item %s: %s", mask_secret(item_id), e)

    return {
        "item_id": item_id,
        "accounts": [serialize_account(a) for a in accounts],
        "institution_name": institution_name,
    }


def list_accounts(session: Session, *, user_id: str) -> list[dict[str, Any]]:
    rows = session.query(Account).filter(Account.user_id == user_id).order_by(Account.created_at.desc()).all()
    return [serialize_account(a) for a in rows]


def delete_user_data(
    session: Session,
    *,
    user_id: str,
    plaid: Optional[PlaidClient] = None,
    auth: Optional[SupabaseAuthClient] = None,
) -> dict[str, Any]:
    """
    Remove everything the user owns, then ask Supabase to delete the auth user.

    Data deletion commits before the auth call; an auth failure still reports success
    with a support message.
    """

    def _count(model) -> int:
        return int(session.query(func.count(model.id)).filter(model.user_id == user_id).scalar() or 0)

    n_accounts = _count(Account)
    n_transactions = _count(Transaction)
    n_items = _count(PlaidItem)

    if plaid is not None:
        for item in session.query(PlaidItem).filter(PlaidItem.user_id == user_id):
            try:
                plaid.item_remove(access_token=open_access_token(item.access_token))
            except Exception as e:
                log.warning("Plaid item/remove failed for item %s: %s", mask_secret(item.item_id), e)

    session.query(Transaction).filter(Transaction.user_id == user_id).delete(synchronize_session=False)
    session.query(RecurringTransaction).filter(RecurringTransaction.user_id == user_id).delete(synchronize_session=False)
    session.query(Account).filter(Account.user_id == user_id).delete(synchronize_session=False)
    session.query(PlaidItem).filter(PlaidItem.user_id == user_id).delete(synchronize_session=False)
    session.query(TransactionCategory).filter(TransactionCategory.user_id == user_id).delete(synchronize_session=False)
    session.query(User).filter(User.id == user_id).delete(synchronize_session=False)
    session.commit()
    log.info(
        "Deleted data for user %s: %d accounts, %d transactions, %d items",
        user_id,
        n_accounts,
        n_transactions,
        n_items,
    )

    fully_removed = False
    if auth is not None:
        try:
            auth.delete_user(user_id)
            fully_removed = True
        except AuthServiceError as e:
            log.error("Could not delete auth user %s: %s", user_id, e)

    message = (
        "Account permanently deleted"
        if fully_removed
        else "Account data deleted successfully. Please contact support to fully remove your account."
    )
    return {
        "success": True,
        "message": message,
        "deleted_accounts": n_accounts,
        "deleted_transactions": n_transactions,
        "deleted_plaid_items": n_items,
    }


def duplicate_key(acct: Account) -> str:
    return f"{acct.mask}_{acct.type}_{acct.subtype or 'none'}"


def cleanup_duplicate_accounts(session: Session, *, user_id: str) -> dict[str, Any]:
    """
    Accounts sharing mask/type/subtype are duplicates (typically the same bank linked
    twice); the newest by created_at is kept and the rest go with their transactions.
    """
    accounts = session.query(Account).filter(Account.user_id == user_id).all()
    if not accounts:
        return {"success": True, "message": "No accounts found", "removed": 0}

    groups: dict[str, list[Account]] = defaultdict(list)
    for a in accounts:
        groups[duplicate_key(a)].append(a)

    doomed: list[str] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        members.sort(key=lambda a: a.created_at, reverse=True)
        doomed.extend(a.id for a in members[1:])

    if doomed:
        session.query(Transaction).filter(Transaction.transfer_to_account_id.in_(doomed)).update(
            {Transaction.transfer_to_account_id: None}, synchronize_session=False
        )
        doomed_recurring = [
            r.id
            for r in session.query(RecurringTransaction.id).filter(
                RecurringTransaction.user_id == user_id, RecurringTransaction.account_id.in_(doomed)
            )
        ]
        if doomed_recurring:
            session.query(Transaction).filter(Transaction.recurring_transaction_id.in_(doomed_recurring)).update(
                {Transaction.recurring_transaction_id: None}, synchronize_session=False
            )
        session.query(Transaction).filter(
            Transaction.user_id == user_id, Transaction.account_id.in_(doomed)
        ).delete(synchronize_session=False)
        session.query(RecurringTransaction).filter(
            RecurringTransaction.user_id == user_id, RecurringTransaction.account_id.in_(doomed)
        ).delete(synchronize_session=False)
        session.query(Account).filter(Account.id.in_(doomed)).delete(synchronize_session=False)
        session.commit()
        log.info("Removed %d duplicate accounts for user %s", len(doomed), user_id)

    removed = len(doomed)
    return {
        "success": True,
        "message": f"Cleaned up {removed} duplicate account{'s' if removed != 1 else ''}",
        "removed": removed,
        "total_accounts_before": len(accounts),
        "total_accounts_after": len(accounts) - removed,
    }
