from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import Session

from src.adapters.plaid.client import PlaidClient
from src.adapters.supabase_auth.client import AuthUser
from src.app.auth import require_user
from src.app.deps import db_session, get_config, get_plaid_client
from src.app.errors import error_response
from src.core.errors import NoLinkedItemsError, SyncRateLimited
from src.rocketbucks.categorize import auto_categorize_user
from src.rocketbucks.config import AppConfig
from src.rocketbucks.serialize import serialize_transaction
from src.rocketbucks.sync import list_recent_transactions, sync_user_transactions
from src.rocketbucks.transactions import delete_transaction, search_transactions, update_transaction

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


def _run_sync(session: Session, user: AuthUser, plaid: PlaidClient, cfg: AppConfig):
    try:
        return sync_user_transactions(session, user_id=user.id, plaid=plaid, cfg=cfg)
    except NoLinkedItemsError as e:
        return error_response(400, str(e))
    except SyncRateLimited as e:
        return error_response(429, "Rate limit exceeded", message=str(e), hours_remaining=e.hours_remaining)
    except Exception as e:
        session.rollback()
        log.error("Error syncing transactions for user %s: %s", user.id, e)
        return error_response(500, "Failed to sync transactions", details=str(e))


def _run_search(session: Session, user: AuthUser, params: dict[str, Any]):
    try:
        return search_transactions(session, user_id=user.id, params=params)
    except Exception as e:
        log.error("Error searching transactions for user %s: %s", user.id, e)
        return error_response(500, "Failed to search transactions", details=str(e))


def _run_auto_categorize(session: Session, user: AuthUser, cfg: AppConfig):
    try:
        return auto_categorize_user(session, user_id=user.id, cfg=cfg.categorization)
    except Exception as e:
        session.rollback()
        log.error("Error auto-categorizing for user %s: %s", user.id, e)
        return error_response(500, "Failed to auto-categorize transactions", details=str(e))


def _run_update(session: Session, user: AuthUser, transaction_id: Optional[str], payload: Optional[dict[str, Any]]):
    data = dict(payload or {})
    txn_id = transaction_id or data.pop("transaction_id", None)
    if not txn_id:
        return error_response(400, "transaction_id is required")
    txn = update_transaction(session, user_id=user.id, transaction_id=str(txn_id), data=data)
    session.commit()
    session.refresh(txn)
    return {"transaction": serialize_transaction(txn)}


@router.get("")
def transactions_get(
    request: Request,
    action: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    cfg: AppConfig = Depends(get_config),
):
    """
    Recent transactions with the last sync time; `?action=search` runs a search instead.
    """
    if action == "search":
        return _run_search(session, user, dict(request.query_params))
    if action:
        return error_response(405, "Method not allowed")
    try:
        return list_recent_transactions(session, user_id=user.id, cfg=cfg)
    except Exception as e:
        log.error("Error fetching transactions for user %s: %s", user.id, e)
        return error_response(500, "Failed to fetch transactions", details=str(e))


@router.post("")
def transactions_post(
    action: Optional[str] = Query(default=None),
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    cfg: AppConfig = Depends(get_config),
):
    if action == "sync":
        return _run_sync(session, user, plaid, cfg)
    if action == "search":
        return _run_search(session, user, payload or {})
    if action == "auto-categorize":
        return _run_auto_categorize(session, user, cfg)
    return error_response(405, "Method not allowed")


@router.api_route("", methods=["PATCH", "PUT"])
def transactions_patch(
    transaction_id: Optional[str] = Query(default=None),
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    return _run_update(session, user, transaction_id, payload)


@router.post("/sync")
def transactions_sync(
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    cfg: AppConfig = Depends(get_config),
):
    return _run_sync(session, user, plaid, cfg)


@router.get("/search")
def transactions_search_get(
    request: Request,
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    return _run_search(session, user, dict(request.query_params))


@router.post("/search")
def transactions_search_post(
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    return _run_search(session, user, payload or {})


@router.post("/auto-categorize")
def transactions_auto_categorize(
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    cfg: AppConfig = Depends(get_config),
):
    return _run_auto_categorize(session, user, cfg)


@router.api_route("/update", methods=["PATCH", "PUT"])
def transactions_update(
    transaction_id: Optional[str] = Query(default=None),
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    return _run_update(session, user, transaction_id, payload)


@router.delete("/delete")
def transactions_delete(
    transaction_id: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    if not transaction_id:
        return error_response(400, "transaction_id is required")
    delete_transaction(session, user_id=user.id, transaction_id=transaction_id)
    session.commit()
    return {"success": True}
