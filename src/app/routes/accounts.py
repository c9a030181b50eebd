from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.adapters.plaid.client import PlaidClient
from src.adapters.supabase_auth.client import AuthUser, SupabaseAuthClient
from src.app.auth import require_user
from src.app.deps import db_session, get_auth_client, get_plaid_client
from src.app.errors import error_response
from src.rocketbucks.accounts import cleanup_duplicate_accounts, delete_user_data, list_accounts

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.get("")
def accounts_list(session: Session = Depends(db_session), user: AuthUser = Depends(require_user)):
    try:
        return {"accounts": list_accounts(session, user_id=user.id)}
    except Exception as e:
        log.error("Error fetching accounts for user %s: %s", user.id, e)
        return error_response(500, "Failed to fetch accounts", details=str(e))


def _delete_everything(session: Session, user: AuthUser, plaid: PlaidClient, auth: SupabaseAuthClient):
    try:
        return delete_user_data(session, user_id=user.id, plaid=plaid if plaid.configured else None, auth=auth)
    except Exception as e:
        session.rollback()
        log.error("Error deleting account for user %s: %s", user.id, e)
        return error_response(500, "Failed to delete account", details=str(e))


@router.delete("")
def accounts_delete_root(
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    auth: SupabaseAuthClient = Depends(get_auth_client),
):
    return _delete_everything(session, user, plaid, auth)


@router.delete("/delete")
def accounts_delete(
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    auth: SupabaseAuthClient = Depends(get_auth_client),
):
    """Permanently delete the signed-in user's data and auth account."""
    return _delete_everything(session, user, plaid, auth)


@router.post("/cleanup-duplicates")
def accounts_cleanup_duplicates(session: Session = Depends(db_session), user: AuthUser = Depends(require_user)):
    try:
        return cleanup_duplicate_accounts(session, user_id=user.id)
    except Exception as e:
        session.rollback()
        log.error("Error cleaning up duplicate accounts for user %s: %s", user.id, e)
        return error_response(500, "Failed to cleanup duplicates", details=str(e))
