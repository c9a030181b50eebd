from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from src.adapters.plaid.client import PlaidClient
from src.adapters.supabase_auth.client import AuthUser
from src.app.auth import require_user
from src.app.deps import db_session, get_config, get_plaid_client
from src.app.errors import error_response
from src.core.errors import NoLinkedItemsError
from src.rocketbucks.config import AppConfig
from src.rocketbucks.recurring import create_recurring, deactivate_recurring, list_recurring, update_recurring
from src.rocketbucks.serialize import serialize_recurring
from src.rocketbucks.sync import sync_user_recurring

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recurring", tags=["recurring"])


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes"}


@router.get("")
def recurring_list(
    active_only: Optional[str] = Query(default=None),
    upcoming_only: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    try:
        rows = list_recurring(
            session, user_id=user.id, active_only=_flag(active_only), upcoming_only=_flag(upcoming_only)
        )
    except Exception as e:
        log.error("Error fetching recurring transactions for user %s: %s", user.id, e)
        return error_response(500, "Failed to fetch recurring transactions", details=str(e))
    return {"recurring": rows}


@router.post("")
def recurring_create(
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    row = create_recurring(session, user_id=user.id, data=payload or {})
    session.commit()
    return {"recurring": serialize_recurring(row, with_relations=False)}


@router.api_route("", methods=["PATCH", "PUT"])
def recurring_update(
    recurring_id: Optional[str] = Query(default=None),
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    if not recurring_id:
        return error_response(400, "recurring_id is required")
    row = update_recurring(session, user_id=user.id, recurring_id=recurring_id, data=payload or {})
    session.commit()
    return {"recurring": serialize_recurring(row, with_relations=False)}


@router.delete("")
def recurring_delete(
    recurring_id: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    if not recurring_id:
        return error_response(400, "recurring_id is required")
    deactivate_recurring(session, user_id=user.id, recurring_id=recurring_id)
    session.commit()
    return {"success": True}


@router.post("/sync")
def recurring_sync(
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    cfg: AppConfig = Depends(get_config),
):
    """Refresh recurring charges from Plaid streams, falling back to local detection."""
    try:
        return sync_user_recurring(session, user_id=user.id, plaid=plaid, cfg=cfg)
    except NoLinkedItemsError as e:
        return error_response(400, str(e))
    except Exception as e:
        session.rollback()
        log.error("Error syncing recurring for user %s: %s", user.id, e)
        return error_response(500, "Failed to sync recurring transactions", details=str(e))
