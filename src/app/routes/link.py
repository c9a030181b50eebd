from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from src.adapters.plaid.client import PlaidClient
from src.adapters.supabase_auth.client import AuthUser
from src.app.auth import require_user
from src.app.deps import db_session, get_config, get_plaid_client
from src.app.errors import error_response
from src.rocketbucks.accounts import create_link_token, link_plaid_item
from src.rocketbucks.config import AppConfig

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["link"])


@router.post("/create_link_token")
def create_link_token_route(
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    cfg: AppConfig = Depends(get_config),
):
    try:
        token = create_link_token(plaid, user_id=user.id, cfg=cfg)
    except Exception as e:
        log.error("Error creating link token: %s", e)
        return error_response(500, "Failed to create link token", details=str(e))
    return {"link_token": token}


@router.post("/exchange_public_token")
def exchange_public_token_route(
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
    plaid: PlaidClient = Depends(get_plaid_client),
    cfg: AppConfig = Depends(get_config),
):
    """
    Exchange a Link public token, store the item and accounts, and run the initial sync.
    """
    public_token = str((payload or {}).get("public_token") or "").strip()
    if not public_token:
        return error_response(400, "public_token is required")
    try:
        return link_plaid_item(session, user_id=user.id, public_token=public_token, plaid=plaid, cfg=cfg)
    except PermissionError as e:
        session.rollback()
        return error_response(403, str(e))
    except Exception as e:
        session.rollback()
        log.error("Error exchanging public token for user %s: %s", user.id, e)
        return error_response(500, "Failed to exchange token", details=str(e))
