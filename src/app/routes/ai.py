from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from src.adapters.openrouter.client import AdvisorError, OpenRouterClient
from src.adapters.supabase_auth.client import SupabaseAuthClient
from src.app.auth import bearer_token, resolve_user
from src.app.deps import db_session, get_advisor_client, get_auth_client, get_config
from src.app.errors import error_response
from src.rocketbucks.advisor import EmptyAdvice, run_chat
from src.rocketbucks.config import AppConfig

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.post("/chat")
def ai_chat(
    request: Request,
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    auth: SupabaseAuthClient = Depends(get_auth_client),
    advisor: OpenRouterClient = Depends(get_advisor_client),
    cfg: AppConfig = Depends(get_config),
):
    """
    Financial-advisor chat turn.

    Checks run in a fixed order: advisor configured, bearer present, message
    present, then token validity.
    """
    if not advisor.configured:
        return error_response(503, "AI advisor is not configured.")
    token = bearer_token(request)
    if token is None:
        return error_response(401, "Unauthorized")
    data = payload or {}
    message = data.get("message")
    if not isinstance(message, str) or not message.strip():
        return error_response(400, "Message is required")
    user = resolve_user(token, auth=auth, session=session)

    try:
        return run_chat(
            session,
            user_id=user.id,
            message=message,
            conversation=data.get("conversation"),
            client=advisor,
            cfg=cfg,
        )
    except EmptyAdvice as e:
        return error_response(502, str(e))
    except AdvisorError:
        return error_response(502, "AI advisor is temporarily unavailable.")
    except Exception as e:
        log.error("Error generating AI advice: %s", e)
        return error_response(500, "Failed to generate AI advice")
