from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from src.adapters.supabase_auth.client import AuthServiceError, AuthUser, SupabaseAuthClient
from src.app.deps import db_session, get_auth_client
from src.app.errors import ApiError
from src.rocketbucks.profiles import ensure_profile

log = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    return token or None


def resolve_user(token: str, *, auth: SupabaseAuthClient, session: Session) -> AuthUser:
    try:
        user = auth.get_user(token)
    except AuthServiceError as e:
        log.error("Auth backend unavailable: %s", e)
        raise ApiError(500, str(e)) from e
    if user is None:
        raise ApiError(401, "Invalid token")
    ensure_profile(session, user)
    return user


def require_user(
    request: Request,
    session: Session = Depends(db_session),
    auth: SupabaseAuthClient = Depends(get_auth_client),
) -> AuthUser:
    """
    Resolve `Authorization: Bearer <jwt>` to the Supabase user.

    401 "Unauthorized" when the header is missing; 401 "Invalid token" when Supabase rejects it.
    """
    token = bearer_token(request)
    if token is None:
        raise ApiError(401, "Unauthorized")
    return resolve_user(token, auth=auth, session=session)
