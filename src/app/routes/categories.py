from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from src.adapters.supabase_auth.client import AuthUser
from src.app.auth import require_user
from src.app.deps import db_session
from src.app.errors import error_response
from src.rocketbucks.categories import (
    DuplicateCategoryError,
    create_category,
    delete_category,
    list_categories,
    update_category,
)
from src.rocketbucks.serialize import serialize_category

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("")
def categories_list(session: Session = Depends(db_session), user: AuthUser = Depends(require_user)):
    return {"categories": [serialize_category(c) for c in list_categories(session, user_id=user.id)]}


@router.post("", status_code=201)
def categories_create(
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    try:
        cat = create_category(session, user_id=user.id, data=payload or {})
    except DuplicateCategoryError as e:
        return error_response(409, str(e))
    session.commit()
    return {"category": serialize_category(cat)}


@router.api_route("", methods=["PATCH", "PUT"])
def categories_update(
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    cat = update_category(session, user_id=user.id, data=payload or {})
    session.commit()
    return {"category": serialize_category(cat)}


@router.delete("")
def categories_delete(
    category_id: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    delete_category(session, user_id=user.id, category_id=category_id or "")
    session.commit()
    return {"success": True}
