from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from src.adapters.supabase_auth.client import AuthUser
from src.app.auth import require_user
from src.app.deps import db_session
from src.app.errors import error_response
from src.rocketbucks.reports import net_worth, spending_summary
from src.utils.time import parse_date

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])


@router.get("/spending/summary")
def spending_summary_route(
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    user: AuthUser = Depends(require_user),
):
    start = parse_date(start_date)
    end = parse_date(end_date)
    if (start_date and start is None) or (end_date and end is None):
        return error_response(400, "Dates must be YYYY-MM-DD")
    return spending_summary(session, user_id=user.id, start_date=start, end_date=end)


@router.get("/net-worth")
def net_worth_route(session: Session = Depends(db_session), user: AuthUser = Depends(require_user)):
    return net_worth(session, user_id=user.id)
