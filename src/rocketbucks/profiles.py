from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from src.adapters.supabase_auth.client import AuthUser
from src.db.models import User

log = logging.getLogger(__name__)


def get_profile(session: Session, user_id: str) -> Optional[User]:
    return session.get(User, user_id)


def ensure_profile(session: Session, auth_user: AuthUser) -> User:
    """Create the local profile row for an auth user on first sight; fill blanks on later visits."""
    row = session.get(User, auth_user.id)
    if row is None:
        row = User(id=auth_user.id, email=auth_user.email or "", full_name=auth_user.full_name or None)
        session.add(row)
        session.commit()
        log.info("Created profile for user %s", auth_user.id)
        return row
    changed = False
    if auth_user.email and row.email != auth_user.email:
        row.email = auth_user.email
        changed = True
    if auth_user.full_name and not row.full_name:
        row.full_name = auth_user.full_name
        changed = True
    if changed:
        session.commit()
    return row


def profile_payload(auth_user: AuthUser, row: Optional[User] = None) -> dict[str, str]:
    full_name = (row.full_name if row is not None else None) or auth_user.full_name or ""
    return {"id": auth_user.id, "email": auth_user.email, "full_name": full_name}
