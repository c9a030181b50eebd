from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from src.core.errors import ValidationError
from src.db.models import Account, TransactionCategory


def check_category_ref(session: Session, *, user_id: str, category_id: Any) -> Optional[str]:
    """
    Validate a category id taken from a request body.

    The id must name one of the caller's categories or a system category. Empty
    values pass through as None.
    """
    if category_id in (None, ""):
        return None
    owner = or_(TransactionCategory.user_id == user_id, TransactionCategory.user_id.is_(None))
    found = (
        session.query(TransactionCategory.id)
        .filter(TransactionCategory.id == str(category_id), owner)
        .first()
    )
    if found is None:
        raise ValidationError("Category not found")
    return str(category_id)


def check_account_ref(session: Session, *, user_id: str, account_id: Any) -> Optional[str]:
    if account_id in (None, ""):
        return None
    found = session.query(Account.id).filter(Account.id == str(account_id), Account.user_id == user_id).first()
    if found is None:
        raise ValidationError("Account not found")
    return str(account_id)
