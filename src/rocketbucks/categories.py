from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from src.core.errors import NotFoundError, ValidationError
from src.db.models import RecurringTransaction, Transaction, TransactionCategory
from src.rocketbucks.ownership import check_category_ref

log = logging.getLogger(__name__)

DEFAULT_ICON = "📁"
DEFAULT_COLOR = "#6b7280"
EDITABLE_FIELDS = ("name", "icon", "color", "parent_category_id")


class DuplicateCategoryError(Exception):
    pass


def list_categories(session: Session, *, user_id: str) -> list[TransactionCategory]:
    """System rows first, then by name."""
    return (
        session.query(TransactionCategory)
        .filter(or_(TransactionCategory.user_id.is_(None), TransactionCategory.user_id == user_id))
        .order_by(TransactionCategory.is_system.desc(), TransactionCategory.name.asc())
        .all()
    )


def create_category(session: Session, *, user_id: str, data: dict[str, Any]) -> TransactionCategory:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    clash = (
        session.query(TransactionCategory.id)
        .filter(TransactionCategory.user_id == user_id, TransactionCategory.name == name)
        .first()
    )
    if clash is not None:
        raise DuplicateCategoryError("Category already exists")
    parent_id = check_category_ref(session, user_id=user_id, category_id=data.get("parent_category_id"))
    cat = TransactionCategory(
        user_id=user_id,
        name=name,
        icon=data.get("icon") or DEFAULT_ICON,
        color=data.get("color") or DEFAULT_COLOR,
        parent_category_id=parent_id,
        is_system=False,
    )
    session.add(cat)
    session.flush()
    log.info("Created category %r for user %s", name, user_id)
    return cat


def _own_category(session: Session, *, user_id: str, category_id: str) -> TransactionCategory:
    cat = (
        session.query(TransactionCategory)
        .filter(TransactionCategory.id == category_id, TransactionCategory.user_id == user_id)
        .one_or_none()
    )
    if cat is None:
        raise NotFoundError("Category not found")
    return cat


def update_category(session: Session, *, user_id: str, data: dict[str, Any]) -> TransactionCategory:
    category_id = data.get("category_id")
    if not category_id:
        raise ValidationError("category_id is required")
    cat = _own_category(session, user_id=user_id, category_id=str(category_id))
    parent_id = None
    if "parent_category_id" in data:
        parent_id = check_category_ref(session, user_id=user_id, category_id=data["parent_category_id"])
        if parent_id == cat.id:
            raise ValidationError("A category cannot be its own parent")
    for key in EDITABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "name":
            value = str(value or "").strip()
            if not value:
                raise ValidationError("Category name is required")
        elif key == "parent_category_id":
            value = parent_id
        setattr(cat, key, value)
    session.flush()
    return cat


def delete_category(session: Session, *, user_id: str, category_id: str) -> None:
    if not category_id:
        raise ValidationError("category_id is required")
    cat = _own_category(session, user_id=user_id, category_id=category_id)
    n = (
        session.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.category_id == cat.id)
        .update({Transaction.category_id: None}, synchronize_session=False)
    )
    session.query(RecurringTransaction).filter(RecurringTransaction.category_id == cat.id).update(
        {RecurringTransaction.category_id: None}, synchronize_session=False
    )
    session.query(TransactionCategory).filter(TransactionCategory.parent_category_id == cat.id).update(
        {TransactionCategory.parent_category_id: None}, synchronize_session=False
    )
    session.delete(cat)
    session.flush()
    log.info("Deleted category %s for user %s (%d transactions cleared)", cat.id, user_id, n)
