from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from src.db.models import Base, TransactionCategory
from src.db.session import get_engine, get_session

log = logging.getLogger(__name__)

# (name, icon, color)
SYSTEM_CATEGORIES: list[tuple[str, str, str]] = [
    ("Food and Drink", "🍽️", "#3b82f6"),
    ("Shops", "🛍️", "#ef4444"),
    ("Recreation", "🎮", "#8b5cf6"),
    ("Service", "🔧", "#06b6d4"),
    ("Transportation", "🚗", "#10b981"),
    ("Travel", "✈️", "#f59e0b"),
    ("Bank Fees", "🏦", "#6b7280"),
    ("Entertainment", "🎬", "#ec4899"),
    ("Gas Stations", "⛽", "#f97316"),
    ("Groceries", "🛒", "#22c55e"),
    ("Healthcare", "🏥", "#06b6d4"),
    ("Hotels", "🏨", "#3b82f6"),
    ("Pharmacy", "💊", "#8b5cf6"),
    ("Restaurants", "🍴", "#f59e0b"),
    ("Supermarkets", "🏪", "#22c55e"),
    ("Utilities", "📋", "#6366f1"),
    ("Education", "📚", "#f97316"),
    ("Uncategorized", "❓", "#6b7280"),
]


def seed_system_categories(session: Session) -> int:
    """Insert missing system categories; returns how many were added."""
    existing = {
        name
        for (name,) in session.query(TransactionCategory.name).filter(
            TransactionCategory.user_id.is_(None), TransactionCategory.is_system.is_(True)
        )
    }
    added = 0
    for name, icon, color in SYSTEM_CATEGORIES:
        if name in existing:
            continue
        session.add(TransactionCategory(user_id=None, name=name, icon=icon, color=color, is_system=True))
        added += 1
    if added:
        session.flush()
    return added


def init_db(engine: Engine | None = None) -> None:
    eng = engine or get_engine()
    Base.metadata.create_all(bind=eng)
    session = get_session() if engine is None else Session(bind=eng)
    with session:
        added = seed_system_categories(session)
        session.commit()
    if added:
        log.info("Seeded %d system categories", added)
