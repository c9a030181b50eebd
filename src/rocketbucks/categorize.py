from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from sqlalchemy.orm import Session

from src.db.models import Transaction
from src.rocketbucks.config import CategorizationConfig

log = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class CategoryMapping:
    category: str
    keywords: tuple[str, ...]
    exact_match: tuple[str, ...] = field(default_factory=tuple)


def _m(category: str, keywords: list[str], exact_match: Optional[list[str]] = None) -> CategoryMapping:
    return CategoryMapping(category=category, keywords=tuple(keywords), exact_match=tuple(exact_match or []))


# Order matters: the first mapping with a hit wins.
DEFAULT_MAPPINGS: list[CategoryMapping] = [
    _m(
        "Food and Drink",
        ["uber eats", "doordash", "grubhub", "postmates", "seamless", "delivery", "restaurant", "dining", "food"],
        ["uber eats", "doordash", "grubhub", "postmates"],
    ),
    _m(
        "Restaurants",
        [
            "mcdonalds", "burger king", "taco bell", "chipotle", "subway", "panera", "wendys", "chick-fil-a",
            "five guys", "shake shack", "in-n-out", "raising cane", "popeyes", "kfc", "pizza", "starbucks",
            "dunkin", "cafe", "coffee",
        ],
    ),
    _m(
        "Groceries",
        [
            "whole foods", "trader joe", "safeway", "kroger", "publix", "albertsons", "heb", "wegmans", "aldi",
            "lidl", "costco", "sam's club", "walmart", "target", "grocery", "supermarket", "market",
        ],
    ),
    _m(
        "Transportation",
        ["uber", "lyft", "taxi", "cab", "ride", "transit", "metro", "bus", "train", "subway"],
        ["uber", "lyft"],
    ),
    _m(
        "Gas Stations",
        [
            "shell", "chevron", "exxon", "mobil", "bp", "76", "arco", "texaco", "valero", "circle k", "speedway",
            "gas", "fuel", "petrol",
        ],
    ),
    _m("Transportation", ["parking", "toll", "parkwhiz", "spothero"]),
    _m(
        "Shopping",
        [
            "amazon", "ebay", "etsy", "target", "walmart", "best buy", "apple store", "nike", "adidas", "zara",
            "h&m", "gap", "old navy", "nordstrom", "macy", "kohls", "tj maxx", "marshalls",
        ],
    ),
    _m("Home", ["home depot", "lowes", "ikea", "bed bath", "wayfair", "furniture"]),
    _m(
        "Entertainment",
        [
            "netflix", "hulu", "disney+", "hbo", "amazon prime video", "paramount+", "peacock", "apple tv",
            "spotify", "apple music", "youtube", "twitch", "streaming",
        ],
    ),
    _m("Entertainment", ["amc", "regal", "cinemark", "movie", "cinema", "theater", "theatre"]),
    _m(
        "Health & Wellness",
        ["gym", "fitness", "planet fitness", "la fitness", "24 hour fitness", "equinox", "crunch", "yoga", "pilates", "peloton"],
    ),
    _m("Entertainment", ["steam", "playstation", "xbox", "nintendo", "gaming", "game"]),
    _m(
        "Hotels",
        [
            "airbnb", "hotel", "motel", "marriott", "hilton", "hyatt", "ihg", "holiday inn", "best western",
            "expedia", "booking.com", "hotels.com",
        ],
    ),
    _m(
        "Travel",
        [
            "airline", "airways", "united", "american airlines", "delta", "southwest", "jetblue", "spirit",
            "frontier", "alaska air", "flight",
        ],
    ),
    _m("Pharmacy", ["cvs", "walgreens", "rite aid", "pharmacy", "drug", "prescription"]),
    _m("Healthcare", ["hospital", "clinic", "medical", "doctor", "dentist", "dental", "physician", "healthcare", "health"]),
    _m(
        "Bills & Utilities",
        [
            "at&t", "verizon", "t-mobile", "sprint", "comcast", "xfinity", "spectrum", "cox", "directv", "dish",
            "internet", "cable", "phone", "mobile", "wireless",
        ],
    ),
    _m("Utilities", ["electric", "electricity", "gas", "water", "power", "energy", "utility", "utilities"]),
    _m("Insurance", ["insurance", "geico", "progressive", "state farm", "allstate"]),
    _m("Services", ["lawyer", "attorney", "legal", "tax", "accountant", "cpa"]),
    _m(
        "Service",
        [
            "adobe", "microsoft", "apple", "google", "openai", "chatgpt", "github", "aws", "azure", "digitalocean",
            "heroku", "vercel", "netlify", "cursor", "software", "saas", "subscription",
        ],
    ),
    _m(
        "Education",
        ["tuition", "school", "college", "university", "coursera", "udemy", "edx", "masterclass", "textbook", "education"],
    ),
    _m("Personal Care", ["salon", "barber", "haircut", "spa", "massage", "nail", "beauty"]),
    _m("Gifts & Donations", ["charity", "donation", "donate", "giving", "patreon", "gofundme", "kickstarter"]),
    _m("Transfer", ["zelle", "venmo", "paypal", "cash app", "transfer", "payment", "wire", "ach"]),
    _m("Bank Fees", ["interest charge", "late fee", "overdraft", "atm fee", "bank fee", "service charge", "annual fee"]),
    _m(
        "Investments",
        [
            "interest payment", "dividend", "capital gain", "stock", "investment", "trading", "robinhood", "etrade",
            "fidelity", "schwab", "vanguard",
        ],
    ),
    _m(
        "Income",
        ["paycheck", "salary", "wage", "direct deposit", "payment received", "refund", "reimbursement", "credit"],
    ),
]

CATEGORY_ICONS: dict[str, str] = {
    "Food and Drink": "🍽️",
    "Restaurants": "🍴",
    "Groceries": "🛒",
    "Transportation": "🚗",
    "Gas Stations": "⛽",
    "Shopping": "🛍️",
    "Home": "🏠",
    "Entertainment": "🎬",
    "Hotels": "🏨",
    "Travel": "✈️",
    "Pharmacy": "💊",
    "Healthcare": "🏥",
    "Bills & Utilities": "📋",
    "Utilities": "💡",
    "Insurance": "🛡️",
    "Services": "🔧",
    "Service": "🔧",
    "Education": "📚",
    "Personal Care": "💇",
    "Gifts & Donations": "🎁",
    "Transfer": "💸",
    "Bank Fees": "🏦",
    "Investments": "📈",
    "Income": "💰",
    "Shops": "🛍️",
    "Recreation": "🎮",
    "Supermarkets": "🏪",
    "Auto & Transport": "🚗",
    "Dining & Drinks": "🍽️",
    "Health & Wellness": "🏋️",
    "Travel & Vacation": "✈️",
    "Fees": "💳",
    UNCATEGORIZED: "❓",
}


def load_mappings(cfg: Optional[CategorizationConfig] = None) -> list[CategoryMapping]:
    """
    Keyword table from `rules_path` when that YAML exists, else the built-in table.

    YAML shape:
      mappings:
        - category: Groceries
          keywords: [whole foods, trader joe]
          exact_match: []
    """
    c = cfg or CategorizationConfig()
    p = Path(c.rules_path)
    if not p.exists():
        return list(DEFAULT_MAPPINGS)
    data = yaml.safe_load(p.read_text()) or {}
    rows = data.get("mappings") or []
    out: list[CategoryMapping] = []
    for r in rows:
        if not isinstance(r, dict) or not r.get("category"):
            continue
        out.append(
            CategoryMapping(
                category=str(r["category"]),
                keywords=tuple(str(k).lower() for k in (r.get("keywords") or [])),
                exact_match=tuple(str(k).lower() for k in (r.get("exact_match") or [])),
            )
        )
    if not out:
        log.warning("No usable mappings in %s; using built-in categories", p)
        return list(DEFAULT_MAPPINGS)
    return out


def auto_categorize(name: str, merchant: Optional[str] = None, *, mappings: Optional[list[CategoryMapping]] = None) -> str:
    table = DEFAULT_MAPPINGS if mappings is None else mappings
    text = f"{name or ''} {merchant or ''}".lower()

    for mapping in table:
        for exact in mapping.exact_match:
            if exact.lower() in text:
                return mapping.category

    for mapping in table:
        for kw in mapping.keywords:
            if kw.lower() in text:
                return mapping.category

    return UNCATEGORIZED


def category_display(name: str) -> dict[str, str]:
    return {"name": name, "icon": CATEGORY_ICONS.get(name, "❓")}


def auto_categorize_user(
    session: Session,
    *,
    user_id: str,
    cfg: Optional[CategorizationConfig] = None,
) -> dict[str, Any]:
    """
    Fill user_category_name for transactions that have neither a user category nor a
    meaningful Plaid primary category. Manual categories are never overwritten.
    Commits every `batch_size` updates.
    """
    c = cfg or CategorizationConfig()
    mappings = load_mappings(c)
    candidates = (
        session.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.user_category_name.is_(None))
        .order_by(Transaction.date.desc())
        .all()
    )
    if not candidates:
        return {"success": True, "message": "No transactions to categorize", "categorized_count": 0}

    categorized = 0
    pending = 0
    batch = max(1, int(c.batch_size))
    for t in candidates:
        if t.plaid_primary_category and t.plaid_primary_category.lower() != UNCATEGORIZED.lower():
            continue
        cat = auto_categorize(t.name, t.merchant_name, mappings=mappings)
        if cat == UNCATEGORIZED:
            continue
        t.user_category_name = cat
        categorized += 1
        pending += 1
        if pending >= batch:
            session.commit()
            pending = 0
    if pending:
        session.commit()

    log.info("Auto-categorized %d of %d transactions for user %s", categorized, len(candidates), user_id)
    return {
        "success": True,
        "message": f"Successfully categorized {categorized} transaction{'s' if categorized != 1 else ''}",
        "total_checked": len(candidates),
        "categorized_count": categorized,
        "uncategorized_count": len(candidates) - categorized,
    }
