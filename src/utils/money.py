from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


def to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    s = str(value).strip()
    if not s:
        return None
    s = s.replace(",", "")
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def money_2dp(value: Any) -> Decimal:
    d = to_decimal(value) or Decimal("0")
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def normalize_amount(value: Any) -> float:
    """
    Coerce DB/API amounts (Decimal, str, bool, None) to a float; anything unparseable is 0.
    """
    d = to_decimal(value)
    if d is None or not d.is_finite():
        return 0.0
    return float(d)


def round2(value: Any) -> float:
    return float(money_2dp(value))


def format_currency(value: Any, decimals: int = 0, include_sign: bool = False) -> str:
    """
    "$1,234" style formatting used in prompt summaries.

    - negative values get a leading "-"
    - include_sign adds "+" to positive values
    """
    amount = normalize_amount(value)
    digits = max(0, int(decimals))
    q = Decimal(1) if digits == 0 else Decimal("1").scaleb(-digits)
    d_abs = abs(Decimal(str(amount))).quantize(q, rounding=ROUND_HALF_UP)
    if amount < 0:
        prefix = "-"
    elif include_sign and amount > 0:
        prefix = "+"
    else:
        prefix = ""
    return f"{prefix}${d_abs:,.{digits}f}"


def percent_of(part: Any, whole: Any) -> int:
    """Whole-number percentage, half rounding up; 0 when `whole` is not positive."""
    total = normalize_amount(whole)
    if total <= 0:
        return 0
    ratio = Decimal(str(normalize_amount(part))) / Decimal(str(total)) * 100
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))
