"""
Money parsing utilities for BDNS funding amounts.

The API reports each financing line's "importe" as a number or a numeric
string. Handles:
- 1500000 → 1500000.0
- "1500000.50" → 1500000.5
- "1.500.000,50" → 1500000.5
- "1.500.000" → 1500000.0
- None / "" / "n/a" → 0.0
"""

import re
from typing import Any, Optional


# "1.500.000": dots as thousands separators, no decimal part
GROUPED_THOUSANDS = re.compile(r"^\d{1,3}(\.\d{3})+$")


def parse_eur_amount(value: Any) -> Optional[float]:
    """
    Parse a single EUR amount.

    Args:
        value: Raw importe (number or string)

    Returns:
        Amount as float, or None if it cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = re.sub(r"[\s€]", "", str(value))
    if not text:
        return None

    # Spanish formatting: "." thousands separator, "," decimal separator
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif GROUPED_THOUSANDS.match(text):
        text = text.replace(".", "")

    try:
        return float(text)
    except ValueError:
        return None


def total_financing(financing: Any) -> float:
    """
    Sum the importe of every financing line.

    Lines without a parseable importe count as zero; anything that is not a
    list sums to zero.

    Args:
        financing: Raw "financiacion" payload

    Returns:
        Total amount in EUR
    """
    if not isinstance(financing, list):
        return 0.0

    total = 0.0
    for item in financing:
        if not isinstance(item, dict):
            continue
        amount = parse_eur_amount(item.get("importe"))
        if amount is not None:
            total += amount
    return round(total, 2)


def format_eur_amount(amount: Optional[float]) -> str:
    """
    Format an EUR amount for display.

    Examples:
        4_000_000 → "4.0 M€"
        750_000 → "750 k€"
    """
    if amount is None:
        return "No especificado"

    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f} M€"
    elif amount >= 1_000:
        return f"{amount / 1_000:.0f} k€"
    else:
        return f"{amount:,.2f} €"


