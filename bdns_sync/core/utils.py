"""
Shared utility functions for hashing, date parsing and code generation.
"""

import hashlib
import json
import re
from datetime import date, datetime
from typing import Any, Optional
from dateutil import parser as dateparser


# BDNS started publishing around 2008
MIN_VALID_YEAR = 2008
MAX_VALID_YEAR = 2100

MAX_GENERATED_CODE_LENGTH = 20

_INVALID_DATE_TOKENS = ("nan", "undefined", "invalid", "null")


def sha256_json(payload: Any) -> str:
    """
    Generate a SHA-256 hex digest of a JSON-serializable payload.

    Keys are sorted and separators fixed, so equal payloads always hash
    the same regardless of dict insertion order.

    Args:
        payload: JSON-serializable value

    Returns:
        64-character hex digest
    """
    content = json.dumps(
        payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_bdns_date(value: Any) -> Optional[date]:
    """
    Parse a BDNS date, returning None for anything unusable.

    Accepts "DD/MM/YYYY" and ISO "YYYY-MM-DD" (with or without a time part).
    Rejects placeholder values ("0", "00/00/0000", "NaN"...) and dates
    outside 2008-2100.

    Examples:
        >>> parse_bdns_date("10/05/2024")
        datetime.date(2024, 5, 10)
        >>> parse_bdns_date("0000-00-00")
        None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _in_range(value.date())
    if isinstance(value, date):
        return _in_range(value)

    text = str(value).strip()
    if not text or text == "0" or len(text) > 50:
        return None
    lowered = text.lower()
    if any(token in lowered for token in _INVALID_DATE_TOKENS):
        return None
    if text.startswith("00/") or text.startswith("0000"):
        return None

    try:
        if re.match(r"^\d{4}-\d{2}-\d{2}", text):
            parsed = dateparser.isoparse(text[:10])
        else:
            # dayfirst=True handles Spanish DD/MM/YYYY dates
            parsed = dateparser.parse(text, dayfirst=True)
    except (ValueError, TypeError, OverflowError):
        return None

    return _in_range(parsed.date())


def _in_range(value: date) -> Optional[date]:
    if MIN_VALID_YEAR <= value.year <= MAX_VALID_YEAR:
        return value
    return None


def format_bdns_date(value: date) -> str:
    """Format a date the way the BDNS query string expects (DD/MM/YYYY)."""
    return value.strftime("%d/%m/%Y")


def generate_code(name: str, max_length: int = MAX_GENERATED_CODE_LENGTH) -> str:
    """
    Derive a code from a classification name.

    Lowercases, replaces every non [a-z0-9] character with "_" and
    truncates.

    Examples:
        >>> generate_code("Andalucía")
        'andaluc_a'
    """
    return re.sub(r"[^a-z0-9]", "_", name.lower())[:max_length]


def clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if text is None:
        return None
    text = re.sub(r"\s+", " ", str(text)).strip()
    return text or None
