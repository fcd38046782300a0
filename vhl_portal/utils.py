"""Utility functions for time handling, sanitization and grading bands."""

from datetime import datetime, timezone
from typing import Optional

import bleach


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'ul', 'ol', 'li']
    allowed_attributes = {}

    sanitized = bleach.clean(text, tags=allowed_tags, attributes=allowed_attributes, strip=True)
    return sanitized.strip()


def sanitize_plain(text: str) -> str:
    """Strip all HTML from short free-text fields (options, titles)."""
    return bleach.clean(text or "", tags=[], strip=True).strip()


def grade_letter(percentage: float) -> str:
    if percentage >= 90:
        return "A+"
    if percentage >= 80:
        return "A"
    if percentage >= 70:
        return "B"
    if percentage >= 60:
        return "C"
    if percentage >= 50:
        return "D"
    return "F"


def format_seconds(seconds: int) -> str:
    """Render a countdown as M:SS."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def parse_optional_int(value: Optional[str]) -> Optional[int]:
    """Parse an optional integer form field; blank or malformed becomes None."""
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None
