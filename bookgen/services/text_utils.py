from __future__ import annotations

import math
import re

SUMMARY_CHAR_LIMIT = 500

_FILENAME_PATTERN = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def count_words(text: str) -> int:
    """Return the number of whitespace separated tokens in ``text``."""

    return len((text or "").split())


def summarize(text: str, limit: int = SUMMARY_CHAR_LIMIT) -> str:
    """Return the bounded tail of ``text`` used as continuity context."""

    text = text or ""
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


def round_half_up(value: float) -> int:
    # round() would send 12.5 to 12.
    return int(math.floor(value + 0.5))


def calculate_progress(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return round_half_up(completed / total * 100)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""

    return math.ceil(len(text or "") / 4)


def slugify_filename(title: str, extension: str) -> str:
    stem = _FILENAME_PATTERN.sub("_", title or "").lower()
    return f"{stem}.{extension}"
