"""
Common utility functions and helpers.
"""
from typing import Any, Dict, List
import logging
import os
import re
import time
import unicodedata

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """
    Generate a URL slug from a title.

    Args:
        title: Idea title

    Returns:
        Lowercase hyphenated slug; ``idea-<ms timestamp>`` when nothing survives
    """
    text = unicodedata.normalize('NFKD', title).encode('ascii', 'ignore').decode('ascii')
    slug = text.lower()
    # Remove special characters
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    # Spaces to hyphens, squeeze repeats
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug).strip('-')
    return slug[:200] or f"idea-{int(time.time() * 1000)}"


def truncate(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)] + "…"


def format_error_summary(errors: List[Dict[str, Any]], limit: int) -> List[str]:
    """
    Human-readable lines for the first *limit* row errors.

    Args:
        errors: ``[{"row": int, "error": str}, ...]``
        limit: How many errors to list individually

    Returns:
        ``["Row 3: ...", ..., "... and 4 more errors"]``
    """
    lines = [f"Row {e['row']}: {e['error']}" for e in errors[:limit]]
    hidden = len(errors) - limit
    if hidden > 0:
        lines.append(f"... and {hidden} more error{'s' if hidden != 1 else ''}")
    return lines


def safe_remove(path: str) -> None:
    """Delete a file, logging (not raising) on failure."""
    try:
        if path and os.path.exists(path):
            os.remove(path)
    except Exception as exc:
        logger.warning("Could not remove file %r: %s", path, exc)
