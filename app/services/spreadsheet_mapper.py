"""
Adaptive mapping of arbitrary spreadsheet rows onto idea fields.

Column names are matched case-insensitively against known aliases.  When no
URL column is recognised every cell is scanned for something URL-shaped, and
the first / second remaining text columns stand in for title / description.
Only the preview URL is mandatory.
"""
from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

Row = Dict[str, str]


# ---------------------------------------------------------------------------
# Column aliases
# ---------------------------------------------------------------------------

URL_COLUMNS = (
    "preview_url", "preview url", "previewurl", "preview", "demo_url", "demo", "app_preview",
    "preview_link", "url", "link", "website", "app_url",
    "linked for app/site/presentation", "linked", "app/site/presentation",
)
TITLE_COLUMNS = (
    "title", "name", "app_name", "solution_name", "idea_name",
    "format name/description", "format name", "format description",
)
DESCRIPTION_COLUMNS = (
    "description", "desc", "summary", "overview", "brief",
    "app details", "app_details", "details",
)
CONTENT_COLUMNS = ("content", "details", "full_description", "long_description", "body")
PROBLEM_COLUMNS = ("problem", "pain_point", "issue", "challenge", "problem_statement")
SOLUTION_COLUMNS = ("solution", "answer", "fix", "approach", "solution_description")
AUDIENCE_COLUMNS = (
    "target_audience", "audience", "target", "users", "customer", "target_market",
    "ideal for industries", "ideal for industry", "industries",
)
TYPE_COLUMNS = ("type", "app_type", "category", "product_type")
IMAGE_COLUMNS = (
    "image_url", "imageurl", "image", "logo_url", "logo", "thumbnail", "thumbnail_url",
)

_URL_LIKE = re.compile(
    r"^(https?://|www\.|[a-z0-9-]+\.(com|net|org|io|app|dev|co|ai|tech|xyz|me|ly)\b)",
    re.IGNORECASE,
)
_B2B_MARKERS = ("business", "enterprise", "b2b")
_MAX_TITLE_CHARS = 200


@dataclasses.dataclass
class MappedIdea:
    """Idea fields recovered from one spreadsheet row."""

    title: str = ""
    description: str = ""
    content: str = ""
    problem: Optional[str] = None
    solution: Optional[str] = None
    target_audience: str = ""
    market: str = "B2C"
    type: str = "web_app"
    preview_url: Optional[str] = None
    image_url: Optional[str] = None
    extra: Dict[str, str] = dataclasses.field(default_factory=dict)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def find_column(row: Row, names: Tuple[str, ...]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(column_key, value)`` of the first non-empty alias match."""
    wanted = {n.lower().strip() for n in names}
    for key, value in row.items():
        if key.lower().strip() in wanted and value:
            return key, value
    return None, None


def normalize_url(value: Optional[str]) -> Optional[str]:
    """Add a scheme when missing; return None unless the result has a dotted host."""
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate or " " in candidate:
        return None
    if not candidate.lower().startswith(("http://", "https://")):
        candidate = f"https://{candidate}"
    parsed = urlparse(candidate)
    if not parsed.netloc or "." not in parsed.netloc:
        return None
    return candidate


def title_from_url(url: str) -> str:
    """``https://www.task-pilot.io/x`` → ``Task Pilot``."""
    host = urlparse(url).netloc.lower()
    host = host[4:] if host.startswith("www.") else host
    stem = host.split(".")[0] if host else ""
    words = re.split(r"[-_]+", stem)
    return " ".join(w.capitalize() for w in words if w) or "Untitled Idea"


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------

class SpreadsheetMapper:
    """Maps raw rows to ``MappedIdea`` and validates them."""

    def map_row(self, row: Row) -> MappedIdea:
        used: set = set()

        # 1. Preview URL: by column name, then by sniffing every cell
        url_key, raw_url = find_column(row, URL_COLUMNS)
        preview_url = normalize_url(raw_url)
        if preview_url is None:
            url_key = None
            for key, value in row.items():
                if value and _URL_LIKE.match(value.strip()):
                    preview_url = normalize_url(value)
                    if preview_url:
                        url_key = key
                        break
        if url_key:
            used.add(url_key)

        free_columns = [k for k in row if k != url_key]

        # 2. Title: by name, else first short non-URL text column
        title_key, title = find_column(row, TITLE_COLUMNS)
        if not title:
            for key in free_columns:
                value = row[key].strip()
                if value and len(value) < _MAX_TITLE_CHARS:
                    title_key, title = key, value
                    break
        if title_key:
            used.add(title_key)

        # 3. Description: by name, else second non-URL text column
        desc_key, description = find_column(row, DESCRIPTION_COLUMNS)
        if not description:
            for key in free_columns[1:]:
                if key != title_key and row[key].strip():
                    desc_key, description = key, row[key].strip()
                    break
        if desc_key:
            used.add(desc_key)

        # 4. Optional fields
        content_key, content = find_column(row, CONTENT_COLUMNS)
        problem_key, problem = find_column(row, PROBLEM_COLUMNS)
        solution_key, solution = find_column(row, SOLUTION_COLUMNS)
        audience_key, audience = find_column(row, AUDIENCE_COLUMNS)
        type_key, idea_type = find_column(row, TYPE_COLUMNS)
        image_key, raw_image = find_column(row, IMAGE_COLUMNS)
        used.update(k for k in (content_key, problem_key, solution_key, audience_key, type_key, image_key) if k)

        audience = (audience or "").strip()
        market = "B2B" if any(m in audience.lower() for m in _B2B_MARKERS) else "B2C"
        description = (description or "").strip()

        return MappedIdea(
            title=(title or "").strip(),
            description=description,
            content=description or (content or "").strip(),
            problem=problem,
            solution=solution,
            target_audience=audience,
            market=market,
            type=(idea_type or "web_app").strip(),
            preview_url=preview_url,
            image_url=normalize_url(raw_image),
            extra={k: v for k, v in row.items() if k not in used and v},
        )

    def validate(self, mapped: MappedIdea) -> List[str]:
        """Return validation errors; an empty list means the row is importable."""
        errors: List[str] = []
        if not mapped.preview_url:
            errors.append("Preview URL is required")
        return errors
