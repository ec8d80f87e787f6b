"""
Creates one idea record from one spreadsheet row.

This is the row handler the import manager calls for every data row.  It
raises on any problem; the manager turns the exception into a row error.
"""
from __future__ import annotations

import logging
import time
from typing import Dict

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import Idea, IdeaSourceType
from app.services.spreadsheet_mapper import SpreadsheetMapper, title_from_url
from app.utils.helpers import slugify, truncate

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 1000
MAX_INSERT_ATTEMPTS = 5


class RowValidationError(ValueError):
    """The row lacks data required to create an idea."""


class RowSaveError(RuntimeError):
    """The idea could not be stored."""


_mapper = SpreadsheetMapper()


async def slug_exists(db: AsyncSession, slug: str) -> bool:
    result = await db.execute(select(Idea.id).where(Idea.slug == slug).limit(1))
    return result.scalar_one_or_none() is not None


async def generate_unique_slug(db: AsyncSession, title: str) -> str:
    """Slug from *title*, suffixed ``-1``, ``-2`` … until unused."""
    base = slugify(title)
    slug = base
    counter = 1
    while await slug_exists(db, slug):
        slug = f"{base}-{counter}"
        counter += 1
        if counter > MAX_SLUG_ATTEMPTS:
            slug = f"{base}-{int(time.time() * 1000)}"
            break
    return slug


async def create_idea_from_row(db: AsyncSession, row: Dict[str, str], user_id: str) -> int:
    """
    Map, validate and insert one row.  Commits and returns the new idea id.

    The slug is checked before the insert, so another writer can take it in
    between.  A unique violation on the slug is retried with a fresh slug.

    Raises:
        RowValidationError: mapping produced no usable preview URL.
        RowSaveError:       the insert kept failing.
    """
    mapped = _mapper.map_row(row)
    problems = _mapper.validate(mapped)
    if problems:
        raise RowValidationError("; ".join(problems))

    title = truncate(mapped.title or title_from_url(mapped.preview_url), 255)
    description = mapped.description or f"Imported from {mapped.preview_url}"

    for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
        slug = await generate_unique_slug(db, title)
        idea = Idea(
            title=title,
            slug=slug,
            description=description,
            content=mapped.content or description,
            type=mapped.type,
            market=mapped.market,
            target_audience=mapped.target_audience or None,
            problem=mapped.problem,
            solution=mapped.solution,
            preview_url=mapped.preview_url,
            image_url=mapped.image_url,
            source_type=IdeaSourceType.USER_IMPORT.value,
            source_data=mapped.extra or None,
            created_by=user_id,
        )
        db.add(idea)
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            if not await slug_exists(db, slug):
                logger.error("Insert of idea %r failed: %s", title, exc.orig)
                raise RowSaveError("Could not save idea") from exc
            logger.info("Slug %s was taken concurrently (attempt %d), retrying", slug, attempt)
            continue
        logger.debug("Imported idea id=%d slug=%s", idea.id, idea.slug)
        return idea.id

    raise RowSaveError(f"Could not find a free slug for '{truncate(title, 60)}'")
