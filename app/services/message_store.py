"""
Persistence for collaboration chat messages.

Messages are append-only.  ``save_message`` commits before returning so that
anything broadcast afterwards can always be re-read by a fresh listing.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import CollaborationMessage
from app.models.schemas import MessageResponse

logger = logging.getLogger(__name__)


class MessageNotFound(LookupError):
    """The referenced message does not exist in this idea's room."""


async def save_message(
    db: AsyncSession,
    idea_id: int,
    content: str,
    user_name: str,
    user_id: Optional[str] = None,
    user_image: Optional[str] = None,
    is_ai: bool = False,
) -> CollaborationMessage:
    """Insert and commit one message."""
    message = CollaborationMessage(
        idea_id=idea_id,
        user_id=user_id,
        user_name=user_name,
        user_image=user_image,
        content=content,
        is_ai=is_ai,
    )
    db.add(message)
    await db.commit()
    await db.refresh(message)
    logger.info(
        "Idea %d: stored %s message id=%d", idea_id, "AI" if is_ai else "user", message.id
    )
    return message


async def list_messages(
    db: AsyncSession,
    idea_id: int,
    limit: Optional[int] = None,
) -> List[CollaborationMessage]:
    """The newest *limit* messages of an idea, returned oldest first."""
    limit = limit or settings.MESSAGE_HISTORY_LIMIT
    result = await db.execute(
        select(CollaborationMessage)
        .where(CollaborationMessage.idea_id == idea_id)
        .order_by(CollaborationMessage.created_at.desc(), CollaborationMessage.id.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def get_message(db: AsyncSession, idea_id: int, message_id: int) -> CollaborationMessage:
    result = await db.execute(
        select(CollaborationMessage).where(
            CollaborationMessage.id == message_id,
            CollaborationMessage.idea_id == idea_id,
        )
    )
    message = result.scalar_one_or_none()
    if message is None:
        raise MessageNotFound(f"Message {message_id} not found in idea {idea_id}.")
    return message


def serialize_message(message: CollaborationMessage) -> Dict[str, Any]:
    """Wire form used both in HTTP responses and ``new_message`` events."""
    return MessageResponse.model_validate(message).model_dump(by_alias=True, mode="json")
