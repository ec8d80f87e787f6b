"""
Collaboration room endpoints for a single idea.

Route summary
-------------
GET  /api/ideas/{idea_id}/collaboration/messages      : chat history, oldest first
POST /api/ideas/{idea_id}/collaboration/messages      : post + broadcast a message
GET  /api/ideas/{idea_id}/collaboration/active-users  : who is in the room now
POST /api/ideas/{idea_id}/collaboration/ai-chat       : analyze / synthesize / critique / ask
POST /api/ideas/{idea_id}/collaboration/ai-insight    : one-shot insight on the thread
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.auth import (
    get_current_user_id,
    get_idea,
    get_or_create_user,
    get_room_registry,
    get_synthesis_service,
)
from app.models.database_models import Idea, User
from app.models.schemas import (
    ActiveUser,
    ActiveUsersResponse,
    AIChatRequest,
    AIChatResponse,
    MessageCreateRequest,
    MessageListResponse,
    MessageResponse,
    SynthesisActionSchema,
)
from app.services import message_store
from app.services.llm_client import LLMError
from app.services.message_store import MessageNotFound
from app.services.room_registry import RoomRegistry
from app.services.synthesis import (
    AISynthesisService,
    SynthesisAction,
    SynthesisBusyError,
    SynthesisValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@router.get("/messages", response_model=MessageListResponse)
async def list_messages(
    idea: Idea = Depends(get_idea),
    db: AsyncSession = Depends(get_db),
) -> MessageListResponse:
    """Return the room's message history ordered by creation time."""
    messages = await message_store.list_messages(db, idea.id)
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in messages]
    )


@router.post(
    "/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    body: MessageCreateRequest,
    idea: Idea = Depends(get_idea),
    user: User = Depends(get_or_create_user),
    registry: RoomRegistry = Depends(get_room_registry),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Persist a chat message, then broadcast it as ``new_message`` to everyone
    currently in the room (the sender included).
    """
    content = body.content.strip()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message content must not be empty.",
        )
    if len(content) > settings.MAX_MESSAGE_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Message exceeds {settings.MAX_MESSAGE_LENGTH} characters.",
        )

    message = await message_store.save_message(
        db,
        idea_id=idea.id,
        content=content,
        user_name=user.display_name,
        user_id=user.id,
        user_image=user.profile_image_url,
    )
    registry.broadcast_message(idea.id, message_store.serialize_message(message))
    return MessageResponse.model_validate(message)


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------

@router.get("/active-users", response_model=ActiveUsersResponse)
async def active_users(
    idea: Idea = Depends(get_idea),
    registry: RoomRegistry = Depends(get_room_registry),
) -> ActiveUsersResponse:
    """Identified users with at least one live connection in the room."""
    members = registry.active_members(idea.id)
    return ActiveUsersResponse(
        users=[
            ActiveUser(user_id=m.user_id, user_name=m.user_name, user_image=m.user_image)
            for m in members
        ]
    )


# ---------------------------------------------------------------------------
# AI
# ---------------------------------------------------------------------------

async def _run_ai(
    service: AISynthesisService,
    db: AsyncSession,
    idea: Idea,
    user_id: str,
    request: AIChatRequest,
    action: Optional[SynthesisAction] = None,
) -> AIChatResponse:
    try:
        result = await service.run(db, idea, user_id, request, action=action)
    except SynthesisValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except MessageNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except SynthesisBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except LLMError as exc:
        logger.error("Idea %d: AI call failed for user=%s: %s", idea.id, user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to get AI response",
        )

    return AIChatResponse(
        message=MessageResponse.model_validate(result.message),
        synthesize_state=result.next_state.value,
        action=SynthesisActionSchema(result.action.value),
    )


@router.post("/ai-chat", response_model=AIChatResponse)
async def ai_chat(
    body: AIChatRequest,
    idea: Idea = Depends(get_idea),
    user_id: str = Depends(get_current_user_id),
    service: AISynthesisService = Depends(get_synthesis_service),
    db: AsyncSession = Depends(get_db),
) -> AIChatResponse:
    """
    Run one AI action against the conversation.

    The action comes from ``action`` or, failing that, from the
    ``synthesizeState`` label the portal sends.  The AI reply is stored as a
    chat message and broadcast to the room; the response always tells the
    client to return to ``idle``.
    """
    return await _run_ai(service, db, idea, user_id, body)


@router.post("/ai-insight", response_model=AIChatResponse)
async def ai_insight(
    body: Optional[AIChatRequest] = Body(None),
    idea: Idea = Depends(get_idea),
    user_id: str = Depends(get_current_user_id),
    service: AISynthesisService = Depends(get_synthesis_service),
    db: AsyncSession = Depends(get_db),
) -> AIChatResponse:
    """Ask the AI for one new insight on the whole thread."""
    return await _run_ai(
        service, db, idea, user_id, body or AIChatRequest(), action=SynthesisAction.INSIGHT
    )
