"""
Authentication and shared-state dependencies for FastAPI routes.

Extracts user identity from the X-User-* headers set by the Next.js frontend
and hands routers the process-wide services created in the app lifespan.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.database_models import Idea, User
from app.services.import_manager import ImportJobManager
from app.services.room_registry import RoomRegistry
from app.services.synthesis import AISynthesisService

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def get_or_create_user(
    user_id: str = Depends(get_current_user_id),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    x_user_image: Optional[str] = Header(None, alias="X-User-Image"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Ensure the user exists in the local users table. Creates if needed."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            id=user_id,
            email=x_user_email or f"{user_id}@ideabrowser.local",
            name=x_user_name,
            profile_image_url=x_user_image,
        )
        db.add(user)
        await db.flush()
        logger.info("Created new user: id=%s email=%s", user_id, user.email)
    else:
        # Keep the display identity in step with the frontend session
        if x_user_name and user.name != x_user_name:
            user.name = x_user_name
        if x_user_image and user.profile_image_url != x_user_image:
            user.profile_image_url = x_user_image

    return user


async def get_idea(
    idea_id: int,
    db: AsyncSession = Depends(get_db),
) -> Idea:
    """Load the idea a collaboration route is scoped to, or raise 404."""
    idea = await db.get(Idea, idea_id)
    if idea is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Idea {idea_id} not found.",
        )
    return idea


# ---------------------------------------------------------------------------
# Process-wide services (created in the lifespan, stored on app.state)
# ---------------------------------------------------------------------------

def get_room_registry(request: Request) -> RoomRegistry:
    return request.app.state.room_registry


def get_import_manager(request: Request) -> ImportJobManager:
    return request.app.state.import_manager


def get_synthesis_service(request: Request) -> AISynthesisService:
    return request.app.state.synthesis
