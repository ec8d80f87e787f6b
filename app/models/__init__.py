"""Database and schema models for the Idea Browser backend."""
from app.models.database_models import (
    User,
    Idea,
    CollaborationMessage,
    ImportJob,
    ImportJobStatus,
    IdeaSourceType,
)
from app.models.schemas import (
    MessageCreateRequest,
    MessageResponse,
    MessageListResponse,
    ActiveUsersResponse,
    AIChatRequest,
    AIChatResponse,
    ImportJobResponse,
    BulkImportResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "User",
    "Idea",
    "CollaborationMessage",
    "ImportJob",
    "ImportJobStatus",
    "IdeaSourceType",
    # Pydantic schemas
    "MessageCreateRequest",
    "MessageResponse",
    "MessageListResponse",
    "ActiveUsersResponse",
    "AIChatRequest",
    "AIChatResponse",
    "ImportJobResponse",
    "BulkImportResponse",
    "HealthCheckResponse",
]
