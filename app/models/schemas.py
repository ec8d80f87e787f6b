"""
Pydantic schemas for request/response validation.

The browser client speaks camelCase, so every schema serialises through a
camelCase alias generator while Python code keeps snake_case attributes.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class CamelModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Enums (matching service enums)
class SynthesisStateSchema(str, Enum):
    """UI state label echoed back to the collaboration portal."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    CRITIQUING = "critiquing"


class SynthesisActionSchema(str, Enum):
    """AI actions a client may request explicitly."""

    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    CRITIQUE = "critique"
    ASK = "ask"
    INSIGHT = "insight"


class ImportJobStatusSchema(str, Enum):
    """Import job statuses for API responses."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Collaboration Schemas
# ---------------------------------------------------------------------------

class MessageCreateRequest(CamelModel):
    """Body for POST /collaboration/messages."""

    content: str


class MessageResponse(CamelModel):
    """A chat message as stored and broadcast."""

    id: int
    idea_id: int
    user_id: Optional[str] = None
    user_name: str
    user_image: Optional[str] = None
    content: str
    is_ai: bool = False
    created_at: datetime


class MessageListResponse(CamelModel):
    """Response for GET /collaboration/messages."""

    messages: List[MessageResponse]


class ActiveUser(CamelModel):
    """One de-duplicated participant of a room."""

    user_id: str
    user_name: Optional[str] = None
    user_image: Optional[str] = None


class ActiveUsersResponse(CamelModel):
    """Response for GET /collaboration/active-users."""

    users: List[ActiveUser]


class ConversationContextItem(CamelModel):
    """A prior message as the client currently displays it."""

    id: Optional[int] = None
    user_name: Optional[str] = None
    content: str = ""
    created_at: Optional[datetime] = None


class AIChatRequest(CamelModel):
    """Body for POST /collaboration/ai-chat."""

    message_id: Optional[int] = None
    question: str = ""
    conversation_context: List[ConversationContextItem] = []
    synthesize_state: Optional[SynthesisStateSchema] = None
    synthesize_data: Dict[str, Any] = {}
    action: Optional[SynthesisActionSchema] = None


class AIChatResponse(CamelModel):
    """The AI message that was persisted and broadcast, plus the next UI state."""

    message: MessageResponse
    synthesize_state: SynthesisStateSchema = SynthesisStateSchema.IDLE
    action: SynthesisActionSchema


# ---------------------------------------------------------------------------
# Import Schemas
# ---------------------------------------------------------------------------

class RowError(CamelModel):
    """A single failed spreadsheet row (1-based data-row number)."""

    row: int
    error: str


class ImportJobResponse(CamelModel):
    """Snapshot of an import job for polling."""

    id: str
    user_id: str
    filename: str
    status: ImportJobStatusSchema
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    errors: List[RowError] = []
    results: List[int] = []
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_summary: List[str] = []


class BulkImportResponse(CamelModel):
    """Response for POST /api/ideas/bulk-import."""

    job_id: str
    status: ImportJobStatusSchema
    total_rows: int
    message: str


# ---------------------------------------------------------------------------
# Health Schemas
# ---------------------------------------------------------------------------

class HealthCheckResponse(CamelModel):
    """Response for GET /api/health."""

    status: str
    database: str
    llm: str
    active_rooms: int = 0
    running_imports: int = 0
    timestamp: datetime
