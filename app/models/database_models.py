"""
SQLAlchemy ORM models for the Idea Browser database.

Only the tables the collaboration and bulk-import features touch are
modelled here: users, ideas, collaboration messages and import jobs.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Boolean,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
import enum

from app.database import Base


def utcnow() -> datetime:
    """Timezone-aware now; microsecond precision keeps message order stable on SQLite."""
    return datetime.now(timezone.utc)


# Enums
class ImportJobStatus(str, enum.Enum):
    """Lifecycle of a bulk import job.  Every state but PROCESSING is terminal."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ImportJobStatus.PROCESSING


class IdeaSourceType(str, enum.Enum):
    """Where an idea record came from."""

    CURATED = "curated"
    USER_IMPORT = "user_import"
    USER_GENERATED = "user_generated"


# Models
class User(Base):
    """User account (synced from the identity headers set by the frontend)."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    profile_image_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    import_jobs = relationship("ImportJob", back_populates="user", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return (self.email or self.id).split("@")[0]


class Idea(Base):
    """A business-idea listing.  Chat rooms are keyed by idea id."""

    __tablename__ = "ideas"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(Text, nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False, default="")

    # Categorization
    type = Column(String(100), nullable=False, default="web_app")
    market = Column(String(20), nullable=False, default="B2C")  # B2B, B2C, B2B2C
    target_audience = Column(Text, nullable=True)
    problem = Column(Text, nullable=True)
    solution = Column(Text, nullable=True)

    preview_url = Column(String(1024), nullable=True)
    image_url = Column(String(1024), nullable=True)

    # Provenance
    source_type = Column(String(50), nullable=False, default=IdeaSourceType.CURATED.value)
    source_data = Column(JSON, nullable=True)  # unrecognised spreadsheet columns
    created_by = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    messages = relationship(
        "CollaborationMessage", back_populates="idea", cascade="all, delete-orphan"
    )


class CollaborationMessage(Base):
    """Chat message in an idea's collaboration room.  Immutable once written."""

    __tablename__ = "collaboration_messages"

    id = Column(Integer, primary_key=True, index=True)
    idea_id = Column(Integer, ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)  # NULL for AI
    user_name = Column(String(255), nullable=False)
    user_image = Column(String(1024), nullable=True)
    content = Column(Text, nullable=False)
    is_ai = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Relationships
    idea = relationship("Idea", back_populates="messages")


class ImportJob(Base):
    """Persisted record of a bulk import; the live copy is kept by ImportJobManager."""

    __tablename__ = "import_jobs"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=ImportJobStatus.PROCESSING.value, index=True)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    successful_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)   # [{"row": int, "error": str}]
    results = Column(JSON, nullable=False, default=list)  # created idea ids
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="import_jobs")
