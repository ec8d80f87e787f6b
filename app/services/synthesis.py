"""
AI actions inside an idea's collaboration room (analyze / synthesize /
critique / free question / conversation insight).

Each action is a one-shot round trip: one prompt, one model call, one
persisted AI message, one ``new_message`` broadcast.  The ``synthesizeState``
label a client sends is only used to pick the action; no conversation state
survives between calls, and the client is always told to return to ``idle``.

Public API
----------
AISynthesisService.run(db, idea, user_id, request) -> SynthesisResult
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import CollaborationMessage, Idea
from app.models.schemas import AIChatRequest, ConversationContextItem
from app.services import message_store
from app.services.llm_client import LLMClient
from app.services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SynthesisState(str, enum.Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    CRITIQUING = "critiquing"


class SynthesisAction(str, enum.Enum):
    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    CRITIQUE = "critique"
    ASK = "ask"
    INSIGHT = "insight"

    @property
    def needs_target(self) -> bool:
        return self in (SynthesisAction.ANALYZE, SynthesisAction.CRITIQUE)


_STATE_TO_ACTION: Dict[SynthesisState, SynthesisAction] = {
    SynthesisState.ANALYZING: SynthesisAction.ANALYZE,
    SynthesisState.SYNTHESIZING: SynthesisAction.SYNTHESIZE,
    SynthesisState.CRITIQUING: SynthesisAction.CRITIQUE,
}


# ---------------------------------------------------------------------------
# Errors / result
# ---------------------------------------------------------------------------

class SynthesisValidationError(ValueError):
    """The request is missing something the chosen action requires."""


class SynthesisBusyError(RuntimeError):
    """An AI call for the same user and idea is still in flight."""


@dataclasses.dataclass
class SynthesisResult:
    message: CollaborationMessage
    action: SynthesisAction
    next_state: SynthesisState = SynthesisState.IDLE


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_CONTEXT_PROMPT = """\
You are an expert startup advisor taking part in a team chat about a business idea.

## Idea
Title: {title}
Description: {description}
Target audience: {audience}
Market: {market}

## Conversation so far (oldest first)
{transcript}

Keep answers concise, specific to this idea, and written for the whole team. \
Use short paragraphs or bullet points. Do not invent market data."""

_ACTION_PROMPTS: Dict[SynthesisAction, str] = {
    SynthesisAction.ANALYZE: """\
Analyze the following message from {author} and provide insights: what it \
assumes, what it implies for the idea, and what the team should verify next.

Message:
\"\"\"{target}\"\"\"

{question}""",
    SynthesisAction.CRITIQUE: """\
Critique the following message from {author} and give constructive feedback: \
its weaknesses, risks it overlooks, and how to make it stronger.

Message:
\"\"\"{target}\"\"\"

{question}""",
    SynthesisAction.SYNTHESIZE: """\
Synthesize the key points from this conversation: where the team agrees, \
open disagreements, and the three most useful next steps.

{question}""",
    SynthesisAction.ASK: """\
A team member asks:

{question}""",
    SynthesisAction.INSIGHT: """\
Read the whole conversation and contribute one new insight the team has not \
raised yet: an opportunity, a risk, or a sharper framing of the idea.""",
}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AISynthesisService:
    """Runs AI actions and publishes their output to the idea's room."""

    MAX_CONTENT_CHARS: int = 1000  # per transcript message

    def __init__(self, llm: LLMClient, registry: RoomRegistry) -> None:
        self.llm = llm
        self.registry = registry
        self._in_flight: Set[Tuple[str, int]] = set()

    @staticmethod
    def resolve_action(request: AIChatRequest) -> SynthesisAction:
        """Explicit ``action`` wins; otherwise map the client's state label."""
        if request.action is not None:
            return SynthesisAction(request.action.value)
        if request.synthesize_state is not None:
            state = SynthesisState(request.synthesize_state.value)
            return _STATE_TO_ACTION.get(state, SynthesisAction.ASK)
        return SynthesisAction.ASK

    def is_busy(self, user_id: str, idea_id: int) -> bool:
        return (user_id, idea_id) in self._in_flight

    async def run(
        self,
        db: AsyncSession,
        idea: Idea,
        user_id: str,
        request: AIChatRequest,
        action: Optional[SynthesisAction] = None,
    ) -> SynthesisResult:
        """
        Execute one AI action for *user_id* in *idea*'s room.

        Raises:
            SynthesisValidationError: missing question or target message id.
            MessageNotFound:          target message is not in this room.
            SynthesisBusyError:       another call for (user, idea) is running.
            LLMError:                 the model call failed; nothing persisted.
        """
        action = action or self.resolve_action(request)
        question = request.question.strip()

        if action.needs_target and request.message_id is None:
            raise SynthesisValidationError(f"messageId is required to {action.value} a message.")
        if action is SynthesisAction.ASK and not question:
            raise SynthesisValidationError("question must not be empty.")

        key = (user_id, idea.id)
        if key in self._in_flight:
            raise SynthesisBusyError("An AI response for this conversation is already in progress.")
        self._in_flight.add(key)
        try:
            transcript = await self._load_transcript(db, idea.id, request.conversation_context)
            target = None
            if action.needs_target:
                target = await self._find_target(db, idea.id, request.message_id, transcript)

            context = self._build_context(idea, transcript)
            prompt = self._build_prompt(action, question, target)

            logger.info(
                "Idea %d: running AI %s for user=%s (%d context message(s))",
                idea.id, action.value, user_id, len(transcript),
            )
            text = await self.llm.complete(prompt, context=context)

            message = await message_store.save_message(
                db,
                idea_id=idea.id,
                content=text,
                user_name=settings.AI_ASSISTANT_NAME,
                is_ai=True,
            )
            self.registry.broadcast_message(idea.id, message_store.serialize_message(message))
            return SynthesisResult(message=message, action=action)
        finally:
            self._in_flight.discard(key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_transcript(
        self,
        db: AsyncSession,
        idea_id: int,
        supplied: List[ConversationContextItem],
    ) -> List[ConversationContextItem]:
        limit = settings.AI_CONTEXT_MESSAGE_LIMIT
        if supplied:
            return supplied[-limit:]
        stored = await message_store.list_messages(db, idea_id, limit=limit)
        return [
            ConversationContextItem(
                id=m.id, user_name=m.user_name, content=m.content, created_at=m.created_at
            )
            for m in stored
        ]

    async def _find_target(
        self,
        db: AsyncSession,
        idea_id: int,
        message_id: int,
        transcript: List[ConversationContextItem],
    ) -> ConversationContextItem:
        for item in transcript:
            if item.id == message_id:
                return item
        stored = await message_store.get_message(db, idea_id, message_id)
        return ConversationContextItem(
            id=stored.id, user_name=stored.user_name, content=stored.content,
            created_at=stored.created_at,
        )

    def _build_context(self, idea: Idea, transcript: List[ConversationContextItem]) -> str:
        lines = [
            f"[{item.id or '-'}] {item.user_name or 'Unknown'}: {item.content[:self.MAX_CONTENT_CHARS]}"
            for item in transcript
        ]
        return _CONTEXT_PROMPT.format(
            title=idea.title,
            description=(idea.description or "")[:1500] or "n/a",
            audience=idea.target_audience or "n/a",
            market=idea.market or "n/a",
            transcript="\n".join(lines) or "(no messages yet)",
        )

    def _build_prompt(
        self,
        action: SynthesisAction,
        question: str,
        target: Optional[ConversationContextItem],
    ) -> str:
        return _ACTION_PROMPTS[action].format(
            author=(target.user_name if target else None) or "a teammate",
            target=(target.content[:self.MAX_CONTENT_CHARS] if target else ""),
            question=question,
        ).strip()
