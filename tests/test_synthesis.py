"""Tests for AI analyze / synthesize / critique round trips."""
import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import Idea
from app.models.schemas import AIChatRequest
from app.services import message_store
from app.services.llm_client import LLMError
from app.services.message_store import MessageNotFound
from app.services.room_registry import RoomRegistry, RoomUser
from app.services.synthesis import (
    AISynthesisService,
    SynthesisAction,
    SynthesisBusyError,
    SynthesisState,
    SynthesisValidationError,
)
from tests.conftest import FakeConnection, FakeLLM


def _context(*items):
    return [
        {"id": mid, "userName": name, "content": content, "createdAt": "2026-01-01T10:00:00Z"}
        for mid, name, content in items
    ]


@pytest.mark.asyncio
async def test_analyze_persists_and_broadcasts_one_ai_message(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    member = FakeConnection()
    registry.join_room(idea.id, member, RoomUser("test-user-2", "Bob"))
    service = AISynthesisService(fake_llm, registry)

    request = AIChatRequest.model_validate({
        "messageId": 11,
        "conversationContext": _context(
            (10, "Ada", "We should target busy parents."),
            (11, "Bob", "Subscriptions at $9 a month could work."),
        ),
        "synthesizeState": "analyzing",
    })
    result = await service.run(db_session, idea, "test-user-1", request)
    await registry.flush()

    assert result.action is SynthesisAction.ANALYZE
    assert result.next_state is SynthesisState.IDLE
    assert result.message.is_ai is True
    assert result.message.user_id is None
    assert result.message.user_name == "AI Assistant"
    assert result.message.content == fake_llm.reply

    assert len(fake_llm.calls) == 1
    assert "Subscriptions at $9 a month could work." in fake_llm.calls[0]["prompt"]
    assert "AI meal planner" in fake_llm.calls[0]["context"]

    stored = await message_store.list_messages(db_session, idea.id)
    assert [m.id for m in stored] == [result.message.id]

    events = member.events("new_message")
    assert len(events) == 1
    assert events[0]["data"]["id"] == result.message.id
    assert events[0]["data"]["isAi"] is True


@pytest.mark.asyncio
async def test_state_label_selects_action_and_explicit_action_wins():
    resolve = AISynthesisService.resolve_action
    assert resolve(AIChatRequest(synthesize_state="critiquing")) is SynthesisAction.CRITIQUE
    assert resolve(AIChatRequest(synthesize_state="synthesizing")) is SynthesisAction.SYNTHESIZE
    assert resolve(AIChatRequest(synthesize_state="idle")) is SynthesisAction.ASK
    assert resolve(AIChatRequest()) is SynthesisAction.ASK
    assert resolve(
        AIChatRequest(synthesize_state="critiquing", action="insight")
    ) is SynthesisAction.INSIGHT


@pytest.mark.asyncio
async def test_analyze_without_message_id_is_rejected(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    service = AISynthesisService(fake_llm, registry)
    with pytest.raises(SynthesisValidationError):
        await service.run(db_session, idea, "test-user-1", AIChatRequest(synthesize_state="analyzing"))
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_blank_question_is_rejected_for_ask(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    service = AISynthesisService(fake_llm, registry)
    with pytest.raises(SynthesisValidationError):
        await service.run(db_session, idea, "test-user-1", AIChatRequest(question="   "))


@pytest.mark.asyncio
async def test_target_falls_back_to_stored_message(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    stored = await message_store.save_message(
        db_session, idea.id, "Partner with grocery chains.", user_name="Ada", user_id="test-user-1"
    )
    service = AISynthesisService(fake_llm, registry)

    await service.run(
        db_session, idea, "test-user-1",
        AIChatRequest(message_id=stored.id, action="critique"),
    )

    assert "Partner with grocery chains." in fake_llm.calls[0]["prompt"]
    # Empty supplied context falls back to the stored transcript
    assert "Ada: Partner with grocery chains." in fake_llm.calls[0]["context"]


@pytest.mark.asyncio
async def test_unknown_target_message_raises(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    service = AISynthesisService(fake_llm, registry)
    with pytest.raises(MessageNotFound):
        await service.run(
            db_session, idea, "test-user-1", AIChatRequest(message_id=12345, action="analyze")
        )
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_llm_failure_persists_and_broadcasts_nothing(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    member = FakeConnection()
    registry.join_room(idea.id, member, RoomUser("test-user-2"))
    fake_llm.error = LLMError("Language model request timed out")
    service = AISynthesisService(fake_llm, registry)

    with pytest.raises(LLMError):
        await service.run(
            db_session, idea, "test-user-1", AIChatRequest(synthesize_state="synthesizing")
        )
    await registry.flush()

    assert await message_store.list_messages(db_session, idea.id) == []
    assert member.events("new_message") == []
    assert service.is_busy("test-user-1", idea.id) is False


@pytest.mark.asyncio
async def test_second_call_while_first_in_flight_is_rejected(
    db_session: AsyncSession, idea: Idea, registry: RoomRegistry, fake_llm: FakeLLM
):
    fake_llm.gate = asyncio.Event()
    service = AISynthesisService(fake_llm, registry)
    request = AIChatRequest(question="What should we build first?", conversation_context=_context(
        (1, "Ada", "Hello team"),
    ))

    first = asyncio.create_task(service.run(db_session, idea, "test-user-1", request))
    while not fake_llm.calls:
        await asyncio.sleep(0)

    assert service.is_busy("test-user-1", idea.id) is True
    with pytest.raises(SynthesisBusyError):
        await service.run(db_session, idea, "test-user-1", request)

    fake_llm.gate.set()
    result = await first
    assert result.action is SynthesisAction.ASK
    assert service.is_busy("test-user-1", idea.id) is False
    assert len(fake_llm.calls) == 1
