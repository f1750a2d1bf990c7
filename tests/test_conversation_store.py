"""Conversation store: ordering, cancellation and optimistic pin/delete."""

import asyncio
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from feedback_assistant.core.async_utils import OperationCancelled
from feedback_assistant.db.enums import ActionStatus
from feedback_assistant.db.models import Conversation, Message
from feedback_assistant.services import conversation_service
from feedback_assistant.services.conversation_store import (
    ConversationNotFound,
    RecoverableStoreError,
)
from feedback_assistant.services.query_router import RoutingError


def _messages(db, conversation_id):
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.position)
        .all()
    )


@pytest.mark.asyncio
async def test_start_new_conversation_answers_first_question(db, store):
    conversation_id = await store.start_new_conversation("  Why are exports slow?  ")

    conversation = db.get(Conversation, conversation_id)
    assert conversation.title == "Why are exports slow?"
    messages = _messages(db, conversation_id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].content == "Why are exports slow?"
    assert [s["id"] for s in messages[1].sources] == ["fb-1", "fb-2"]
    assert [v.id for v in store.conversations] == [conversation_id]


@pytest.mark.asyncio
async def test_long_question_title_is_capped(db, store):
    conversation_id = await store.start_new_conversation("x" * 300)

    title = db.get(Conversation, conversation_id).title
    assert len(title) == 100
    assert title.endswith("...")


@pytest.mark.asyncio
async def test_blank_question_is_rejected(db, store):
    with pytest.raises(ValueError):
        await store.start_new_conversation("   ")
    assert db.query(Conversation).count() == 0


@pytest.mark.asyncio
async def test_concurrent_sends_are_serialized_in_order(db, store, provider):
    conversation_id = await store.start_new_conversation("First")

    async def slow_chat(*args, **kwargs):
        await asyncio.sleep(0)
        return await original_chat(*args, **kwargs)

    original_chat = provider.chat
    provider.chat = slow_chat

    await asyncio.gather(
        store.send_message(conversation_id, "Second"),
        store.send_message(conversation_id, "Third"),
    )

    messages = _messages(db, conversation_id)
    assert [m.position for m in messages] == list(range(6))
    assert [m.content for m in messages if m.role == "user"] == ["First", "Second", "Third"]
    assert [m.role for m in messages] == ["user", "assistant"] * 3


@pytest.mark.asyncio
async def test_follow_up_includes_history(db, store, provider):
    conversation_id = await store.start_new_conversation("Why are exports slow?")
    provider.calls.clear()

    await store.send_message(conversation_id, "And imports?")

    classify_prompt = provider.calls[0][1].content
    assert "User: Why are exports slow?" in classify_prompt
    assert "Assistant: Users mostly mention" in classify_prompt


@pytest.mark.asyncio
async def test_actionable_reply_stores_pending_intent(db, store, provider):
    provider.propose("create_ticket", {"title": "Slow exports"}, confidence=0.6)

    conversation_id = await store.start_new_conversation("File a ticket for slow exports")

    reply = _messages(db, conversation_id)[-1]
    assert reply.action_type == "create_ticket"
    assert reply.action_status == ActionStatus.PENDING.value
    view = conversation_service.to_message_read(reply)
    assert view.action.confirmation.low_confidence_warning is not None
    assert view.action.confirmation.confirm_enabled


@pytest.mark.asyncio
async def test_routing_failure_keeps_conversation_with_error_reply(db, store, provider):
    provider.fail()

    with pytest.raises(RoutingError) as exc_info:
        await store.start_new_conversation("Why are exports slow?")

    conversation_id = exc_info.value.conversation_id
    assert conversation_id is not None
    messages = _messages(db, conversation_id)
    assert messages[0].content == "Why are exports slow?"
    assert messages[1].message_metadata == {"error": True}
    assert messages[1].content.startswith("I couldn't answer that")


@pytest.mark.asyncio
async def test_error_replies_are_left_out_of_history(db, store, provider):
    conversation_id = await store.start_new_conversation("Why are exports slow?")
    provider.fail()
    with pytest.raises(RoutingError):
        await store.send_message(conversation_id, "And imports?")

    history = conversation_service.get_history(db, conversation_id, limit=10)

    assert all("couldn't answer" not in m.content for m in history)
    assert len(history) == 3


@pytest.mark.asyncio
async def test_cancel_keeps_question_without_reply(db, store, provider, registry):
    conversation_id = await store.start_new_conversation("First")
    release = asyncio.Event()

    async def hanging_chat(*args, **kwargs):
        await release.wait()

    provider.chat = hanging_chat

    task = asyncio.create_task(store.send_message(conversation_id, "Second"))
    while not registry.is_in_flight(conversation_id):
        await asyncio.sleep(0)

    assert store.cancel(conversation_id) is True
    with pytest.raises(OperationCancelled):
        await task

    messages = _messages(db, conversation_id)
    assert [m.content for m in messages[-1:]] == ["Second"]
    assert messages[-1].role == "user"
    assert not registry.is_in_flight(conversation_id)
    assert store.cancel(conversation_id) is False


@pytest.mark.asyncio
async def test_send_to_unknown_conversation(store):
    with pytest.raises(ConversationNotFound):
        await store.send_message(uuid.uuid4(), "Hello?")


@pytest.mark.asyncio
async def test_other_users_conversations_are_invisible(db, store, project_id, query_router, registry):
    from feedback_assistant.services.conversation_store import ConversationStore

    conversation_id = await store.start_new_conversation("Mine")
    other = ConversationStore(db, project_id, uuid.uuid4(), query_router, registry)

    assert other.load_conversations() == []
    with pytest.raises(ConversationNotFound):
        other.get_conversation(conversation_id)


@pytest.mark.asyncio
async def test_listing_order_pinned_then_recent(db, store):
    first = await store.start_new_conversation("First")
    second = await store.start_new_conversation("Second")
    third = await store.start_new_conversation("Third")

    store.pin_conversation(first, True)

    assert [v.id for v in store.load_conversations()] == [first, third, second]
    assert [v.id for v in store.conversations] == [first, third, second]


@pytest.mark.asyncio
async def test_pin_failure_rolls_back_local_view(db, store, monkeypatch):
    conversation_id = await store.start_new_conversation("First")

    def broken_set_pinned(*args, **kwargs):
        raise OperationalError("UPDATE ask_conversations", {}, Exception("database is locked"))

    monkeypatch.setattr(conversation_service, "set_pinned", broken_set_pinned)

    with pytest.raises(RecoverableStoreError) as exc_info:
        store.pin_conversation(conversation_id, True)

    assert exc_info.value.conversation_id == conversation_id
    assert store.conversations[0].is_pinned is False
    assert db.get(Conversation, conversation_id).is_pinned is False
    assert store.errors[-1].operation == "pin"


@pytest.mark.asyncio
async def test_delete_failure_restores_local_view(db, store, monkeypatch):
    conversation_id = await store.start_new_conversation("First")

    def broken_delete(*args, **kwargs):
        raise OperationalError("DELETE FROM ask_conversations", {}, Exception("database is locked"))

    monkeypatch.setattr(conversation_service, "delete_conversation", broken_delete)

    with pytest.raises(RecoverableStoreError):
        store.delete_conversation(conversation_id)

    assert [v.id for v in store.conversations] == [conversation_id]
    assert store.errors[-1].operation == "delete"


@pytest.mark.asyncio
async def test_delete_removes_messages(db, store):
    conversation_id = await store.start_new_conversation("First")

    store.delete_conversation(conversation_id)

    assert store.conversations == []
    assert db.query(Message).count() == 0
