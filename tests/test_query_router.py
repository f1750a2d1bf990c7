"""Question classification, retrieval and confirmation prompts."""

import pytest

from feedback_assistant.schemas.action import ActionIntent
from feedback_assistant.services.feedback_corpus import FeedbackHit
from feedback_assistant.services.query_router import (
    RoutingError,
    build_confirmation,
    make_preview,
    rank_hits,
)


@pytest.mark.asyncio
async def test_informational_question_is_answered_with_ranked_sources(query_router, project_id):
    reply = await query_router.route(project_id, "Why do people hate exports?", [])

    assert not reply.is_actionable
    assert reply.content.startswith("Users mostly mention")
    assert reply.query_type == "feedback"
    assert [s["id"] for s in reply.sources] == ["fb-1", "fb-2"]
    assert reply.sources[1]["preview"] == "Exporting large projects times out"
    assert "similarity_percent" not in reply.sources[0]
    assert reply.metadata["search_results_count"] == 2


@pytest.mark.asyncio
async def test_actionable_question_returns_intent_without_answering(query_router, provider, project_id):
    provider.propose("escalate_issue", {"feedback_id": "fb-1"}, confidence=0.95)

    reply = await query_router.route(project_id, "Escalate the export bug", [])

    assert reply.is_actionable
    assert reply.intent.action_type == "escalate_issue"
    assert reply.intent.parameters == {"feedback_id": "fb-1"}
    assert reply.query_type == "actions"
    # Classification only; no answer generation call
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_unknown_action_is_answered_instead(query_router, provider, project_id):
    provider.propose("delete_workspace", {}, confidence=0.99)

    reply = await query_router.route(project_id, "Delete everything", [])

    assert not reply.is_actionable
    assert reply.content.startswith("Users mostly mention")


@pytest.mark.asyncio
async def test_corpus_failure_yields_answer_without_sources(query_router, corpus, project_id):
    corpus.search_error = True

    reply = await query_router.route(project_id, "What do users say about exports?", [])

    assert reply.sources == []
    assert reply.metadata["search_results_count"] == 0


@pytest.mark.asyncio
async def test_provider_failure_raises_routing_error(query_router, provider, project_id):
    provider.fail()

    with pytest.raises(RoutingError):
        await query_router.route(project_id, "Anything", [])


@pytest.mark.asyncio
async def test_unparseable_classification_raises_routing_error(query_router, provider, project_id):
    provider.classification = "I think this is about exports"

    with pytest.raises(RoutingError):
        await query_router.route(project_id, "Anything", [])


@pytest.mark.asyncio
async def test_empty_answer_raises_routing_error(query_router, provider, project_id):
    provider.answer = "   "

    with pytest.raises(RoutingError):
        await query_router.route(project_id, "Anything", [])


@pytest.mark.parametrize(
    "confidence,warned",
    [(0.5, True), (0.79, True), (0.8, False), (0.95, False)],
)
def test_low_confidence_warning_below_threshold(confidence, warned):
    intent = ActionIntent(action_type="create_ticket", parameters={"title": "x"}, confidence=confidence)

    prompt = build_confirmation(intent)

    assert (prompt.low_confidence_warning is not None) is warned
    assert prompt.confirm_enabled
    assert prompt.action_label == "Create ticket"


def test_confirmation_disabled_once_not_pending():
    prompt = build_confirmation(
        {"action_type": "send_digest", "parameters": {}, "confidence": 0.9}, "executing"
    )
    assert not prompt.confirm_enabled
    assert prompt.confirmation_message.startswith("I can send digest")


def test_make_preview_strips_markup_and_truncates():
    assert make_preview("<p>Slow &amp; <b>buggy</b></p>") == "Slow & buggy"
    long_text = "word " * 100
    preview = make_preview(long_text)
    assert preview.endswith("...")
    assert len(preview) == 153
    assert make_preview("") is None


def test_rank_hits_puts_unscored_last():
    hits = [
        FeedbackHit(id="a", title="", content="", similarity=None),
        FeedbackHit(id="b", title="", content="", similarity=0.4),
        FeedbackHit(id="c", title="", content="", similarity=0.9),
    ]
    assert [h.id for h in rank_hits(hits)] == ["c", "b", "a"]
