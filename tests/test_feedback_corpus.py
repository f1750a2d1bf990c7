"""HTTP feedback corpus client writes."""

import json
import uuid

import httpx
import pytest

from feedback_assistant.services.feedback_corpus import CorpusError, HttpFeedbackCorpus

PROJECT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")
USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000bb")


def _corpus(payload, seen, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json=payload)

    return HttpFeedbackCorpus(
        "https://feedback.test/api/", api_key="fk-test", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_create_roadmap_item_posts_planned_item():
    seen = []
    corpus = _corpus({"id": "rm-9", "title": "Bulk export"}, seen)

    item = await corpus.create_roadmap_item(
        PROJECT_ID,
        title="Bulk export",
        description="Created from the feedback assistant",
        quarter="Q3 2025",
        priority="high",
        created_by=USER_ID,
    )

    assert item["id"] == "rm-9"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == f"/api/projects/{PROJECT_ID}/roadmap-items"
    assert request.headers["Authorization"] == "Bearer fk-test"
    body = json.loads(request.content)
    assert body["status"] == "planned"
    assert body["target_quarter"] == "Q3 2025"
    assert body["created_by"] == str(USER_ID)


@pytest.mark.asyncio
async def test_create_spec_saves_draft():
    seen = []
    corpus = _corpus({"id": "spec-3", "title": "Spec: Bulk export"}, seen)

    spec = await corpus.create_spec(
        PROJECT_ID, title="Spec: Bulk export", content="# Bulk export", created_by=USER_ID
    )

    assert spec["id"] == "spec-3"
    assert seen[0].url.path == f"/api/projects/{PROJECT_ID}/specs"
    assert json.loads(seen[0].content)["status"] == "draft"


@pytest.mark.asyncio
async def test_write_without_id_is_an_error():
    corpus = _corpus({"ok": True}, [])

    with pytest.raises(CorpusError, match="roadmap item"):
        await corpus.create_roadmap_item(
            PROJECT_ID,
            title="Bulk export",
            description="",
            quarter=None,
            priority="medium",
            created_by=USER_ID,
        )


@pytest.mark.asyncio
async def test_write_error_status_is_reported():
    corpus = _corpus({"error": "boom"}, [], status_code=500)

    with pytest.raises(CorpusError, match="500"):
        await corpus.create_spec(PROJECT_ID, title="t", content="c", created_by=USER_ID)
