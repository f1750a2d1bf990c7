from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from feedback_assistant.services.feedback_corpus import FeedbackItem

SECRET_HEADERS = {"X-Internal-Secret": "test-internal-secret"}


@pytest.mark.asyncio
async def test_internal_requires_secret_header(client):
    response = await client.post("/internal/scheduled/scheduled-queries")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_internal_rejects_wrong_secret(client):
    response = await client.post(
        "/internal/scheduled/scheduled-queries",
        headers={"X-Internal-Secret": "wrong"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_internal_not_configured(client, monkeypatch):
    from feedback_assistant.core.config import settings

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")

    response = await client.post("/internal/scheduled/suggestions", headers=SECRET_HEADERS)
    assert response.status_code == 501


@pytest.mark.asyncio
async def test_scheduled_query_sweep_endpoint(client):
    response = await client.post("/internal/scheduled/scheduled-queries", headers=SECRET_HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "due": 0,
        "claimed": 0,
        "skipped": 0,
        "delivered": 0,
        "failed": 0,
        "errors": 0,
    }


@pytest.mark.asyncio
async def test_suggestion_analysis_endpoint(client, corpus, project_id):
    now = datetime.now(timezone.utc)
    corpus.project_ids = [project_id]
    corpus.items = [
        FeedbackItem(id=f"r{i}", title="Broken", sentiment=-0.5, created_at=now - timedelta(days=1))
        for i in range(5)
    ] + [
        FeedbackItem(id=f"p{i}", title="Great", sentiment=0.4, created_at=now - timedelta(days=10))
        for i in range(5)
    ]

    response = await client.post("/internal/scheduled/suggestions", headers=SECRET_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"projects": 1, "created": 1, "failed": []}
