"""Suggestion listing and status endpoints."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from feedback_assistant.db.enums import SuggestionStatus
from feedback_assistant.db.models import ProactiveSuggestion


def _suggestion(db, project_id, priority="medium", suggestion_type="theme_spike", **overrides):
    now = datetime.now(timezone.utc)
    values = {
        "project_id": project_id,
        "suggestion_type": suggestion_type,
        "priority": priority,
        "title": f"{priority} {suggestion_type}",
        "description": "Something changed",
        "query_suggestion": "What changed?",
        "context_data": {"count": 3},
        "expires_at": now + timedelta(days=7),
        "created_at": now,
    }
    values.update(overrides)
    suggestion = ProactiveSuggestion(**values)
    db.add(suggestion)
    db.commit()
    db.refresh(suggestion)
    return suggestion


@pytest.mark.asyncio
async def test_list_orders_by_priority_and_hides_expired(authed_client: AsyncClient, db, test_auth):
    project_id = test_auth.project_id
    low = _suggestion(db, project_id, priority="low")
    critical = _suggestion(db, project_id, priority="critical", suggestion_type="sentiment_drop")
    high = _suggestion(db, project_id, priority="high", suggestion_type="churn_risk")
    _suggestion(db, project_id, priority="critical", expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
    _suggestion(db, uuid.uuid4(), priority="critical")

    response = await authed_client.get("/suggestions")

    assert response.status_code == 200
    data = response.json()
    assert [s["id"] for s in data] == [str(critical.id), str(high.id), str(low.id)]
    assert data[0]["icon"] == "trending-down"


@pytest.mark.asyncio
async def test_empty_list_is_not_an_error(authed_client: AsyncClient):
    response = await authed_client.get("/suggestions")
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_dismiss_is_idempotent(authed_client: AsyncClient, db, test_auth):
    suggestion = _suggestion(db, test_auth.project_id)

    first = await authed_client.post(f"/suggestions/{suggestion.id}/dismiss")
    second = await authed_client.post(f"/suggestions/{suggestion.id}/dismiss")

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["status"] == "dismissed"
    assert second.json()["dismissed_at"] == first.json()["dismissed_at"]
    assert (await authed_client.get("/suggestions")).json() == []


@pytest.mark.asyncio
async def test_acted_upon_after_dismiss_conflicts(authed_client: AsyncClient, db, test_auth):
    suggestion = _suggestion(db, test_auth.project_id)
    await authed_client.post(f"/suggestions/{suggestion.id}/dismiss")

    response = await authed_client.patch(f"/suggestions/{suggestion.id}", json={"status": "acted_upon"})

    assert response.status_code == 409
    db.refresh(suggestion)
    assert suggestion.status == SuggestionStatus.DISMISSED.value


@pytest.mark.asyncio
async def test_mark_acted_upon(authed_client: AsyncClient, db, test_auth):
    suggestion = _suggestion(db, test_auth.project_id)

    response = await authed_client.patch(f"/suggestions/{suggestion.id}", json={"status": "acted_upon"})

    assert response.status_code == 200
    assert response.json()["acted_upon_at"] is not None

    listing = (await authed_client.get("/suggestions", params={"status": "acted_upon"})).json()
    assert [s["id"] for s in listing] == [str(suggestion.id)]


@pytest.mark.asyncio
async def test_only_acted_upon_is_patchable(authed_client: AsyncClient, db, test_auth):
    suggestion = _suggestion(db, test_auth.project_id)

    response = await authed_client.patch(f"/suggestions/{suggestion.id}", json={"status": "active"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_other_projects_suggestion_is_not_found(authed_client: AsyncClient, db):
    suggestion = _suggestion(db, uuid.uuid4())

    response = await authed_client.post(f"/suggestions/{suggestion.id}/dismiss")

    assert response.status_code == 404
