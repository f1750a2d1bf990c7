"""Scheduled queries: CRUD, recurrence bookkeeping and the delivery sweep."""

import functools
from datetime import datetime, timezone

import httpx
import pytest
from httpx import AsyncClient

from feedback_assistant.core.config import settings
from feedback_assistant.db.enums import DeliveryStatus
from feedback_assistant.db.models import Message, ScheduledQuery
from feedback_assistant.services import delivery_service, scheduled_query_service
from feedback_assistant.services.recurrence import SchedulingComputationError

# 2024-01-03 is a Wednesday
WEDNESDAY = datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)


def _create(db, project_id, user_id, **overrides):
    params = {
        "project_id": project_id,
        "user_id": user_id,
        "query_text": "Top complaints this week",
        "frequency": "weekly",
        "day_of_week": 1,
        "time_utc": "09:00",
        "recipient_email": "pm@test.com",
        "now": WEDNESDAY,
    }
    params.update(overrides)
    return scheduled_query_service.create_scheduled_query(db, **params)


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    async def fake_send_email(recipient, subject, body, link=None):
        sent.append({"recipient": recipient, "subject": subject, "body": body, "link": link})
        return "email-1"

    monkeypatch.setattr(delivery_service, "send_email", fake_send_email)
    return sent


def test_create_computes_first_run(db, project_id, user_id):
    query = _create(db, project_id, user_id)

    assert query.is_active
    assert query.next_run_at == datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


def test_create_monthly_31_clamps(db, project_id, user_id):
    query = _create(
        db,
        project_id,
        user_id,
        frequency="monthly",
        day_of_week=None,
        day_of_month=31,
        now=datetime(2024, 4, 10, tzinfo=timezone.utc),
    )
    assert query.next_run_at == datetime(2024, 4, 30, 9, 0, tzinfo=timezone.utc)


def test_create_rejects_bad_recurrence(db, project_id, user_id):
    with pytest.raises(SchedulingComputationError):
        _create(db, project_id, user_id, day_of_week=None)
    assert db.query(ScheduledQuery).count() == 0


def test_create_requires_slack_channel_for_slack(db, project_id, user_id):
    with pytest.raises(scheduled_query_service.ScheduledQueryError):
        _create(db, project_id, user_id, delivery_method="slack")


def test_recurrence_change_recomputes_next_run(db, project_id, user_id):
    query = _create(db, project_id, user_id)

    updated = scheduled_query_service.update_scheduled_query(
        db, query, {"frequency": "daily"}, now=WEDNESDAY
    )

    assert updated.day_of_week is None
    assert updated.next_run_at == datetime(2024, 1, 4, 9, 0, tzinfo=timezone.utc)


def test_invalid_update_changes_nothing(db, project_id, user_id):
    query = _create(db, project_id, user_id)

    with pytest.raises(SchedulingComputationError):
        scheduled_query_service.update_scheduled_query(db, query, {"frequency": "monthly"}, now=WEDNESDAY)
    db.rollback()

    db.refresh(query)
    assert query.frequency == "weekly"
    assert query.day_of_week == 1


def test_reactivation_recomputes_from_now(db, project_id, user_id):
    query = _create(db, project_id, user_id)
    scheduled_query_service.set_active(db, query, False, now=WEDNESDAY)
    assert query.next_run_at == datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)

    months_later = datetime(2024, 3, 6, 10, 0, tzinfo=timezone.utc)  # a Wednesday
    scheduled_query_service.set_active(db, query, True, now=months_later)

    assert query.is_active
    assert query.next_run_at == datetime(2024, 3, 11, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_sweep_delivers_and_advances(db, project_id, user_id, query_router, sent_emails):
    query = _create(db, project_id, user_id)
    run_at = datetime(2024, 1, 8, 9, 1, tzinfo=timezone.utc)

    summary = await scheduled_query_service.run_due_queries(db, query_router, now=run_at)

    assert summary["delivered"] == 1
    db.refresh(query)
    assert query.next_run_at == datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
    assert query.last_delivery_status == DeliveryStatus.DELIVERED.value
    assert query.last_run_at == run_at
    assert sent_emails[0]["recipient"] == "pm@test.com"
    assert sent_emails[0]["link"].endswith(f"/ask/{query.last_conversation_id}")

    messages = db.query(Message).filter(Message.conversation_id == query.last_conversation_id).all()
    assert sorted(m.role for m in messages) == ["assistant", "user"]


@pytest.mark.asyncio
async def test_sweep_ignores_queries_not_yet_due(db, project_id, user_id, query_router, sent_emails):
    _create(db, project_id, user_id)

    summary = await scheduled_query_service.run_due_queries(db, query_router, now=WEDNESDAY)

    assert summary["due"] == 0
    assert sent_emails == []


@pytest.mark.asyncio
async def test_sweep_skips_inactive(db, project_id, user_id, query_router, sent_emails):
    query = _create(db, project_id, user_id)
    scheduled_query_service.set_active(db, query, False, now=WEDNESDAY)

    summary = await scheduled_query_service.run_due_queries(
        db, query_router, now=datetime(2024, 1, 9, tzinfo=timezone.utc)
    )

    assert summary["due"] == 0
    assert sent_emails == []


@pytest.mark.asyncio
async def test_delivery_failure_is_recorded_and_still_advances(db, project_id, user_id, query_router):
    # No email provider configured in tests
    query = _create(db, project_id, user_id)

    summary = await scheduled_query_service.run_due_queries(
        db, query_router, now=datetime(2024, 1, 8, 9, 1, tzinfo=timezone.utc)
    )

    assert summary["failed"] == 1
    db.refresh(query)
    assert query.last_delivery_status == DeliveryStatus.FAILED.value
    assert "not configured" in query.last_delivery_error
    assert query.next_run_at == datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_unreadable_slack_reply_is_recorded_as_failure(db, project_id, user_id, query_router, monkeypatch):
    monkeypatch.setattr(settings, "SLACK_BOT_TOKEN", "xoxb-test")
    gateway = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    monkeypatch.setattr(
        delivery_service,
        "send_slack_message",
        functools.partial(delivery_service.send_slack_message, transport=gateway),
    )
    query = _create(
        db,
        project_id,
        user_id,
        frequency="daily",
        day_of_week=None,
        delivery_method="slack",
        slack_channel_id="C0123",
    )

    summary = await scheduled_query_service.run_due_queries(
        db, query_router, now=datetime(2024, 1, 4, 9, 1, tzinfo=timezone.utc)
    )

    assert summary["failed"] == 1
    assert summary["errors"] == 0
    db.refresh(query)
    assert query.last_delivery_status == DeliveryStatus.FAILED.value
    assert "unexpected response" in query.last_delivery_error
    assert query.next_run_at == datetime(2024, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_slack_reply_that_is_not_an_object_fails_delivery(monkeypatch):
    monkeypatch.setattr(settings, "SLACK_BOT_TOKEN", "xoxb-test")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=["ok"]))

    with pytest.raises(delivery_service.DeliveryFailure, match="unexpected response"):
        await delivery_service.send_slack_message("C0123", "Weekly", "Body", transport=transport)


@pytest.mark.asyncio
async def test_email_without_message_id_fails_delivery(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(delivery_service.resend.Emails, "send", lambda params: {"error": "rejected"})

    with pytest.raises(delivery_service.DeliveryFailure, match="unexpected provider response"):
        await delivery_service.send_email("pm@test.com", "Weekly", "Body")


@pytest.mark.asyncio
async def test_routing_failure_is_recorded(db, project_id, user_id, query_router, provider, sent_emails):
    provider.fail()
    query = _create(db, project_id, user_id)

    summary = await scheduled_query_service.run_due_queries(
        db, query_router, now=datetime(2024, 1, 8, 9, 1, tzinfo=timezone.utc)
    )

    assert summary["failed"] == 1
    db.refresh(query)
    assert query.last_delivery_status == DeliveryStatus.FAILED.value
    assert sent_emails == []


def test_claim_is_exclusive(db, project_id, user_id):
    query = _create(db, project_id, user_id)
    run_at = datetime(2024, 1, 8, 9, 1, tzinfo=timezone.utc)
    # What a concurrent sweep read before the first claim landed
    stale = ScheduledQuery(
        id=query.id,
        frequency=query.frequency,
        time_utc=query.time_utc,
        day_of_week=query.day_of_week,
        day_of_month=query.day_of_month,
        next_run_at=query.next_run_at,
    )

    assert scheduled_query_service.claim_scheduled_query(db, query, run_at) is not None
    assert scheduled_query_service.claim_scheduled_query(db, stale, run_at) is None


@pytest.mark.asyncio
async def test_one_failing_query_does_not_stop_the_sweep(
    db, project_id, user_id, query_router, sent_emails, monkeypatch
):
    broken = _create(db, project_id, user_id, query_text="Broken")
    healthy = _create(db, project_id, user_id, query_text="Healthy")
    original = scheduled_query_service.run_scheduled_query

    async def flaky(db_, router, query, now):
        if query.id == broken.id:
            raise RuntimeError("boom")
        return await original(db_, router, query, now)

    monkeypatch.setattr(scheduled_query_service, "run_scheduled_query", flaky)

    summary = await scheduled_query_service.run_due_queries(
        db, query_router, now=datetime(2024, 1, 8, 9, 1, tzinfo=timezone.utc)
    )

    assert summary["errors"] == 1
    assert summary["delivered"] == 1
    db.refresh(healthy)
    assert healthy.last_delivery_status == DeliveryStatus.DELIVERED.value


# =============================================================================
# API
# =============================================================================

@pytest.mark.asyncio
async def test_api_create_defaults_recipient_to_session_email(authed_client: AsyncClient, test_auth):
    response = await authed_client.post(
        "/scheduled-queries",
        json={
            "projectId": str(test_auth.project_id),
            "query_text": "Weekly sentiment",
            "frequency": "weekly",
            "day_of_week": 5,
            "time_utc": "08:30",
        },
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["recipient_email"] == test_auth.email
    assert data["day_of_week"] == 5
    assert datetime.fromisoformat(data["next_run_at"]) > datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_api_rejects_weekly_without_day(authed_client: AsyncClient, test_auth):
    response = await authed_client.post(
        "/scheduled-queries",
        json={"projectId": str(test_auth.project_id), "query_text": "x", "frequency": "weekly"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_api_update_and_delete(authed_client: AsyncClient, test_auth):
    created = (
        await authed_client.post(
            "/scheduled-queries",
            json={
                "projectId": str(test_auth.project_id),
                "query_text": "Daily digest",
                "frequency": "daily",
            },
        )
    ).json()

    response = await authed_client.patch(
        f"/scheduled-queries/{created['id']}",
        json={"frequency": "monthly", "day_of_month": 31},
    )
    assert response.status_code == 200
    assert response.json()["day_of_month"] == 31

    response = await authed_client.patch(
        f"/scheduled-queries/{created['id']}", json={"day_of_week": 3}
    )
    assert response.status_code == 422

    listing = (await authed_client.get("/scheduled-queries")).json()
    assert [q["id"] for q in listing] == [created["id"]]

    response = await authed_client.delete(f"/scheduled-queries/{created['id']}")
    assert response.status_code == 204
    assert (await authed_client.get(f"/scheduled-queries/{created['id']}")).status_code == 404
