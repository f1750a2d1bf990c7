from datetime import datetime, timedelta, timezone

import pytest

from feedback_assistant.db.enums import JobStatus, JobType
from feedback_assistant.db.models import Job
from feedback_assistant.jobs import registry
from feedback_assistant.services import job_service


def test_job_registry_resolves_known_handlers():
    for job_type in JobType:
        assert callable(registry.resolve_job_handler(job_type.value))


def test_job_registry_unknown_raises():
    with pytest.raises(ValueError):
        registry.resolve_job_handler("nope")


def test_periodic_jobs_enqueued_once_per_window(db):
    now = datetime(2024, 1, 8, 9, 0, 30, tzinfo=timezone.utc)

    first = job_service.enqueue_periodic_jobs(db, now=now)
    again = job_service.enqueue_periodic_jobs(db, now=now + timedelta(seconds=20))

    assert sorted(job.job_type for job in first) == sorted(t.value for t in JobType)
    assert again == []
    assert db.query(Job).count() == 2

    later = job_service.enqueue_periodic_jobs(db, now=now + timedelta(minutes=5))
    assert [job.job_type for job in later] == [JobType.SCHEDULED_QUERY_SWEEP.value]


@pytest.mark.asyncio
async def test_run_once_processes_sweeps(db, monkeypatch):
    from feedback_assistant import worker

    seen = []

    async def stub_handler(_db, job):
        seen.append(job.job_type)

    for job_type in JobType:
        monkeypatch.setitem(registry.JOB_HANDLERS, job_type.value, stub_handler)

    processed = await worker.run_once(db)

    assert processed == 2
    assert sorted(seen) == sorted(t.value for t in JobType)
    assert {job.status for job in db.query(Job).all()} == {JobStatus.COMPLETED.value}


@pytest.mark.asyncio
async def test_failed_job_is_retried_later(db, monkeypatch):
    from feedback_assistant import worker

    async def broken_handler(_db, job):
        raise RuntimeError("Feedback API is unreachable")

    job = job_service.schedule_job(db, JobType.SUGGESTION_ANALYSIS, payload={})
    monkeypatch.setitem(registry.JOB_HANDLERS, JobType.SUGGESTION_ANALYSIS.value, broken_handler)
    monkeypatch.setattr(job_service, "enqueue_periodic_jobs", lambda _db: [])

    await worker.run_once(db)

    db.refresh(job)
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert job.last_error == "Feedback API is unreachable"


@pytest.mark.asyncio
async def test_suggestion_job_analyzes_payload_project(db, corpus, monkeypatch):
    from feedback_assistant.jobs.handlers import suggestions
    from feedback_assistant.services import feedback_corpus

    calls = {}

    async def fake_analyze(_db, _corpus, project_ids, now=None):
        calls["project_ids"] = project_ids
        return {"projects": len(project_ids), "created": 0, "failed": []}

    monkeypatch.setattr(feedback_corpus, "get_feedback_corpus", lambda: corpus)
    monkeypatch.setattr("feedback_assistant.services.suggestion_engine.analyze_all_projects", fake_analyze)

    job = job_service.schedule_job(
        db,
        JobType.SUGGESTION_ANALYSIS,
        payload={"project_id": "5b0c6b9e-8f7e-4a43-9c3b-0d9c2f1f6a11"},
    )
    await suggestions.process_suggestion_analysis(db, job)

    assert [str(p) for p in calls["project_ids"]] == ["5b0c6b9e-8f7e-4a43-9c3b-0d9c2f1f6a11"]
