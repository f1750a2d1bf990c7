"""Structured logging helpers."""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    project_id: str | None = None,
    conversation_id: str | None = None,
    job_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict for `extra=`. Question text is never logged."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if project_id:
        context["project_id"] = str(project_id)
    if conversation_id:
        context["conversation_id"] = str(conversation_id)
    if job_id:
        context["job_id"] = str(job_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
