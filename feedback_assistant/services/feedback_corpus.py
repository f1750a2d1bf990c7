"""Client for the external feedback corpus.

The corpus (feedback items, themes, sentiment scores, competitor events and
vector search over them) lives in the main product API, along with the
roadmap and product specs. The assistant only reads from it, except for
priority escalation and the roadmap items and draft specs that confirmed
actions create.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import httpx

from feedback_assistant.core.config import settings

logger = logging.getLogger(__name__)


class CorpusError(Exception):
    """The feedback corpus API failed or returned an unusable payload."""

    pass


@dataclass
class FeedbackHit:
    """A semantic search hit."""

    id: str
    title: str
    content: str
    similarity: float | None = None
    source_type: str = "feedback"
    status: str | None = None
    category: str | None = None
    vote_count: int | None = None


@dataclass
class FeedbackItem:
    """A feedback item with the analysis fields the suggestion detectors read."""

    id: str
    title: str
    content: str = ""
    sentiment: float | None = None
    themes: list[str] = field(default_factory=list)
    upvotes: int = 0
    author_email: str | None = None
    created_at: datetime | None = None


@dataclass
class CompetitorEvent:
    id: str
    competitor_name: str
    title: str
    summary: str = ""
    event_type: str | None = None
    impact: str | None = None  # critical | high | medium | low
    occurred_at: datetime | None = None


class FeedbackCorpus(ABC):
    """Reads over the feedback corpus, plus the writes confirmed actions make."""

    @abstractmethod
    async def search(
        self, project_id: UUID, query: str, *, limit: int = 10, match_threshold: float = 0.7
    ) -> list[FeedbackHit]:
        pass

    @abstractmethod
    async def list_feedback(
        self, project_id: UUID, *, since: datetime, until: datetime | None = None
    ) -> list[FeedbackItem]:
        pass

    @abstractmethod
    async def list_competitor_events(
        self, project_id: UUID, *, since: datetime
    ) -> list[CompetitorEvent]:
        pass

    @abstractmethod
    async def update_priority(
        self, project_id: UUID, feedback_id: str, priority: str, reason: str | None = None
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def create_roadmap_item(
        self,
        project_id: UUID,
        *,
        title: str,
        description: str,
        quarter: str | None,
        priority: str,
        created_by: UUID,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def create_spec(
        self, project_id: UUID, *, title: str, content: str, created_by: UUID
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def list_project_ids(self) -> list[UUID]:
        pass


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class HttpFeedbackCorpus(FeedbackCorpus):
    """FeedbackCorpus backed by the product API over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", headers=headers, **kwargs
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Feedback API {method} {path} failed: {e.response.status_code}")
            raise CorpusError(f"Feedback API returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Feedback API {method} {path} request error: {type(e).__name__}")
            raise CorpusError("Feedback API is unreachable") from e
        except ValueError as e:
            raise CorpusError("Feedback API returned invalid JSON") from e

    async def search(
        self, project_id: UUID, query: str, *, limit: int = 10, match_threshold: float = 0.7
    ) -> list[FeedbackHit]:
        data = await self._request(
            "POST",
            f"/projects/{project_id}/search",
            json={"query": query, "limit": limit, "match_threshold": match_threshold},
        )
        hits = []
        for row in (data or {}).get("results", []):
            hits.append(
                FeedbackHit(
                    id=str(row.get("id")),
                    title=row.get("title") or "",
                    content=row.get("content") or row.get("description") or "",
                    similarity=_optional_float(row.get("similarity")),
                    source_type=row.get("type") or "feedback",
                    status=row.get("status"),
                    category=row.get("category"),
                    vote_count=row.get("vote_count"),
                )
            )
        return hits

    async def list_feedback(
        self, project_id: UUID, *, since: datetime, until: datetime | None = None
    ) -> list[FeedbackItem]:
        params = {"since": since.isoformat()}
        if until is not None:
            params["until"] = until.isoformat()
        data = await self._request("GET", f"/projects/{project_id}/feedback", params=params)
        items = []
        for row in (data or {}).get("items", []):
            items.append(
                FeedbackItem(
                    id=str(row.get("id")),
                    title=row.get("title") or "",
                    content=row.get("content") or "",
                    sentiment=_optional_float(row.get("sentiment_score")),
                    themes=[str(t) for t in row.get("themes") or []],
                    upvotes=int(row.get("upvotes") or 0),
                    author_email=row.get("author_email"),
                    created_at=_parse_datetime(row.get("created_at")),
                )
            )
        return items

    async def list_competitor_events(
        self, project_id: UUID, *, since: datetime
    ) -> list[CompetitorEvent]:
        data = await self._request(
            "GET",
            f"/projects/{project_id}/competitor-events",
            params={"since": since.isoformat()},
        )
        events = []
        for row in (data or {}).get("events", []):
            events.append(
                CompetitorEvent(
                    id=str(row.get("id")),
                    competitor_name=row.get("competitor_name") or "A competitor",
                    title=row.get("title") or "",
                    summary=row.get("summary") or "",
                    event_type=row.get("event_type"),
                    impact=row.get("impact"),
                    occurred_at=_parse_datetime(row.get("occurred_at")),
                )
            )
        return events

    async def update_priority(
        self, project_id: UUID, feedback_id: str, priority: str, reason: str | None = None
    ) -> dict[str, Any]:
        data = await self._request(
            "PATCH",
            f"/projects/{project_id}/feedback/{feedback_id}",
            json={"priority": priority, "escalation_reason": reason},
        )
        return data if isinstance(data, dict) else {}

    async def create_roadmap_item(
        self,
        project_id: UUID,
        *,
        title: str,
        description: str,
        quarter: str | None,
        priority: str,
        created_by: UUID,
    ) -> dict[str, Any]:
        data = await self._request(
            "POST",
            f"/projects/{project_id}/roadmap-items",
            json={
                "title": title,
                "description": description,
                "target_quarter": quarter,
                "priority": priority,
                "status": "planned",
                "created_by": str(created_by),
            },
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise CorpusError("Feedback API did not return the roadmap item")
        return data

    async def create_spec(
        self, project_id: UUID, *, title: str, content: str, created_by: UUID
    ) -> dict[str, Any]:
        data = await self._request(
            "POST",
            f"/projects/{project_id}/specs",
            json={
                "title": title,
                "content": content,
                "status": "draft",
                "created_by": str(created_by),
            },
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise CorpusError("Feedback API did not return the spec")
        return data

    async def list_project_ids(self) -> list[UUID]:
        data = await self._request("GET", "/projects")
        ids = []
        for row in (data or {}).get("projects", []):
            try:
                ids.append(UUID(str(row.get("id"))))
            except ValueError:
                logger.warning("Skipping project with invalid id from feedback API")
        return ids


def get_feedback_corpus() -> FeedbackCorpus:
    """Build the corpus client from settings."""
    return HttpFeedbackCorpus(settings.FEEDBACK_API_URL, settings.FEEDBACK_API_KEY)
