"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # user_id
    project_id: UUID
    email: str


class UserSession(BaseModel):
    """
    Session context for authenticated requests.

    Every assistant route is scoped to the session's project.
    """
    user_id: UUID
    project_id: UUID
    email: str
