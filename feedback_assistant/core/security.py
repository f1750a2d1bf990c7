"""Security utilities for JWT session tokens."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from feedback_assistant.core.config import settings


def create_session_token(user_id: UUID, project_id: UUID, email: str) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    Token carries the user identity and the project the session is scoped to.
    """
    payload = {
        "sub": str(user_id),
        "project_id": str(project_id),
        "email": email,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore[misc]
