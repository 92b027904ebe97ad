from uuid import uuid4

import structlog

from app.core.config import Settings
from app.core.security import decode_access_token
from app.domain.actors import Actor, AdminActor, UserActor, VisitorActor

logger = structlog.get_logger(__name__)

MAX_SESSION_ID_LENGTH = 120


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, credentials = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def normalize_session_id(session_id: str | None) -> str:
    if session_id:
        cleaned = session_id.strip()
        if cleaned and len(cleaned) <= MAX_SESSION_ID_LENGTH:
            return cleaned
    return uuid4().hex


def resolve_actor(
    token: str | None,
    session_id: str | None,
    settings: Settings,
) -> Actor:
    """Map transport credentials onto an actor.

    Never raises: a missing, expired or forged token degrades to an anonymous
    visitor keyed by the supplied session id (or a fresh one).
    """
    if token:
        try:
            claims = decode_access_token(token, settings.auth_token_secret)
        except ValueError as exc:
            logger.warning("actor_token_rejected", reason=str(exc))
        else:
            if claims.role == "admin":
                return AdminActor(
                    id=claims.subject_id,
                    name=claims.name,
                    permissions=claims.permissions,
                )
            return UserActor(id=claims.subject_id, name=claims.name)

    return VisitorActor(session_id=normalize_session_id(session_id))
