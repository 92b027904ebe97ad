from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

TOKEN_VERSION = 1
TOKEN_ROLES = frozenset({"user", "admin"})


@dataclass(frozen=True, slots=True)
class ActorClaims:
    subject_id: int
    role: str
    name: str
    permissions: frozenset[str]
    expires_at: datetime


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    padded = raw + ("=" * (-len(raw) % 4))
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload_segment: str, secret: str) -> bytes:
    return hmac.new(
        secret.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()


def create_access_token(
    *,
    subject_id: int,
    role: str,
    secret: str,
    ttl_minutes: int,
    name: str = "",
    permissions: frozenset[str] | set[str] | None = None,
) -> tuple[str, datetime]:
    """Mint a signed bearer token for a storefront user or admin.

    Accounts live in the upstream auth service; this only encodes the claims
    that the realtime core needs to resolve an actor.
    """
    if role not in TOKEN_ROLES:
        raise ValueError(f"Unsupported token role '{role}'")

    now = datetime.now(UTC)
    expires_at = now + timedelta(minutes=ttl_minutes)
    payload = {
        "v": TOKEN_VERSION,
        "sub": subject_id,
        "role": role,
        "name": name,
        "perms": sorted(permissions or ()),
        "exp": int(expires_at.timestamp()),
        "iat": int(now.timestamp()),
    }

    payload_raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode(
        "utf-8"
    )
    payload_segment = _b64url_encode(payload_raw)
    signature = _sign(payload_segment, secret)
    token = f"{payload_segment}.{_b64url_encode(signature)}"
    return token, expires_at


def decode_access_token(token: str, secret: str) -> ActorClaims:
    try:
        payload_segment, signature_segment = token.split(".", 1)
    except ValueError as exc:
        raise ValueError("Malformed token") from exc

    expected_signature = _sign(payload_segment, secret)
    try:
        actual_signature = _b64url_decode(signature_segment)
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token signature") from exc

    if not hmac.compare_digest(expected_signature, actual_signature):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (ValueError, TypeError, json.JSONDecodeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if not isinstance(payload, dict):
        raise ValueError("Malformed token payload")
    if payload.get("v") != TOKEN_VERSION:
        raise ValueError("Unsupported token version")

    try:
        subject_id = int(payload["sub"])
        role = str(payload["role"])
        name = str(payload.get("name") or "")
        permissions = frozenset(str(item) for item in payload.get("perms") or [])
        expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if role not in TOKEN_ROLES:
        raise ValueError("Unsupported token role")
    if expires_at <= datetime.now(UTC):
        raise ValueError("Token expired")

    return ActorClaims(
        subject_id=subject_id,
        role=role,
        name=name,
        permissions=permissions,
        expires_at=expires_at,
    )
