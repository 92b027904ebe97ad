from typing import Any, NoReturn

from fastapi import HTTPException, status

from app.domain.exceptions import (
    InvalidAuctionTransition,
    InvalidChatModeTransition,
    InvalidConversationTransition,
)
from app.services.errors import (
    AuctionAlreadySettledError,
    AuctionNotActiveError,
    BidTooLowError,
    ConversationReopenConflictError,
    ConversationUnavailableError,
    DuplicateBidError,
    InvariantViolationError,
    RateLimitedError,
)

SERVICE_ERRORS = (LookupError, PermissionError, ValueError, RuntimeError)

_CONFLICTS = (
    BidTooLowError,
    DuplicateBidError,
    AuctionNotActiveError,
    AuctionAlreadySettledError,
    ConversationReopenConflictError,
    InvalidAuctionTransition,
    InvalidChatModeTransition,
    InvalidConversationTransition,
)


class ApiError(HTTPException):
    """HTTPException that also carries a ``data`` object for the envelope."""

    def __init__(
        self,
        status_code: int,
        message: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.data = data


def to_api_error(exc: Exception) -> ApiError | None:
    """Envelope status, message and data for a service error; ``None`` if unmapped."""
    if isinstance(exc, BidTooLowError):
        return ApiError(
            status.HTTP_409_CONFLICT,
            str(exc),
            data={"reason": "bid_too_low", "minimum_bid": str(exc.minimum_bid)},
        )
    if isinstance(exc, _CONFLICTS):
        return ApiError(status.HTTP_409_CONFLICT, str(exc), data={"reason": _reason(exc)})
    if isinstance(exc, LookupError):
        return ApiError(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, PermissionError):
        return ApiError(status.HTTP_403_FORBIDDEN, str(exc))
    if isinstance(exc, RateLimitedError):
        return ApiError(
            status.HTTP_429_TOO_MANY_REQUESTS,
            str(exc),
            data={"retry_after_seconds": exc.retry_after_seconds},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    if isinstance(exc, ConversationUnavailableError):
        return ApiError(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    if isinstance(exc, InvariantViolationError):
        return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
    if isinstance(exc, ValueError):
        return ApiError(status.HTTP_400_BAD_REQUEST, str(exc))
    return None


def raise_for_service_error(exc: Exception) -> NoReturn:
    api_error = to_api_error(exc)
    if api_error is None:
        raise exc
    raise api_error from exc


def _reason(exc: Exception) -> str:
    match exc:
        case DuplicateBidError():
            return "duplicate_bid"
        case AuctionNotActiveError():
            return "auction_not_active"
        case AuctionAlreadySettledError():
            return "already_settled"
        case _:
            return "invalid_transition"
