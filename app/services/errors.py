from decimal import Decimal

from app.domain.enums import AuctionStatus


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: int) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class ConversationAccessDeniedError(PermissionError):
    def __init__(self, conversation_id: int) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' does not belong to the current visitor"
        )
        self.conversation_id = conversation_id


class ConversationUnavailableError(RuntimeError):
    """The open-conversation slot kept changing under concurrent writers."""

    def __init__(self, visitor_key: str) -> None:
        super().__init__("Could not resolve an open conversation, please retry")
        self.visitor_key = visitor_key


class ConversationReopenConflictError(ValueError):
    def __init__(self, conversation_id: int) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' cannot be reopened while the visitor has another open conversation"
        )
        self.conversation_id = conversation_id


class AuctionNotFoundError(LookupError):
    def __init__(self, auction_id: int) -> None:
        super().__init__(f"Auction '{auction_id}' not found")
        self.auction_id = auction_id


class AuctionNotActiveError(ValueError):
    def __init__(self, auction_id: int, status: AuctionStatus) -> None:
        super().__init__(
            f"Auction '{auction_id}' is not accepting bids (status '{status.value}')"
        )
        self.auction_id = auction_id
        self.status = status


class AuctionAlreadySettledError(ValueError):
    def __init__(self, auction_id: int) -> None:
        super().__init__(f"Auction '{auction_id}' has already been settled")
        self.auction_id = auction_id


class BidTooLowError(ValueError):
    def __init__(self, auction_id: int, minimum_bid: Decimal) -> None:
        super().__init__(f"Bid must be at least {minimum_bid}")
        self.auction_id = auction_id
        self.minimum_bid = minimum_bid


class DuplicateBidError(ValueError):
    def __init__(self, auction_id: int, best_bid: Decimal) -> None:
        super().__init__(
            f"You already have a bid of {best_bid}; a new bid must be higher"
        )
        self.auction_id = auction_id
        self.best_bid = best_bid


class CountdownNotFoundError(LookupError):
    def __init__(self, event_id: int) -> None:
        super().__init__(f"Countdown event '{event_id}' not found")
        self.event_id = event_id


class InvariantViolationError(RuntimeError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class RateLimitedError(RuntimeError):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Too many requests, slow down")
        self.retry_after_seconds = retry_after_seconds
