from app.domain.enums import (
    AuctionAction,
    AuctionStatus,
    ChatMode,
    ChatModeAction,
    ConversationAction,
    ConversationStatus,
)


class InvalidConversationTransition(ValueError):
    def __init__(self, current: ConversationStatus, action: ConversationAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' from state '{current.value}'."
        )
        self.current = current
        self.action = action


class InvalidChatModeTransition(ValueError):
    def __init__(self, current: ChatMode, action: ChatModeAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' from chat mode '{current.value}'."
        )
        self.current = current
        self.action = action


class InvalidAuctionTransition(ValueError):
    def __init__(self, current: AuctionStatus, action: AuctionAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' to an auction in state '{current.value}'."
        )
        self.current = current
        self.action = action
