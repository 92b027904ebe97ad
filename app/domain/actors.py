from dataclasses import dataclass, field

from app.domain.enums import MessageSenderType


@dataclass(frozen=True, slots=True)
class VisitorActor:
    """Anonymous shopper identified only by a transport-level session id."""

    session_id: str

    @property
    def visitor_key(self) -> str:
        return f"session:{self.session_id}"

    @property
    def display_name(self) -> str:
        return "Visitor"


@dataclass(frozen=True, slots=True)
class UserActor:
    id: int
    name: str

    @property
    def visitor_key(self) -> str:
        return f"user:{self.id}"

    @property
    def display_name(self) -> str:
        return self.name.strip() or "Customer"


@dataclass(frozen=True, slots=True)
class AdminActor:
    id: int
    name: str
    permissions: frozenset[str] = field(default_factory=frozenset)

    @property
    def display_name(self) -> str:
        return self.name.strip() or "Support"

Actor = VisitorActor | UserActor | AdminActor
VisitorSide = VisitorActor | UserActor


def sender_type_for(actor: Actor) -> MessageSenderType:
    match actor:
        case AdminActor():
            return MessageSenderType.ADMIN
        case VisitorActor() | UserActor():
            return MessageSenderType.USER
