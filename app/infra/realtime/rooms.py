from app.domain.actors import Actor, AdminActor, UserActor, VisitorActor

ADMIN_ROOM = "admin_room"


def conversation_room(conversation_id: int) -> str:
    return f"conversation_{conversation_id}"


def user_room(user_id: int) -> str:
    return f"user_{user_id}"


def auction_room(auction_id: int) -> str:
    return f"auction_{auction_id}"


def default_rooms(actor: Actor) -> list[str]:
    """Rooms a connection joins right after the handshake."""
    match actor:
        case AdminActor():
            return [ADMIN_ROOM]
        case UserActor(id=user_id):
            return [user_room(user_id)]
        case VisitorActor():
            return []
