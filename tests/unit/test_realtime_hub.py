import pytest

from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.hub import InMemoryRealtimeHub, build_envelope
from app.infra.realtime.publisher import safe_broadcast
from app.infra.realtime.rooms import ADMIN_ROOM, conversation_room


class FakeWebSocket:
    def __init__(self, *, broken: bool = False) -> None:
        self.accepted = False
        self.broken = broken
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.broken:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(data)


async def connected(hub: InMemoryRealtimeHub, *rooms: str, broken: bool = False) -> FakeWebSocket:
    websocket = FakeWebSocket(broken=broken)
    await hub.connect(websocket)
    for room in rooms:
        await hub.join(websocket, room)
    return websocket


def test_envelope_shape() -> None:
    envelope = build_envelope(RealtimeEvent.NEW_MESSAGE, {"id": 1}, room="conversation_1")

    assert envelope["event"] == "new_message"
    assert envelope["room"] == "conversation_1"
    assert envelope["payload"] == {"id": 1}
    assert envelope["sent_at"]


@pytest.mark.asyncio
async def test_broadcast_reaches_only_room_members() -> None:
    hub = InMemoryRealtimeHub()
    room = conversation_room(1)
    member = await connected(hub, room)
    outsider = await connected(hub, conversation_room(2))

    await hub.broadcast([room], RealtimeEvent.NEW_MESSAGE, {"body": "hi"})

    assert member.accepted
    assert [envelope["payload"] for envelope in member.sent] == [{"body": "hi"}]
    assert outsider.sent == []


@pytest.mark.asyncio
async def test_broadcast_to_several_rooms_sends_once_per_room() -> None:
    hub = InMemoryRealtimeHub()
    admin = await connected(hub, ADMIN_ROOM, conversation_room(1))

    await hub.broadcast(
        [conversation_room(1), ADMIN_ROOM, ADMIN_ROOM],
        RealtimeEvent.CONVERSATION_CLOSED,
        {},
    )

    assert sorted(envelope["room"] for envelope in admin.sent) == sorted(
        [conversation_room(1), ADMIN_ROOM]
    )


@pytest.mark.asyncio
async def test_broadcast_can_exclude_the_sender() -> None:
    hub = InMemoryRealtimeHub()
    room = conversation_room(3)
    typist = await connected(hub, room)
    reader = await connected(hub, room)

    await hub.broadcast([room], RealtimeEvent.USER_TYPING, {}, exclude=typist)

    assert typist.sent == []
    assert len(reader.sent) == 1


@pytest.mark.asyncio
async def test_leave_and_disconnect_remove_membership() -> None:
    hub = InMemoryRealtimeHub()
    room = conversation_room(4)
    websocket = await connected(hub, room, ADMIN_ROOM)

    await hub.leave(websocket, room)
    assert not hub.is_member(websocket, room)
    assert hub.rooms_of(websocket) == {ADMIN_ROOM}
    assert hub.member_count(room) == 0

    await hub.disconnect(websocket)
    assert hub.member_count(ADMIN_ROOM) == 0
    assert hub.connection_count() == 0


@pytest.mark.asyncio
async def test_stale_sockets_are_dropped_without_failing_the_broadcast() -> None:
    hub = InMemoryRealtimeHub()
    room = conversation_room(5)
    healthy = await connected(hub, room)
    stale = await connected(hub, room, broken=True)

    await hub.broadcast([room], RealtimeEvent.NEW_MESSAGE, {})

    assert len(healthy.sent) == 1
    assert not hub.is_member(stale, room)
    assert hub.member_count(room) == 1


@pytest.mark.asyncio
async def test_broadcast_to_empty_room_is_dropped() -> None:
    hub = InMemoryRealtimeHub()

    await hub.broadcast([conversation_room(6)], RealtimeEvent.NEW_MESSAGE, {})

    assert hub.member_count(conversation_room(6)) == 0


@pytest.mark.asyncio
async def test_broadcast_all_reaches_every_connection() -> None:
    hub = InMemoryRealtimeHub()
    in_room = await connected(hub, ADMIN_ROOM)
    lobby = await connected(hub)
    stale = await connected(hub, broken=True)

    await hub.broadcast_all(RealtimeEvent.COUNTDOWN_STARTED, {"event_id": 9})

    assert [envelope["event"] for envelope in in_room.sent] == ["countdown_started"]
    assert [envelope["payload"] for envelope in lobby.sent] == [{"event_id": 9}]
    assert stale.sent == []
    assert hub.connection_count() == 2


@pytest.mark.asyncio
async def test_safe_broadcast_swallows_publisher_errors() -> None:
    class ExplodingPublisher:
        async def broadcast(self, rooms, event, payload) -> None:
            raise ConnectionError("boom")

    await safe_broadcast(ExplodingPublisher(), [ADMIN_ROOM], RealtimeEvent.NEW_MESSAGE, {})
