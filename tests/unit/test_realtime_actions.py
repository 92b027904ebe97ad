from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.api.v1.routes import realtime as realtime_routes
from app.core.rate_limit import InMemoryRateLimiter
from app.domain.actors import AdminActor, UserActor, VisitorActor
from app.infra.realtime.hub import InMemoryRealtimeHub
from app.services.countdown_service import CountdownService
from app.services.errors import BidTooLowError


class FakeWebSocket:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def accept(self) -> None:
        return None

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)


class DummySession:
    async def commit(self) -> None:
        raise AssertionError("nothing should be committed")

    async def rollback(self) -> None:
        return None


class _SessionContext:
    async def __aenter__(self) -> DummySession:
        return DummySession()

    async def __aexit__(self, *_: object) -> bool:
        return False


def make_connection(actor) -> tuple[realtime_routes._Connection, FakeWebSocket]:
    websocket = FakeWebSocket()
    connection = realtime_routes._Connection(
        websocket=websocket,
        hub=InMemoryRealtimeHub(),
        actor=actor,
        limiter=InMemoryRateLimiter(),
    )
    return connection, websocket


def errors(websocket: FakeWebSocket) -> list[dict]:
    return [sent["payload"] for sent in websocket.sent if sent["event"] == "system.error"]


@pytest.mark.asyncio
async def test_bid_rejection_carries_reason_and_minimum(monkeypatch) -> None:
    async def reject(connection, message) -> None:
        raise BidTooLowError(1, Decimal("120.00"))

    monkeypatch.setattr(realtime_routes, "_dispatch", reject)
    connection, websocket = make_connection(UserActor(id=4, name="Dana"))

    await realtime_routes._handle(
        connection, {"action": "place_bid", "auction_id": 1, "request_id": "bid-1"}
    )

    assert errors(websocket) == [
        {
            "success": False,
            "detail": "Bid must be at least 120.00",
            "request_id": "bid-1",
            "status_code": 409,
            "data": {"reason": "bid_too_low", "minimum_bid": "120.00"},
        }
    ]


@pytest.mark.asyncio
async def test_unexpected_error_is_reported_and_socket_keeps_serving(monkeypatch) -> None:
    async def dispatch(connection, message) -> None:
        if message["action"] == "explode":
            raise AttributeError("'int' object has no attribute 'tzinfo'")
        await connection.reply("system.pong", {})

    monkeypatch.setattr(realtime_routes, "_dispatch", dispatch)
    connection, websocket = make_connection(AdminActor(id=2, name="Ops"))

    await realtime_routes._handle(connection, {"action": "explode", "request_id": 7})
    await realtime_routes._handle(connection, {"action": "ping"})

    [failure] = errors(websocket)
    assert failure["request_id"] == 7
    assert failure["status_code"] == 500
    assert failure["detail"] == "Internal server error"
    assert websocket.sent[-1]["event"] == "system.pong"


@pytest.mark.asyncio
async def test_malformed_countdown_end_date_is_a_client_error(monkeypatch) -> None:
    event = SimpleNamespace(
        id=4,
        start_date=datetime(2026, 10, 18, tzinfo=UTC),
        end_date=datetime(2026, 10, 20, tzinfo=UTC),
    )

    class SingleEventRepository:
        async def get_by_id(self, event_id: int):
            return event if event_id == event.id else None

    monkeypatch.setattr(realtime_routes, "get_session_factory", lambda: _SessionContext)
    monkeypatch.setattr(
        realtime_routes,
        "CountdownService",
        lambda session, realtime=None: CountdownService(
            session, countdowns=SingleEventRepository(), realtime=realtime
        ),
    )
    connection, websocket = make_connection(AdminActor(id=2, name="Ops"))

    await realtime_routes._handle(
        connection,
        {
            "action": "update_countdown",
            "event_id": 4,
            "updates": {"end_date": 12345},
            "request_id": "cd-1",
        },
    )

    [failure] = errors(websocket)
    assert failure["status_code"] == 400
    assert "ISO datetime" in failure["detail"]
    assert failure["request_id"] == "cd-1"
    assert event.end_date == datetime(2026, 10, 20, tzinfo=UTC)


@pytest.mark.asyncio
async def test_visitor_bid_is_refused_without_touching_storage() -> None:
    connection, websocket = make_connection(VisitorActor(session_id="sess-1"))

    await realtime_routes._handle(
        connection,
        {"action": "place_bid", "auction_id": 3, "bid_amount": "150", "request_id": "b"},
    )

    [failure] = errors(websocket)
    assert failure["detail"] == "Please log in to place a bid"
    assert failure["success"] is False
