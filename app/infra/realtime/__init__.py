"""Realtime event transport (WebSocket room fan-out) adapters."""

from app.infra.realtime.hub import InMemoryRealtimeHub

__all__ = ["InMemoryRealtimeHub"]
