"""Outbound events sent from a running turn to the client.

An EventSink receives `(event_name, payload)` pairs. The websocket transport
forwards them as `{"type": event_name, **payload}`; tests record them.
"""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel

NARRATIVE_READY = "narrative_ready"
UI_UPDATE = "ui_update"
CAPACITY_STATUS = "capacity_status"
MODEL_SWITCH = "model_switch"
RATE_LIMITED = "rate_limited"
TURN_FAILED = "turn_failed"


class EventSink(Protocol):
    async def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class NarrativeReady(BaseModel):
    text: str
    model: str


class UiUpdateEvent(BaseModel):
    code: str
    correlationId: str
    modelUsed: str


class CapacityStatus(BaseModel):
    model: str
    limitsAndRemaining: dict[str, int | str | None]
    percentages: dict[str, float | None]
    warning: bool


class ModelSwitchNotice(BaseModel):
    fromModel: str
    toModel: str


class RateLimitedWaiting(BaseModel):
    seconds: float
    model: str


class TurnFailed(BaseModel):
    category: str
    message: str
    retryable: bool


class NullSink:
    """Discards events."""

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        return None


class RecordingSink:
    """Keeps every event in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def named(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]
