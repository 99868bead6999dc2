"""Websocket session transport.

One socket per game session at /ws/{session_id}. Inbound JSON messages:

  {"type": "submit_chat_turn", "messages": [...], "requestedModel"?, "toolsEnabled"?}
  {"type": "new_game"}
  {"type": "load_game", "storyId": "...", "step"?: N}
  {"type": "cancel"}

Connecting with ?story=<id> resumes that story the same way load_game does.

Outbound messages are orchestrator events forwarded as {"type": event, **payload}
(narrative_ready, ui_update, capacity_status, model_switch, rate_limited,
turn_failed) plus turn_rejected, turn_cancelled, game_reset, game_loaded and
error acknowledgements.

Turns run as background tasks so new_game/cancel are handled while a turn is
in flight. Each completed turn is recorded as a step of the socket's story.
"""

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from backend import storage
from pathweaver.errors import SessionBusyError
from pathweaver.orchestrator import TurnResult
from pathweaver.session import GameSession

from .models import LoadGame, SubmitChatTurn

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketSink:
    """Forwards orchestrator events to one websocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self._ws.send_json({"type": event, **payload})
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Dropped %s event for closed socket: %s", event, e)


class _StoryBinding:
    """The story a socket's completed turns are recorded into."""

    def __init__(self, story_id: str | None = None) -> None:
        self.story_id = story_id

    def ensure(self) -> str:
        if self.story_id is None or storage.get_story(self.story_id) is None:
            self.story_id = storage.create_story()["id"]
        return self.story_id

    async def record(self, result: TurnResult) -> None:
        if result.assistant_turn is None or self.story_id is None:
            return
        code = result.ui_updates[-1].code if result.ui_updates else None
        storage.add_step(self.story_id, result.user_turn, result.assistant_turn, code)


async def _submit(session: GameSession, story: _StoryBinding, data: dict, sink: WebSocketSink) -> None:
    try:
        body = SubmitChatTurn.model_validate(data)
    except ValidationError as e:
        await sink.emit("error", {"message": f"Invalid chat turn: {e.errors()[0]['msg']}"})
        return

    story.ensure()
    try:
        session.start_turn(
            body.messages[-1].content,
            requested_model=body.requestedModel,
            tools_enabled=body.toolsEnabled,
            on_complete=story.record,
        )
    except SessionBusyError as e:
        await sink.emit("turn_rejected", e.to_payload())


async def _load(session: GameSession, story: _StoryBinding, data: dict, sink: WebSocketSink) -> None:
    try:
        body = LoadGame.model_validate(data)
    except ValidationError as e:
        await sink.emit("error", {"message": f"Invalid load request: {e.errors()[0]['msg']}"})
        return

    loaded = storage.get_story(body.storyId)
    if loaded is None:
        await sink.emit("error", {"message": "Story not found"})
        return
    if body.step is not None:
        try:
            loaded = storage.set_current_step(body.storyId, body.step)
        except ValueError as e:
            await sink.emit("error", {"message": str(e)})
            return

    await session.load(storage.replay_turns(loaded))
    story.story_id = loaded["id"]
    step = loaded["current_step"]
    code = loaded["steps"][step - 1]["component_code"] if step else None
    await sink.emit("game_loaded", {
        "storyId": loaded["id"],
        "step": step,
        "turns": len(session.history),
        "componentCode": code,
    })


@router.websocket("/ws/{session_id}")
async def game_websocket(websocket: WebSocket, session_id: str):
    """Websocket endpoint for one game session."""
    await websocket.accept()
    sink = WebSocketSink(websocket)
    sessions = websocket.app.state.sessions
    session = sessions.open(session_id, sink)
    story = _StoryBinding()
    logger.info("Game session %s connected", session_id)

    try:
        resume = websocket.query_params.get("story")
        if resume:
            await _load(session, story, {"type": "load_game", "storyId": resume}, sink)

        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await sink.emit("error", {"message": "Messages must be JSON objects"})
                continue
            kind = data.get("type")

            if kind == "submit_chat_turn":
                await _submit(session, story, data, sink)
            elif kind == "new_game":
                await session.reset()
                story.story_id = None
                await sink.emit("game_reset", {})
            elif kind == "load_game":
                await _load(session, story, data, sink)
            elif kind == "cancel":
                cancelled = await session.cancel()
                await sink.emit("turn_cancelled", {"cancelled": cancelled})
            else:
                await sink.emit("error", {"message": f"Unknown message type: {kind!r}"})
    except WebSocketDisconnect:
        logger.info("Game session %s disconnected", session_id)
    finally:
        await sessions.close(session_id)
