"""Game sessions: per-conversation state and the one-turn-at-a-time guard.

A GameSession owns its ConversationHistory and at most one in-flight turn
task. The transport looks sessions up by id in a SessionManager; nothing here
is process-global, so sessions never see each other's history.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pathweaver import events
from pathweaver.errors import LLMError, SessionBusyError
from pathweaver.events import EventSink, NullSink
from pathweaver.history import DEFAULT_HISTORY_LIMIT, ConversationHistory
from pathweaver.models import Turn
from pathweaver.orchestrator import Orchestrator, TurnResult

logger = logging.getLogger(__name__)

TurnCallback = Callable[[TurnResult], Awaitable[None]]


class GameSession:
    def __init__(
        self,
        session_id: str,
        orchestrator: Orchestrator,
        *,
        sink: EventSink | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.id = session_id
        self.history = ConversationHistory(history_limit)
        self.sink: EventSink = sink or NullSink()
        self.turns_completed = 0
        self._orchestrator = orchestrator
        self._task: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_turn(
        self,
        content: str,
        *,
        requested_model: str | None = None,
        tools_enabled: bool = True,
        on_complete: TurnCallback | None = None,
    ) -> asyncio.Task:
        """Schedule a turn; raises SessionBusyError if one is already running."""
        if self.busy:
            raise SessionBusyError("A turn is already in progress for this session")
        self._task = asyncio.create_task(
            self._run_turn(content, requested_model, tools_enabled, on_complete),
            name=f"turn-{self.id}",
        )
        return self._task

    async def submit(
        self,
        content: str,
        *,
        requested_model: str | None = None,
        tools_enabled: bool = True,
    ) -> TurnResult | None:
        """Run a turn to completion; returns None when it failed."""
        return await self.start_turn(
            content, requested_model=requested_model, tools_enabled=tools_enabled,
        )

    async def _run_turn(
        self,
        content: str,
        requested_model: str | None,
        tools_enabled: bool,
        on_complete: TurnCallback | None,
    ) -> TurnResult | None:
        try:
            result = await self._orchestrator.run_turn(
                self.history,
                content,
                requested_model=requested_model,
                tools_enabled=tools_enabled,
                opening=self.turns_completed == 0,
                sink=self.sink,
            )
        except LLMError as e:
            await self.sink.emit(events.TURN_FAILED, events.TurnFailed(**e.to_payload()).model_dump())
            return None
        self.turns_completed += 1
        if on_complete is not None:
            try:
                await on_complete(result)
            except Exception:
                logger.exception("Turn completion callback failed for session %s", self.id)
        return result

    async def cancel(self) -> bool:
        """Cancel the in-flight turn, releasing any pending rate-limit wait."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cancelled in-flight turn for session %s", self.id)
        return True

    async def reset(self) -> None:
        """New game: drop in-flight work and clear history."""
        await self.cancel()
        self.history.clear()
        self.turns_completed = 0

    async def load(self, turns: Iterable[Turn]) -> None:
        """Load game: rebuild history by replaying persisted turns in order."""
        await self.cancel()
        self.history.clear()
        turns = list(turns)
        self.history.replay(turns)
        self.turns_completed = sum(1 for t in turns if t.role == "assistant")


class SessionManager:
    def __init__(self, orchestrator: Orchestrator, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._orchestrator = orchestrator
        self._history_limit = history_limit
        self._sessions: dict[str, GameSession] = {}

    def get(self, session_id: str) -> GameSession | None:
        return self._sessions.get(session_id)

    def open(self, session_id: str, sink: EventSink | None = None) -> GameSession:
        """Return the session for this id, creating it if needed; rebinds the sink."""
        session = self._sessions.get(session_id)
        if session is None:
            session = GameSession(
                session_id, self._orchestrator, sink=sink, history_limit=self._history_limit,
            )
            self._sessions[session_id] = session
            logger.info("Session %s opened", session_id)
        elif sink is not None:
            session.sink = sink
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.cancel()
            logger.info("Session %s closed", session_id)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: Any) -> bool:
        return session_id in self._sessions
