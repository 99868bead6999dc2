"""Request orchestrator: runs one chat turn against the provider.

Turn flow:
  1. Append the user turn to history; outbound messages are
     [system prompt] + history, with tools attached ("required" on the
     session's opening turn, "auto" afterwards).
  2. No tool calls in the reply → sanitize, append the assistant turn,
     emit `narrative_ready`.
  3. Tool calls → resolve every call. Any unparseable call triggers a
     corrective retry of the same turn (a transient system turn asking for
     simpler output), capped per turn. Otherwise each UI update is emitted
     at once, a synthetic tool turn acknowledges it by correlation id, and a
     follow-up call (tools omitted) produces the narrative. Tool calls in
     the follow-up reply are ignored.
  4. 429 on any call → switch to the next model in the fallback list and
     resend the same call immediately. At the end of the list, wait for
     the provider's retry hint, then resend once with the last model; a
     second 429 there fails the turn.
  5. 5xx → retried with exponential backoff, up to a configured count.
     Every other error fails the turn.

Failed turns leave the user turn in history and append no assistant turn.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pathweaver import events
from pathweaver.config import Settings
from pathweaver.errors import (
    LLMError,
    MalformedToolOutputError,
    ModelsExhaustedError,
    ProviderServerError,
)
from pathweaver.events import EventSink, NullSink
from pathweaver.history import ConversationHistory
from pathweaver.llm import (
    ChatProvider,
    ProviderResponse,
    parse_assistant_message,
    raise_for_provider_status,
)
from pathweaver.models import RateLimitSnapshot, ToolCallResult, Turn, UiUpdate
from pathweaver.prompts import (
    TOOL_DEFINITIONS,
    TOOL_RESULT_ACK,
    corrective_instruction,
    game_master_prompt,
)
from pathweaver.ratelimit import RateLimitMonitor
from pathweaver.registry import FallbackList, ModelRegistry
from pathweaver.tools import ToolCallInterpreter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_RESPONSE = "awaiting_first_response"
    TOOL_CALL_PENDING = "tool_call_pending"
    AWAITING_FOLLOW_UP_RESPONSE = "awaiting_follow_up_response"
    RATE_LIMITED = "rate_limited"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class TurnResult:
    text: str
    model: str
    user_turn: Turn
    assistant_turn: Turn | None
    ui_updates: list[UiUpdate] = field(default_factory=list)
    corrective_retries: int = 0
    states: list[TurnState] = field(default_factory=list)


@dataclass
class _TurnRun:
    model: str
    fallback: FallbackList
    sink: EventSink
    state: TurnState = TurnState.IDLE
    states: list[TurnState] = field(default_factory=lambda: [TurnState.IDLE])
    corrective_retries: int = 0

    def enter(self, state: TurnState) -> None:
        logger.debug("turn %s -> %s (model=%s)", self.state.value, state.value, self.model)
        self.state = state
        self.states.append(state)


def capacity_payload(snap: RateLimitSnapshot) -> dict[str, Any]:
    return events.CapacityStatus(
        model=snap.model,
        limitsAndRemaining={
            "limitRequests": snap.limit_requests,
            "remainingRequests": snap.remaining_requests,
            "limitTokens": snap.limit_tokens,
            "remainingTokens": snap.remaining_tokens,
            "resetRequests": snap.reset_requests,
            "resetTokens": snap.reset_tokens,
        },
        percentages={"requests": snap.requests_percent, "tokens": snap.tokens_percent},
        warning=snap.warning,
    ).model_dump()


class Orchestrator:
    """Drives provider calls for chat turns. One instance serves every session."""

    def __init__(
        self,
        provider: ChatProvider,
        registry: ModelRegistry,
        *,
        monitor: RateLimitMonitor | None = None,
        interpreter: ToolCallInterpreter | None = None,
        system_prompt: str | None = None,
        max_corrective_retries: int = 2,
        server_error_retries: int = 1,
        server_error_backoff: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._monitor = monitor or RateLimitMonitor()
        self._interpreter = interpreter or ToolCallInterpreter()
        self._system_prompt = system_prompt if system_prompt is not None else game_master_prompt()
        self._max_corrective = max_corrective_retries
        self._server_retries = server_error_retries
        self._server_backoff = server_error_backoff
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, provider: ChatProvider, registry: ModelRegistry, settings: Settings
    ) -> Orchestrator:
        return cls(
            provider,
            registry,
            monitor=RateLimitMonitor(
                warning_ratio=settings.capacity_warning_ratio,
                fallback_wait=settings.rate_limit_fallback_wait,
            ),
            max_corrective_retries=settings.max_corrective_retries,
            server_error_retries=settings.server_error_retries,
            server_error_backoff=settings.server_error_backoff,
        )

    @property
    def monitor(self) -> RateLimitMonitor:
        return self._monitor

    async def run_turn(
        self,
        history: ConversationHistory,
        content: str,
        *,
        requested_model: str | None = None,
        tools_enabled: bool = True,
        opening: bool = False,
        sink: EventSink | None = None,
    ) -> TurnResult:
        fallback = self._registry.fallback
        run = _TurnRun(model=fallback.select(requested_model), fallback=fallback, sink=sink or NullSink())

        user_turn = Turn(role="user", content=content)
        history.append(user_turn)
        base = [{"role": "system", "content": self._system_prompt}, *history.to_provider()]
        tools = TOOL_DEFINITIONS if tools_enabled else None
        tool_choice = ("required" if opening else "auto") if tools else None

        try:
            narrative, ui_updates = await self._run(run, base, tools, tool_choice)
        except LLMError as e:
            run.enter(TurnState.FAILED)
            logger.error("Turn failed on %s [%s]: %s", run.model, e.category.value, e.message)
            raise

        assistant_turn = history.append(Turn(role="assistant", content=narrative))
        text = assistant_turn.content if assistant_turn else ""
        run.enter(TurnState.COMPLETE)
        await run.sink.emit(events.NARRATIVE_READY, events.NarrativeReady(text=text, model=run.model).model_dump())
        return TurnResult(
            text=text,
            model=run.model,
            user_turn=user_turn,
            assistant_turn=assistant_turn,
            ui_updates=ui_updates,
            corrective_retries=run.corrective_retries,
            states=run.states,
        )

    async def _run(
        self,
        run: _TurnRun,
        base: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        tool_choice: str | None,
    ) -> tuple[str, list[UiUpdate]]:
        corrective: list[dict[str, Any]] = []
        while True:
            messages = base + corrective
            response = await self._call(run, TurnState.AWAITING_FIRST_RESPONSE, messages, tools, tool_choice)
            message = parse_assistant_message(response)
            if not message.tool_calls:
                return message.content, []

            run.enter(TurnState.TOOL_CALL_PENDING)
            results = [self._interpreter.resolve(call) for call in message.tool_calls]
            failures = [r for r in results if not r.ok]
            if failures:
                errors = [r.error or "unknown error" for r in failures]
                if run.corrective_retries >= self._max_corrective:
                    raise MalformedToolOutputError(
                        f"Tool output stayed malformed after {run.corrective_retries} corrective "
                        f"retries: {'; '.join(errors)}"
                    )
                run.corrective_retries += 1
                logger.warning(
                    "Malformed tool call on %s, corrective retry %d/%d: %s",
                    run.model, run.corrective_retries, self._max_corrective, errors,
                )
                corrective = [Turn(role="system", content=corrective_instruction(errors)).to_provider()]
                continue

            tool_turns = await self._emit_updates(run, results)
            call_turn = Turn(
                role="assistant",
                content=message.content,
                tool_calls=[call.to_provider() for call in message.tool_calls],
            )
            follow_up = messages + [call_turn.to_provider()] + [t.to_provider() for t in tool_turns]
            response = await self._call(run, TurnState.AWAITING_FOLLOW_UP_RESPONSE, follow_up, None, None)
            final = parse_assistant_message(response)
            if final.tool_calls:
                logger.warning(
                    "Ignoring %d tool call(s) in follow-up response from %s",
                    len(final.tool_calls), run.model,
                )
            updates = [r.instruction for r in results if r.instruction is not None]
            return final.content or message.content, updates

    async def _emit_updates(self, run: _TurnRun, results: list[ToolCallResult]) -> list[Turn]:
        """Emit each UI update and build its acknowledging tool turn."""
        tool_turns: list[Turn] = []
        for result in results:
            assert result.instruction is not None
            await run.sink.emit(events.UI_UPDATE, events.UiUpdateEvent(
                code=result.instruction.code,
                correlationId=result.call.id,
                modelUsed=run.model,
            ).model_dump())
            tool_turns.append(Turn(role="tool", content=TOOL_RESULT_ACK, tool_call_id=result.call.id))
        return tool_turns

    async def _call(
        self,
        run: _TurnRun,
        state: TurnState,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        tool_choice: str | None,
    ) -> ProviderResponse:
        """Send one logical call, handling rate limits and 5xx retries."""
        run.enter(state)
        tried = [run.model]
        waits: list[float] = []
        waited = False
        server_attempts = 0

        while True:
            response = await self._provider.chat(run.model, messages, tools, tool_choice)
            snap, limited = self._monitor.interpret(response, run.model)
            if snap is not None:
                await run.sink.emit(events.CAPACITY_STATUS, capacity_payload(snap))

            if limited is None:
                try:
                    raise_for_provider_status(response)
                except ProviderServerError as e:
                    if server_attempts >= self._server_retries:
                        raise
                    delay = self._server_backoff * (2 ** server_attempts)
                    server_attempts += 1
                    logger.warning("%s; retrying in %.1fs", e.message, delay)
                    await self._sleep(delay)
                    continue
                return response

            run.enter(TurnState.RATE_LIMITED)
            waits.append(limited.retry_after_seconds)
            if waited:
                raise ModelsExhaustedError(tried, waits)

            next_model = run.fallback.next_after(run.model)
            if next_model is not None:
                logger.info("Rate limited on %s, switching to %s", run.model, next_model)
                await run.sink.emit(events.MODEL_SWITCH, events.ModelSwitchNotice(
                    fromModel=run.model, toModel=next_model,
                ).model_dump())
                run.model = next_model
                tried.append(next_model)
            else:
                wait = limited.retry_after_seconds
                logger.warning("Fallback list exhausted, waiting %.1fs before retrying %s", wait, run.model)
                await run.sink.emit(events.RATE_LIMITED, events.RateLimitedWaiting(
                    seconds=wait, model=run.model,
                ).model_dump())
                await self._sleep(wait)
                waited = True
            run.enter(state)
