"""Tool-call interpreter: provider function calls into UI instructions.

Pipeline for one call:
  1. strict `json.loads` of the argument string
  2. on failure, apply the repair heuristics below, in order, and parse once more
  3. dispatch the decoded arguments to the handler registered for the tool name

Repairs target exactly two malformations seen in generated component code:
  * `\\'`: an apostrophe escaped JavaScript-style, which JSON forbids
  * raw newlines, carriage returns and tabs inside string literals

Anything else is reported as a failure; the orchestrator then asks the model
to regenerate simpler output. Payload semantics are not checked here: the
code is handed to the renderer untouched.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from pathweaver.models import ToolCallRequest, ToolCallResult, UiUpdate

logger = logging.getLogger(__name__)

UPDATE_UI_TOOL = "update_dynamic_component"

Handler = Callable[[dict[str, Any]], UiUpdate]

_HANDLERS: dict[str, Handler] = {}


class ToolArgumentError(ValueError):
    """Decoded arguments do not fit the tool's contract."""


def register_tool(name: str) -> Callable[[Handler], Handler]:
    """Register a handler turning decoded arguments into an instruction."""
    def decorator(fn: Handler) -> Handler:
        _HANDLERS[name] = fn
        return fn
    return decorator


def registered_tools() -> list[str]:
    return sorted(_HANDLERS)


@register_tool(UPDATE_UI_TOOL)
def _update_ui(args: dict[str, Any]) -> UiUpdate:
    code = args.get("code")
    if not isinstance(code, str) or not code.strip():
        raise ToolArgumentError("'code' must be a non-empty string")
    return UiUpdate(code=code)


# ---------------------------------------------------------------------------
# Repair heuristics
# ---------------------------------------------------------------------------

# A backslash-apostrophe preceded by an even number of backslashes
_ESCAPED_APOSTROPHE_RE = re.compile(r"(?<!\\)((?:\\\\)*)\\'")

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def unescape_apostrophes(text: str) -> str:
    return _ESCAPED_APOSTROPHE_RE.sub(r"\1'", text)


def escape_control_chars(text: str) -> str:
    """Escape raw newlines/CR/tabs that appear inside JSON string literals."""
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[ch])
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


REPAIRS: tuple[Callable[[str], str], ...] = (
    unescape_apostrophes,
    escape_control_chars,
)


def repair_arguments(text: str) -> str:
    for repair in REPAIRS:
        text = repair(text)
    return text


def parse_arguments(text: str) -> tuple[Any, bool]:
    """Decode tool arguments; returns (value, repaired).

    Raises json.JSONDecodeError when the single post-repair parse also fails.
    """
    try:
        return json.loads(text), False
    except json.JSONDecodeError as e:
        logger.info("Tool arguments are not valid JSON (%s), attempting repair", e)
        logger.debug("Original args preview: %r", text[:100])
    repaired = repair_arguments(text)
    logger.debug("Repaired args preview: %r", repaired[:100])
    return json.loads(repaired), True


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------

class ToolCallInterpreter:
    """Resolves ToolCallRequests against the registered handlers."""

    def __init__(self, handlers: dict[str, Handler] | None = None) -> None:
        self._handlers = handlers if handlers is not None else _HANDLERS

    def resolve(self, call: ToolCallRequest) -> ToolCallResult:
        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolCallResult(call=call, error=f"Unknown tool '{call.name}'")

        try:
            args, repaired = parse_arguments(call.arguments)
        except json.JSONDecodeError as e:
            logger.warning("Tool call %s arguments unrecoverable: %s", call.id, e)
            return ToolCallResult(
                call=call,
                error=(
                    f"The arguments for {call.name} are not valid JSON ({e}). "
                    "The generated code contains characters that break JSON encoding."
                ),
            )

        if not isinstance(args, dict):
            return ToolCallResult(
                call=call,
                repaired=repaired,
                error=f"The arguments for {call.name} must be a JSON object",
            )
        try:
            instruction = handler(args)
        except ToolArgumentError as e:
            return ToolCallResult(call=call, repaired=repaired, error=f"{call.name}: {e}")
        return ToolCallResult(call=call, instruction=instruction, repaired=repaired)
