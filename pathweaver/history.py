"""Conversation history: bounded, append-only log of turns for one session.

Only the most recent `limit` turns are kept; older turns are evicted first.
Assistant turns are sanitized on the way in, so a history rebuilt by replaying
persisted turns matches the one accumulated live.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterable, Iterator
from typing import Any

from pathweaver.models import Turn

DEFAULT_HISTORY_LIMIT = 20

# Patterns stripped from assistant text before it is stored or shown:
#   [TOOL_CALL] update_dynamic_component      marker the model echoes back
#   <function=name>{...}</function>           tool-call syntax leaked as text
#   <tool_call>...</tool_call>
#   ```jsx ... ```                            component code pasted into prose
_TOOL_MARKER_RE = re.compile(r"\[TOOL_CALL\]\s*\w*")
_FUNCTION_TAG_RE = re.compile(r"<function(?:=[\w.-]+)?>.*?</function>", re.DOTALL)
_TOOL_CALL_TAG_RE = re.compile(r"<tool_call>.*?</tool_call>", re.DOTALL)
_CODE_FENCE_RE = re.compile(r"```(?:jsx|tsx|javascript|js|html|react)\b.*?```", re.DOTALL | re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def sanitize_assistant_content(text: str) -> str:
    """Strip leaked tool-call markers and markup fragments from assistant text."""
    cleaned = _FUNCTION_TAG_RE.sub("", text)
    cleaned = _TOOL_CALL_TAG_RE.sub("", cleaned)
    cleaned = _CODE_FENCE_RE.sub("", cleaned)
    cleaned = _TOOL_MARKER_RE.sub("", cleaned)
    cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


class ConversationHistory:
    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self._limit = limit
        self._turns: deque[Turn] = deque(maxlen=limit)

    @property
    def limit(self) -> int:
        return self._limit

    def append(self, turn: Turn) -> Turn | None:
        """Append a turn, evicting the oldest when full.

        Assistant turns are sanitized first; one that is empty afterwards is
        dropped and None is returned.
        """
        if turn.role == "assistant":
            content = sanitize_assistant_content(turn.content)
            if not content:
                return None
            if content != turn.content:
                turn = turn.model_copy(update={"content": content})
        self._turns.append(turn)
        return turn

    def replay(self, turns: Iterable[Turn]) -> None:
        """Rebuild from persisted turns, in their original order."""
        for turn in turns:
            self.append(turn)

    def clear(self) -> None:
        self._turns.clear()

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def to_provider(self) -> list[dict[str, Any]]:
        return [turn.to_provider() for turn in self._turns]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(list(self._turns))
