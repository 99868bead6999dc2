"""Tests for pathweaver.history: bounded history and assistant sanitization."""

import pytest

from pathweaver.history import ConversationHistory, sanitize_assistant_content
from pathweaver.models import Turn


def _turns(n: int) -> list[Turn]:
    return [Turn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}") for i in range(n)]


class TestBound:
    def test_keeps_most_recent(self) -> None:
        history = ConversationHistory(limit=20)
        turns = _turns(25)
        for turn in turns:
            history.append(turn)
        assert len(history) == 20
        assert [t.content for t in history] == [t.content for t in turns[5:]]

    def test_never_exceeds_limit(self) -> None:
        history = ConversationHistory(limit=3)
        for i, turn in enumerate(_turns(10)):
            history.append(turn)
            assert len(history) == min(i + 1, 3)

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ConversationHistory(limit=0)

    def test_clear(self) -> None:
        history = ConversationHistory()
        history.replay(_turns(4))
        history.clear()
        assert len(history) == 0


class TestReplay:
    def test_replay_matches_live(self) -> None:
        turns = _turns(30)
        live = ConversationHistory(limit=20)
        for turn in turns:
            live.append(turn)
        rebuilt = ConversationHistory(limit=20)
        rebuilt.replay(turns)
        assert rebuilt.to_provider() == live.to_provider()

    def test_replay_sanitizes_like_live(self) -> None:
        turn = Turn(role="assistant", content="You enter.\n[TOOL_CALL] update_dynamic_component")
        rebuilt = ConversationHistory()
        rebuilt.replay([turn])
        assert rebuilt.turns[0].content == "You enter."


class TestWireForm:
    def test_to_provider_omits_local_metadata(self) -> None:
        history = ConversationHistory()
        history.append(Turn(role="user", content="hello"))
        assert history.to_provider() == [{"role": "user", "content": "hello"}]

    def test_tool_turn_keeps_correlation(self) -> None:
        turn = Turn(role="tool", content="ok", tool_call_id="call_7")
        assert turn.to_provider() == {"role": "tool", "content": "ok", "tool_call_id": "call_7"}


class TestSanitize:
    def test_strips_function_tags(self) -> None:
        text = 'The gate opens. <function=update_dynamic_component>{"code": "x"}</function>'
        assert sanitize_assistant_content(text) == "The gate opens."

    def test_strips_tool_call_blocks(self) -> None:
        text = "Choose wisely.\n<tool_call>{\"name\": \"x\"}</tool_call>"
        assert sanitize_assistant_content(text) == "Choose wisely."

    def test_strips_component_code_fences(self) -> None:
        text = "Here is your map.\n```jsx\nfunction AiDynamicComponent() {}\n```\nGood luck."
        assert sanitize_assistant_content(text) == "Here is your map.\n\nGood luck."

    def test_keeps_other_fences(self) -> None:
        text = "The runes read:\n```\nFOO\n```"
        assert sanitize_assistant_content(text) == text

    def test_plain_text_unchanged(self) -> None:
        assert sanitize_assistant_content("A dragon appears!") == "A dragon appears!"

    def test_assistant_turn_sanitized_on_append(self) -> None:
        history = ConversationHistory()
        stored = history.append(Turn(role="assistant", content="Onward. [TOOL_CALL] update_dynamic_component"))
        assert stored is not None
        assert stored.content == "Onward."

    def test_empty_assistant_turn_dropped(self) -> None:
        history = ConversationHistory()
        assert history.append(Turn(role="assistant", content="[TOOL_CALL] update_dynamic_component")) is None
        assert len(history) == 0

    def test_user_turn_not_sanitized(self) -> None:
        history = ConversationHistory()
        content = "[DYNAMIC_EVENT] clicked ```jsx x```"
        history.append(Turn(role="user", content=content))
        assert history.turns[0].content == content
