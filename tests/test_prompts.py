"""Tests for pathweaver.prompts: system prompt rendering and tool schema."""

import pytest

from pathweaver.prompts import (
    TOOL_DEFINITIONS,
    PromptError,
    corrective_instruction,
    game_master_prompt,
    render_prompt,
)
from pathweaver.tools import UPDATE_UI_TOOL, registered_tools


class TestRenderPrompt:
    def test_variables(self) -> None:
        assert render_prompt("Hello {{name}}", {"name": "Aria"}) == "Hello Aria"

    def test_each_loop(self) -> None:
        result = render_prompt("{{#each items}}[{{this}}]{{/each}}", {"items": ["a", "b"]})
        assert result == "[a][b]"

    def test_missing_variable_renders_empty(self) -> None:
        assert render_prompt("x{{missing}}y", {}) == "xy"

    def test_missing_partial_raises(self) -> None:
        with pytest.raises(PromptError):
            render_prompt("{{> missing_partial}}", {})


class TestGameMasterPrompt:
    def test_names_the_tool(self) -> None:
        prompt = game_master_prompt()
        assert f"call the {UPDATE_UI_TOOL} tool" in prompt
        assert "{{" not in prompt

    def test_lists_tool_and_text_uses(self) -> None:
        prompt = game_master_prompt()
        assert "- Character selection screens" in prompt
        assert "- Narrative descriptions and world-building" in prompt

    def test_interaction_target(self) -> None:
        assert "aim for 10-15 total interactions" in game_master_prompt("10-15")

    def test_requires_on_event(self) -> None:
        assert "AiDynamicComponent" in game_master_prompt()
        assert "onEvent" in game_master_prompt()


class TestToolDefinitions:
    def test_single_code_parameter(self) -> None:
        (tool,) = TOOL_DEFINITIONS
        function = tool["function"]
        assert tool["type"] == "function"
        assert function["name"] == UPDATE_UI_TOOL
        assert function["parameters"]["required"] == ["code"]
        assert function["parameters"]["properties"]["code"]["type"] == "string"

    def test_every_declared_tool_has_a_handler(self) -> None:
        for tool in TOOL_DEFINITIONS:
            assert tool["function"]["name"] in registered_tools()


def test_corrective_instruction_lists_errors() -> None:
    text = corrective_instruction(["bad escape", "unterminated string"])
    assert text.startswith(f"Your previous {UPDATE_UI_TOOL} call could not be decoded")
    assert "bad escape; unterminated string" in text
