"""Game-master system prompt (Handlebars) and the tool schema sent to the provider."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from pathweaver.tools import UPDATE_UI_TOOL

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return "".join(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


GAME_MASTER_TEMPLATE = """\
You are a master storyteller running an immersive interactive adventure game \
(aim for {{interactions}} total interactions for a rich experience).

CRITICAL RULES:
1. ALWAYS use the onEvent prop in your components - this is how you receive user interactions
2. When you receive a [DYNAMIC_EVENT], respond to that specific user action and advance the story
3. Create complex, multi-layered stories with rich narrative, challenging puzzles, and meaningful choices
4. NEVER repeat the same component - always progress the story forward
5. Use the {{tool}} tool ONLY when you need to create a new interactive interface
6. You can respond with just text to narrate story progression - you don't always need to create components

WHEN TO USE TOOLS:
{{#each tool_uses}}- {{this}}
{{/each}}
WHEN TO USE TEXT ONLY:
{{#each text_uses}}- {{this}}
{{/each}}
IMPORTANT: When you want to create an interactive element, actually call the {{tool}} tool - \
don't just mention it in text!

GAME MECHANICS:
- Track character stats and inventory in your responses
- Present choices naturally in conversation
- Create consequences that matter
- Keep story moving forward while allowing exploration

The component code must define a function named AiDynamicComponent that accepts an onEvent prop.
ALWAYS use the onEvent function in your interface handlers (onClick, onHover, etc) to receive
information about the user's interactions.

Example: onClick={() => onEvent('action_name', data)}

Start by welcoming the player and using the {{tool}} tool to create a character selection interface.
"""

_TOOL_USES = [
    "Character selection screens",
    "Inventory displays with detailed item descriptions",
    "Combat interfaces with multiple options",
    "Puzzle and mini-game interfaces (riddles, locks, mechanisms)",
    "Story choice menus with significant consequences",
    "Final story conclusion screens",
]

_TEXT_USES = [
    "Narrative descriptions and world-building",
    "Character development and backstory reveals",
    "Describing consequences of actions in detail",
    "Responding to character selections with story advancement",
]


def game_master_prompt(interactions: str = "20-30") -> str:
    return render_prompt(GAME_MASTER_TEMPLATE, {
        "tool": UPDATE_UI_TOOL,
        "interactions": interactions,
        "tool_uses": _TOOL_USES,
        "text_uses": _TEXT_USES,
    })


CODE_PARAMETER_DESCRIPTION = (
    "Complete React component code as a JSX/JS code string. RULES:\n"
    "1. Do not use 'import' or 'export' statements. React is already in scope.\n"
    "2. Define a standalone function named AiDynamicComponent that accepts an onEvent prop.\n"
    "3. ALWAYS use onEvent in handlers: onClick={() => onEvent('action_name', data)}\n"
    "4. Use Tailwind CSS classes for styling.\n"
    "5. Use 'w-full h-full' on the root div to fill the container.\n"
    "6. Keep text simple: avoid unescaped quotes and special characters that break JSON encoding."
)

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": UPDATE_UI_TOOL,
            "description": (
                "Update the dynamic React component displayed in the main game area. Use this to "
                "create interactive game elements like character selection, inventory, mini-games, "
                "puzzles, and story scenes."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": CODE_PARAMETER_DESCRIPTION},
                },
                "required": ["code"],
            },
        },
    },
]

TOOL_RESULT_ACK = "Interactive component updated and displayed to the player."


def corrective_instruction(errors: list[str]) -> str:
    """System turn asking the model to regenerate an unparseable tool call."""
    details = "; ".join(errors)
    return (
        f"Your previous {UPDATE_UI_TOOL} call could not be decoded: {details}. "
        "Call the tool again with a simpler component: shorter text, no apostrophes or "
        "nested quotes inside strings, and a valid JSON arguments object."
    )
