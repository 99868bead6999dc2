"""Story CRUD, step recording, and history replay."""

import json
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pathweaver.models import Turn

from .core import stories_dir

TITLE_LENGTH = 50

_DYNAMIC_EVENT_RE = re.compile(r"\[DYNAMIC_EVENT[^\]]*\]")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _story_path(story_id: str) -> Path:
    return stories_dir() / f"{story_id}.json"


def _save(story: dict[str, Any]) -> None:
    _story_path(story["id"]).write_text(json.dumps(story, indent=2))


def create_story(title: str = "") -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    story = {
        "id": f"story-{uuid.uuid4().hex[:12]}",
        "title": title or f"Story from {now.date().isoformat()}",
        "steps": [],
        "current_step": 0,
        "created_at": now.isoformat(),
        "updated_at": now.isoformat(),
    }
    _save(story)
    return story


def get_story(story_id: str) -> dict[str, Any] | None:
    path = _story_path(story_id)
    if not path.is_file():
        return None
    return json.loads(path.read_text())


def list_stories() -> list[dict[str, Any]]:
    """Story summaries, most recently played first."""
    summaries = []
    for path in stories_dir().glob("*.json"):
        story = json.loads(path.read_text())
        preview = ""
        if story["steps"]:
            preview = story["steps"][-1]["assistant"]["content"][:100]
        summaries.append({
            "id": story["id"],
            "title": story["title"],
            "step_count": len(story["steps"]),
            "last_played": story["updated_at"],
            "preview": preview,
        })
    summaries.sort(key=lambda s: s["last_played"], reverse=True)
    return summaries


def _title_from(message: str) -> str:
    text = _DYNAMIC_EVENT_RE.sub("", message).strip()
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + "..."
    return text


def add_step(
    story_id: str,
    user_turn: Turn,
    assistant_turn: Turn,
    component_code: str | None = None,
) -> dict[str, Any] | None:
    """Record one completed turn. Returns the updated story."""
    story = get_story(story_id)
    if story is None:
        return None

    # Playing on from an earlier step discards the steps after it
    del story["steps"][story["current_step"]:]

    step = {
        "step_number": len(story["steps"]) + 1,
        "user": user_turn.model_dump(mode="json"),
        "assistant": assistant_turn.model_dump(mode="json"),
        "component_code": component_code,
        "ts": _now(),
    }
    story["steps"].append(step)
    story["current_step"] = step["step_number"]
    story["updated_at"] = step["ts"]

    if len(story["steps"]) == 1 and story["title"].startswith("Story from"):
        story["title"] = _title_from(user_turn.content) or story["title"]

    _save(story)
    return story


def set_current_step(story_id: str, step_number: int) -> dict[str, Any] | None:
    """Move the story's play position. Raises ValueError if out of range."""
    story = get_story(story_id)
    if story is None:
        return None
    if step_number < 1 or step_number > len(story["steps"]):
        raise ValueError(f"Invalid step number: {step_number}")
    story["current_step"] = step_number
    story["updated_at"] = _now()
    _save(story)
    return story


def update_title(story_id: str, title: str) -> dict[str, Any] | None:
    story = get_story(story_id)
    if story is None:
        return None
    story["title"] = title
    story["updated_at"] = _now()
    _save(story)
    return story


def delete_story(story_id: str) -> bool:
    path = _story_path(story_id)
    if not path.is_file():
        return False
    path.unlink()
    return True


def replay_turns(story: dict[str, Any], step: int | None = None) -> list[Turn]:
    """User/assistant turns of steps 1..step (default current_step), in order."""
    upto = story["current_step"] if step is None else min(step, len(story["steps"]))
    turns: list[Turn] = []
    for entry in story["steps"][:upto]:
        turns.append(Turn.model_validate(entry["user"]))
        turns.append(Turn.model_validate(entry["assistant"]))
    return turns
