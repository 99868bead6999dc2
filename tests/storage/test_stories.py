"""Tests for story persistence, step recording, and replay."""

import pytest

from backend import storage
from pathweaver.models import Turn


def _step(story_id, user="Go north", assistant="The road winds on.", code=None):
    return storage.add_step(
        story_id,
        Turn(role="user", content=user),
        Turn(role="assistant", content=assistant),
        code,
    )


# ── Create / get / list ──────────────────────────────────


def test_create_story_defaults():
    story = storage.create_story()
    assert story["id"].startswith("story-")
    assert story["title"].startswith("Story from ")
    assert story["steps"] == []
    assert story["current_step"] == 0
    assert storage.get_story(story["id"]) == story


def test_create_story_with_title():
    assert storage.create_story("The Sunken Keep")["title"] == "The Sunken Keep"


def test_get_missing():
    assert storage.get_story("story-nope") is None


def test_list_stories_summaries():
    story = storage.create_story("Quest")
    _step(story["id"], assistant="A lantern flickers in the dark.")
    summaries = storage.list_stories()
    assert len(summaries) == 1
    summary = summaries[0]
    assert summary["id"] == story["id"]
    assert summary["step_count"] == 1
    assert summary["preview"] == "A lantern flickers in the dark."


def test_list_most_recent_first():
    older = storage.create_story("Older")
    newer = storage.create_story("Newer")
    _step(older["id"])
    assert [s["id"] for s in storage.list_stories()] == [older["id"], newer["id"]]


# ── Steps ────────────────────────────────────────────────


def test_add_step_records_turns_and_code():
    story = storage.create_story("Quest")
    updated = _step(story["id"], code="function AiDynamicComponent() {}")
    assert updated["current_step"] == 1
    step = updated["steps"][0]
    assert step["step_number"] == 1
    assert step["user"]["content"] == "Go north"
    assert step["assistant"]["role"] == "assistant"
    assert step["component_code"] == "function AiDynamicComponent() {}"


def test_add_step_missing_story():
    assert _step("story-nope") is None


def test_first_step_auto_titles():
    story = storage.create_story()
    updated = _step(story["id"], user="I want to explore the haunted lighthouse on the northern cliffs tonight")
    assert updated["title"] == "I want to explore the haunted lighthouse on the no..."
    assert len(updated["title"]) == storage.TITLE_LENGTH + 3


def test_auto_title_strips_dynamic_event_marker():
    story = storage.create_story()
    updated = _step(story["id"], user="[DYNAMIC_EVENT: select_character] Chose the ranger")
    assert updated["title"] == "Chose the ranger"


def test_explicit_title_not_replaced():
    story = storage.create_story("My Title")
    assert _step(story["id"])["title"] == "My Title"


def test_add_step_after_rewind_truncates():
    story = storage.create_story("Quest")
    for i in range(3):
        _step(story["id"], user=f"action {i}")
    storage.set_current_step(story["id"], 1)
    updated = _step(story["id"], user="a different path")
    assert [s["user"]["content"] for s in updated["steps"]] == ["action 0", "a different path"]
    assert updated["current_step"] == 2


def test_set_current_step_out_of_range():
    story = storage.create_story("Quest")
    _step(story["id"])
    with pytest.raises(ValueError):
        storage.set_current_step(story["id"], 2)
    with pytest.raises(ValueError):
        storage.set_current_step(story["id"], 0)


# ── Title / delete ───────────────────────────────────────


def test_update_title():
    story = storage.create_story("Old")
    assert storage.update_title(story["id"], "New")["title"] == "New"
    assert storage.get_story(story["id"])["title"] == "New"


def test_delete_story():
    story = storage.create_story()
    assert storage.delete_story(story["id"]) is True
    assert storage.get_story(story["id"]) is None
    assert storage.delete_story(story["id"]) is False


# ── Replay ───────────────────────────────────────────────


def test_replay_turns_in_order():
    story = storage.create_story("Quest")
    _step(story["id"], user="u1", assistant="a1")
    story = _step(story["id"], user="u2", assistant="a2")
    turns = storage.replay_turns(story)
    assert [(t.role, t.content) for t in turns] == [
        ("user", "u1"), ("assistant", "a1"), ("user", "u2"), ("assistant", "a2"),
    ]


def test_replay_stops_at_current_step():
    story = storage.create_story("Quest")
    _step(story["id"], user="u1", assistant="a1")
    _step(story["id"], user="u2", assistant="a2")
    story = storage.set_current_step(story["id"], 1)
    assert [t.content for t in storage.replay_turns(story)] == ["u1", "a1"]
    assert len(storage.replay_turns(story, step=2)) == 4
