"""File-based JSON storage for played stories.

Data layout:
  data/
    stories/
      <id>.json     One story: title, ordered steps, current step, timestamps

A step is one completed chat turn: the user turn, the sanitized assistant
turn, and the last UI component code emitted during that turn (if any).
Turns are stored in their pydantic JSON form so they can be replayed into a
ConversationHistory unchanged.

current_step marks how far the story has been played; loading a story
replays steps 1..current_step. Adding a step moves current_step to it.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
    stories_dir,
)

from .stories import (  # noqa: F401
    TITLE_LENGTH,
    add_step,
    create_story,
    delete_story,
    get_story,
    list_stories,
    replay_turns,
    set_current_step,
    update_title,
)
