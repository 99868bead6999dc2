"""Story CRUD endpoints."""

from fastapi import APIRouter, HTTPException

from backend import storage

from .models import CreateStory, UpdateStory

router = APIRouter()


@router.get("/stories")
async def list_stories():
    """List story summaries, most recently played first."""
    return storage.list_stories()


@router.post("/stories", status_code=201)
async def create_story(body: CreateStory):
    """Start an empty story."""
    return storage.create_story(body.title)


@router.get("/stories/{story_id}")
async def get_story(story_id: str):
    """Get a story with all its steps."""
    story = storage.get_story(story_id)
    if not story:
        raise HTTPException(404, "Story not found")
    return story


@router.patch("/stories/{story_id}")
async def update_story(story_id: str, body: UpdateStory):
    """Rename a story or move its current step."""
    story = storage.get_story(story_id)
    if not story:
        raise HTTPException(404, "Story not found")
    if body.title is not None:
        story = storage.update_title(story_id, body.title)
    if body.current_step is not None:
        try:
            story = storage.set_current_step(story_id, body.current_step)
        except ValueError as e:
            raise HTTPException(400, str(e))
    return story


@router.delete("/stories/{story_id}")
async def delete_story(story_id: str):
    """Delete a story."""
    if not storage.delete_story(story_id):
        raise HTTPException(404, "Story not found")
    return {"ok": True}
