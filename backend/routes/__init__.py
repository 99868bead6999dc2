"""FastAPI endpoints.

REST endpoints live under /api: health, model registry (list + refresh) and
story CRUD. The game itself runs over the websocket at /ws/{session_id},
which is mounted without the /api prefix.
"""

from fastapi import APIRouter

from .chat import router as chat_router
from .settings import router as settings_router
from .stories import router as stories_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(stories_router)

ws_router = APIRouter()
ws_router.include_router(chat_router)
