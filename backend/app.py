import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from backend import storage
from backend.routes import router, ws_router
from pathweaver.config import get_settings
from pathweaver.llm import ChatProvider, ProviderClient
from pathweaver.orchestrator import Orchestrator
from pathweaver.registry import ModelRegistry
from pathweaver.session import SessionManager

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"
DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(data_dir: Path | None = None, provider: ChatProvider | None = None) -> FastAPI:
    settings = get_settings()
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)

    provider = provider or ProviderClient.from_settings(settings)
    registry = ModelRegistry(provider, settings.default_model, settings.min_completion_tokens)
    orchestrator = Orchestrator.from_settings(provider, registry, settings)
    sessions = SessionManager(orchestrator, settings.history_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.refresh()
        yield
        await sessions.close_all()

    app = FastAPI(title="Pathweaver", lifespan=lifespan)
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.sessions = sessions

    app.include_router(router, prefix="/api")
    app.include_router(ws_router)

    if STATIC_DIR.exists() and not os.getenv("VITE_DEV", ""):
        # Serve static assets (JS, CSS, etc.)
        app.mount("/assets", StaticFiles(directory=STATIC_DIR / "assets"), name="assets")

        # SPA fallback: all non-API routes serve index.html
        @app.get("/{path:path}")
        async def spa_fallback(path: str):
            return FileResponse(STATIC_DIR / "index.html")

    logger.info("App created (data_dir=%s, default_model=%s)", resolved, settings.default_model)
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
