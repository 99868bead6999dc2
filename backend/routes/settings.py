"""Health check and model registry endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


def _models_view(request: Request) -> dict:
    registry = request.app.state.registry
    fallback = list(registry.fallback)
    return {
        "models": [m.model_dump() for m in registry.models],
        "fallback": fallback,
        "recommended": fallback[0],
    }


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/models")
async def list_models(request: Request):
    """Eligible models and the current fallback order."""
    return _models_view(request)


@router.post("/models/refresh")
async def refresh_models(request: Request):
    """Re-query the provider's model list. Keeps the old list on failure."""
    await request.app.state.registry.refresh()
    return _models_view(request)
