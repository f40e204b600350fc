"""Health and status endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/status")
def status(request: Request) -> dict:
    """Loaded settings and number of live connections."""
    return {
        "settings": request.app.state.settings.as_public_dict(),
        "connections": len(request.app.state.registry),
    }
