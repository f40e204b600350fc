"""Admin endpoints."""

from fastapi import APIRouter, Depends

from wabridge.sessions.registry import ConnectionRegistry

from .connections import get_registry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/connections/logout-all")
def logout_all(registry: ConnectionRegistry = Depends(get_registry)) -> dict:
    """Log out every connection; failures are reported, not raised."""
    failures = registry.logout_all()
    return {"status": "ok", "failures": failures}
