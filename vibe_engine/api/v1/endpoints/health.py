from fastapi import APIRouter, Request

from vibe_engine import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    manager = getattr(request.app.state, "board_manager", None)
    return {
        "status": "healthy",
        "service": "vibe-engine",
        "version": __version__,
        "boards": len(manager.list_boards()) if manager is not None else 0,
    }
