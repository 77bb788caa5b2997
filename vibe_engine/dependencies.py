"""FastAPI dependency functions for injection into endpoint handlers.

The provider service and board manager are created once during the app
lifespan, stored on ``app.state`` and simply looked up here.
"""

from __future__ import annotations

from fastapi import Request

from vibe_engine.core.llm.service import ProviderService
from vibe_engine.engine.board_manager import BoardManager


def get_provider_service(request: Request) -> ProviderService:
    """Return the process-wide :class:`ProviderService` stored on ``app.state``."""
    return request.app.state.provider_service


def get_board_manager(request: Request) -> BoardManager:
    """Return the :class:`BoardManager` stored on ``app.state``."""
    return request.app.state.board_manager
