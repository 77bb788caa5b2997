from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vibe_engine import __version__
from vibe_engine.api.v1.middleware.error_handler import ErrorHandlerMiddleware
from vibe_engine.api.v1.middleware.logging_middleware import LoggingMiddleware
from vibe_engine.api.v1.router import v1_router
from vibe_engine.config import settings
from vibe_engine.utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(debug=settings.debug)
    logger = get_logger("startup")
    logger.info("Starting Vibe task engine", version=__version__)

    from vibe_engine.core.llm.service import ProviderService
    from vibe_engine.engine.board_manager import BoardManager
    from vibe_engine.storage.task_store import create_task_store

    service = ProviderService(settings)
    await service.init()
    app.state.provider_service = service

    manager = BoardManager(service, create_task_store(settings.store_dir), settings)
    restored = await manager.restore()
    app.state.board_manager = manager
    logger.info("Board manager initialized", restored_boards=len(restored))

    yield

    logger.info("Shutting down")
    await manager.shutdown()
    await service.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Vibe Task Engine",
        description="Multi-agent task orchestration with AI-provider fallback",
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware is applied in reverse order -- outermost first.
    # 1. CORS (outermost -- handles preflight before anything else)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # 2. Error handler (catches exceptions from inner layers)
    app.add_middleware(ErrorHandlerMiddleware)
    # 3. Request/response logger (innermost -- logs timing around handler)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()
