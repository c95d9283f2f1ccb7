"""FastAPI application factory.

Main entry point for the Worksheets Web API.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from worksheets.config.app_config import load_app_config
from worksheets.db.database import init_db
from worksheets.web.routes import (
    ai_router,
    assets_router,
    exercises_router,
    health_router,
    responses_router,
)
from worksheets.web.routes.health import API_VERSION

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    config = load_app_config()
    db_path = Path(config.storage.db_path)
    init_db(db_path)
    logger.info(
        "api_startup",
        db_path=str(db_path.absolute()),
        provider=config.chat.default_provider,
    )
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Worksheets API",
        description="Authoring, locking and filling in multi-page exercises",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(exercises_router)
    app.include_router(responses_router)
    app.include_router(assets_router)
    app.include_router(ai_router)

    return app


# Default app instance for uvicorn
app = create_app()
