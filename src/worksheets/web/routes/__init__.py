"""Route handlers for the Web API."""

from worksheets.web.routes.ai import router as ai_router
from worksheets.web.routes.assets import router as assets_router
from worksheets.web.routes.exercises import router as exercises_router
from worksheets.web.routes.health import router as health_router
from worksheets.web.routes.responses import router as responses_router

__all__ = [
    "ai_router",
    "assets_router",
    "exercises_router",
    "health_router",
    "responses_router",
]
