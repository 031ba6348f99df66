# leadrelay/routes/__init__.py
"""
API route handlers organized by domain.
"""

from leadrelay.routes.evolution import router as evolution_router
from leadrelay.routes.health import router as health_router
from leadrelay.routes.logs import router as logs_router
from leadrelay.routes.public import router as public_router

__all__ = [
    "evolution_router",
    "health_router",
    "logs_router",
    "public_router",
]
