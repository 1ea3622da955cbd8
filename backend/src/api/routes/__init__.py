"""API route modules."""
from api.routes.system import router as system_router
from api.routes.readings import router as readings_router
from api.routes.machines import router as machines_router
from api.routes.metrics import router as metrics_router

__all__ = [
    "system_router",
    "readings_router",
    "machines_router",
    "metrics_router",
]
