# EVI Auth API Routers
from evi_auth.api.auth import router as auth_router
from evi_auth.api.health import router as health_router

__all__ = ["auth_router", "health_router"]
