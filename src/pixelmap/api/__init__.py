"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. Health and auth routers are open; pixel map and
user routers require a bearer token.
"""

from fastapi import APIRouter, Depends

from pixelmap.api.auth import router as auth_router
from pixelmap.api.health import router as health_router
from pixelmap.api.pixelmap import router as pixelmap_router
from pixelmap.api.user import router as user_router
from pixelmap.auth.dependencies import get_current_user

_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes
api_router.include_router(pixelmap_router, tags=["pixelmap"], dependencies=_auth)
api_router.include_router(user_router, tags=["user"], dependencies=_auth)
