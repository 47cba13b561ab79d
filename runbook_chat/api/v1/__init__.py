"""
API v1 Router

Chat endpoints are prefixed with /chat, authentication with /auth.
"""

from fastapi import APIRouter
from . import auth, channels, users

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(channels.router, prefix="/chat/channels", tags=["Channels"])
router.include_router(users.router, prefix="/chat/users", tags=["Users"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/auth",
            "/chat/channels",
            "/chat/users",
            "/ws",
        ],
    }
