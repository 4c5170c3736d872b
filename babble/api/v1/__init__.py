"""
API v1 Router

All chat endpoints are prefixed with /babble.
"""

from fastapi import APIRouter

from . import posts, realtime, topics

router = APIRouter()

router.include_router(topics.router, prefix="/topics", tags=["Topics"])
router.include_router(posts.router, prefix="/topics/{topic_id}/posts", tags=["Posts"])
router.include_router(realtime.router, tags=["Realtime"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "babble",
        "version": "0.1.0",
        "endpoints": [
            "/babble/topics",
            "/babble/topics/{topic_id}",
            "/babble/topics/{topic_id}/posts",
            "/babble/topics/pm/{user}",
            "/babble/ws",
        ],
    }
