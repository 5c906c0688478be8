"""
API v1 Router

Resources are scoped by the caller's active organization, carried by the
bearer credential rather than the path.
"""

from fastapi import APIRouter
from . import direct_messages, group_messages, groups, organizations, realtime, users

router = APIRouter()

router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(organizations.router, prefix="/orgs", tags=["Organizations"])
router.include_router(groups.router, prefix="/groups", tags=["Groups"])
router.include_router(direct_messages.router, prefix="/direct-messages", tags=["Direct Messages"])
router.include_router(group_messages.router, prefix="/group-messages", tags=["Group Messages"])
router.include_router(realtime.router, tags=["Realtime"])


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/users",
            "/orgs",
            "/groups",
            "/direct-messages",
            "/group-messages",
            "/ws",
        ],
    }
