"""FastAPI routers for the groups domain."""

from __future__ import annotations

from fastapi import APIRouter

from grouptalk.groups.api import groups, join_requests, members, messages

router = APIRouter(prefix="/api")

router.include_router(groups.router)
router.include_router(members.router)
router.include_router(join_requests.router)
router.include_router(messages.router)
