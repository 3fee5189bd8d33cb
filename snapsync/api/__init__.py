"""API endpoints module."""

from fastapi import APIRouter

from snapsync.api.backup import router as backup_router
from snapsync.api.wizard import router as wizard_router

api_router = APIRouter(prefix="/api")

api_router.include_router(backup_router)
api_router.include_router(wizard_router)

__all__ = ["api_router"]
