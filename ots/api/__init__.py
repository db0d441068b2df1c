"""API routers for the one-time secret service."""

from fastapi import APIRouter

from ots.api import secrets, system

api_router = APIRouter(prefix="/api")
api_router.include_router(secrets.router, prefix="/secrets", tags=["secrets"])
api_router.include_router(system.router, tags=["system"])

system_router = system.router

__all__ = ["api_router", "system_router"]
