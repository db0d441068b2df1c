"""Shared FastAPI dependencies for route handlers.

Components are created once by the application factory and stored on
``app.state``; handlers reach them through these functions so tests can
substitute them with ``app.dependency_overrides``.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from ots.services.metrics import SecretMetrics
from ots.services.scheduler import SchedulerService
from ots.services.secret_service import SecretService
from ots.services.secret_store import SecretStore


def get_engine(request: Request) -> AsyncEngine:
    return request.app.state.engine


def get_secret_store(request: Request) -> SecretStore:
    return request.app.state.secret_store


def get_secret_service(request: Request) -> SecretService:
    return request.app.state.secret_service


def get_metrics(request: Request) -> SecretMetrics:
    return request.app.state.metrics


def get_scheduler(request: Request) -> SchedulerService:
    return request.app.state.scheduler
