"""Database models for the one-time secret service."""

from ots.models.secret import Secret

__all__ = ["Secret"]
