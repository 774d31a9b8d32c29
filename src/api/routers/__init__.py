"""API routers for the standards-mastery service."""

from src.api.routers import mastery_router

__all__ = [
    "mastery_router",
]
