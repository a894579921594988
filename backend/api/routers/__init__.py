"""
API Routers package.

Each module contains a FastAPI router for one synchronizer design.
"""

from .sessions import router as sessions_router
from .relay import router as relay_router

__all__ = [
    "sessions_router",
    "relay_router",
]
