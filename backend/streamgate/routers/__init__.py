"""
API Routers package.
"""

from .chat import router as chat_router
from .conversations import router as conversations_router
from .artifacts import router as artifacts_router
from .updates import router as updates_router

__all__ = [
    "chat_router",
    "conversations_router",
    "artifacts_router",
    "updates_router"
]
