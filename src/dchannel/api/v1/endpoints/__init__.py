"""API endpoint modules for version 1."""

from .channels import router as channels_router
from .directory import router as directory_router
from .feed import router as feed_router
from .identity import router as identity_router
from .listen import router as listen_router
from .system import router as system_router

__all__ = [
    "channels_router",
    "directory_router",
    "feed_router",
    "identity_router",
    "listen_router",
    "system_router",
]
