"""Version 1 API endpoints."""

from .endpoints import (
    channels_router,
    directory_router,
    feed_router,
    identity_router,
    listen_router,
    system_router,
)

__all__ = [
    "channels_router",
    "directory_router",
    "feed_router",
    "identity_router",
    "listen_router",
    "system_router",
]
