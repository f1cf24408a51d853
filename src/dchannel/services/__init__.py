"""Feed engine services: publishing, reading, polling and their backends."""

from .directory import DirectoryStore
from .identity import IdentityContext, IdentityStore
from .poller import FollowPoller, PollerRegistry
from .publisher import FeedPublisher
from .reader import FeedReader

__all__ = [
    "DirectoryStore",
    "FeedPublisher",
    "FeedReader",
    "FollowPoller",
    "IdentityContext",
    "IdentityStore",
    "PollerRegistry",
]
