"""SQLAlchemy models for the local directory store."""

from .channel import Channel
from .directory import Follow, Message, Peer

__all__ = [
    "Channel",
    "Follow",
    "Message",
    "Peer",
]
