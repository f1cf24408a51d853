"""Pydantic schemas shared by the services and the API."""

from .common import Envelope
from .directory import ChannelRecord, FollowRecord, MessageRecord, PeerRecord
from .feed import Attachment, FeedEntry, Meta, Post, PostRecord, PublishRequest

__all__ = [
    "Attachment",
    "ChannelRecord",
    "Envelope",
    "FeedEntry",
    "FollowRecord",
    "MessageRecord",
    "Meta",
    "PeerRecord",
    "Post",
    "PostRecord",
    "PublishRequest",
]
