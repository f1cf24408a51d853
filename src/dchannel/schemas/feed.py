"""Feed bundle documents and publish results."""
from __future__ import annotations

from pydantic import BaseModel, Field

POST_FILE = "post.json"
META_FILE = "meta.json"
RESERVED_FILENAMES = frozenset({POST_FILE, META_FILE})


class Post(BaseModel):
    """Content of ``post.json``; encrypted when the post has recipients."""

    body: str = ""
    type: str = "plaintext"
    attachments: list[str] = Field(default_factory=list)


class Meta(BaseModel):
    """Content of ``meta.json``; never encrypted so the chain can be walked."""

    to: list[str] = Field(default_factory=list)
    next: str = ""
    created_at: str = ""


class Attachment(BaseModel):
    """Named attachment supplied to a publish call."""

    filename: str
    data: bytes


class PublishRequest(BaseModel):
    """Everything the publisher needs to assemble one post."""

    channel: str | None = None
    body: str = ""
    type: str = "plaintext"
    attachments: list[Attachment] = Field(default_factory=list)
    to: list[str] = Field(default_factory=list)
    genesis: bool = False


class PostRecord(BaseModel):
    """Result of a successful publish."""

    cid: str
    name: str
    channel: str
    next: str = ""


class FeedEntry(BaseModel):
    """One bundle read back from the store.

    ``post`` is None when the reader holds no identity able to decrypt it.
    """

    cid: str
    meta: Meta
    post: Post | None = None
    encrypted: bool = False
