"""Publishing and reading feed bundles."""

from __future__ import annotations

import mimetypes
from typing import Annotated

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import Response

from dchannel.schemas.common import Envelope
from dchannel.schemas.feed import Attachment, PublishRequest
from dchannel.services.storage import IPFS_PREFIX

from ..dependencies import PublisherDep, ReaderDep

router = APIRouter(tags=["feed"])


def _split_recipients(values: list[str] | None) -> list[str]:
    # Accept both repeated form fields and comma separated lists.
    recipients: list[str] = []
    for value in values or []:
        recipients.extend(part.strip() for part in value.split(",") if part.strip())
    return recipients


@router.post("/publish")
async def publish_post(
    publisher: PublisherDep,
    body: Annotated[str, Form()] = "",
    post_type: Annotated[str, Form(alias="type")] = "plaintext",
    to: Annotated[list[str] | None, Form()] = None,
    channel: Annotated[str | None, Form()] = None,
    genesis: Annotated[bool, Form()] = False,
    attachments: Annotated[list[UploadFile] | None, File()] = None,
) -> Envelope:
    """Publish a post onto a self-owned channel.

    Args:
        publisher: Feed publisher held by the application.
        body: Post body.
        post_type: Free-form content type of the body.
        to: Recipient keys; an empty list publishes a public post.
        channel: Channel label, defaults to the configured default channel.
        genesis: Start a new chain instead of linking to the current head.
        attachments: Files stored next to the post under their own names.

    Returns:
        Envelope wrapping the new post record.
    """
    files = [
        Attachment(filename=upload.filename or "", data=await upload.read())
        for upload in attachments or []
    ]
    record = await publisher.publish(
        PublishRequest(
            channel=channel,
            body=body,
            type=post_type,
            attachments=files,
            to=_split_recipients(to),
            genesis=genesis,
        )
    )
    return Envelope.ok(record)


@router.get("/ipfs/{cid}", response_model=None)
@router.get("/ipfs/{cid}/{path:path}", response_model=None)
async def read_object(cid: str, reader: ReaderDep, path: str = "") -> Envelope | Response:
    """Return a (decrypted) file from a bundle, or the names in a directory."""
    content = await reader.read(cid, path)
    if isinstance(content, list):
        return Envelope.ok(content)
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type)


@router.get("/ipns/{name}")
async def resolve_name(name: str, reader: ReaderDep) -> Envelope:
    """Resolve a mutable name to the bundle it currently points at."""
    address = await reader.resolve(name)
    return Envelope.ok({"path": IPFS_PREFIX + address})


@router.get("/feed/{cid}")
async def walk_feed(
    cid: str,
    reader: ReaderDep,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> Envelope:
    """Return the chain of posts ending at ``cid``, newest first."""
    return Envelope.ok(await reader.walk(cid, limit))
