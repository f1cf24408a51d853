"""Self-owned channel endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, status

from dchannel.schemas.common import Envelope
from dchannel.schemas.directory import ChannelCreate

from ..dependencies import DirectoryDep, PublisherDep

router = APIRouter(prefix="/channels", tags=["channels"])


@router.get("")
async def list_channels(directory: DirectoryDep) -> Envelope:
    return Envelope.ok(await asyncio.to_thread(directory.list_channels))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_channel(payload: ChannelCreate, publisher: PublisherDep) -> Envelope:
    """Create a channel backed by a new naming key.

    Returns:
        Envelope wrapping the channel, including the external name followers use.
    """
    return Envelope.ok(await publisher.create_channel(payload.name))


@router.delete("/{name}")
async def remove_channel(name: str, publisher: PublisherDep) -> Envelope:
    return Envelope.ok(await publisher.remove_channel(name))
