"""Follow list, peer address book and message log endpoints."""

from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Query, status

from dchannel.core.security import verify_peer
from dchannel.schemas.common import Envelope
from dchannel.schemas.directory import FollowCreate, PeerCreate
from dchannel.services.directory import ALL_ROWS, DEFAULT_PAGE_SIZE

from ..dependencies import DirectoryDep

router = APIRouter(tags=["directory"])

SkipQuery = Annotated[int, Query(ge=0)]
LimitQuery = Annotated[int, Query(ge=ALL_ROWS, description="-1 returns every row")]


@router.get("/follows")
async def list_follows(
    directory: DirectoryDep, skip: SkipQuery = 0, limit: LimitQuery = DEFAULT_PAGE_SIZE
) -> Envelope:
    return Envelope.ok(await asyncio.to_thread(directory.list_follows, skip, limit))


@router.post("/follows", status_code=status.HTTP_201_CREATED)
async def follow(payload: FollowCreate, directory: DirectoryDep) -> Envelope:
    """Start following a mutable name."""
    record = await asyncio.to_thread(
        directory.add_follow, payload.display_name, payload.external_name
    )
    return Envelope.ok(record)


@router.delete("/follows/{follow_id}")
async def unfollow(follow_id: int, directory: DirectoryDep) -> Envelope:
    return Envelope.ok(await asyncio.to_thread(directory.unfollow, follow_id))


@router.get("/peers")
async def list_peers(
    directory: DirectoryDep, skip: SkipQuery = 0, limit: LimitQuery = DEFAULT_PAGE_SIZE
) -> Envelope:
    return Envelope.ok(await asyncio.to_thread(directory.list_peers, skip, limit))


@router.post("/peers", status_code=status.HTTP_201_CREATED)
async def add_peer(payload: PeerCreate, directory: DirectoryDep) -> Envelope:
    """Add a peer to the address book.

    When a peer public key is supplied the peer id must derive from it.

    Raises:
        PeerIdMismatch: The peer id does not match the public key.
    """
    peer_id = payload.peer_id
    if payload.peer_pubkey:
        peer_id = verify_peer(payload.peer_pubkey, payload.peer_id)
    record = await asyncio.to_thread(
        directory.add_peer,
        payload.display_name,
        payload.recipient,
        payload.peer_pubkey,
        peer_id,
    )
    return Envelope.ok(record)


@router.delete("/peers/{peer_id}")
async def remove_peer(peer_id: int, directory: DirectoryDep) -> Envelope:
    return Envelope.ok(await asyncio.to_thread(directory.remove_peer, peer_id))


@router.get("/messages")
async def list_messages(
    directory: DirectoryDep, skip: SkipQuery = 0, limit: LimitQuery = DEFAULT_PAGE_SIZE
) -> Envelope:
    return Envelope.ok(await asyncio.to_thread(directory.list_messages, skip, limit))


@router.get("/directory")
async def export_directory(directory: DirectoryDep) -> Envelope:
    """Return follows and peers as one document."""
    return Envelope.ok(await asyncio.to_thread(directory.export_document))
