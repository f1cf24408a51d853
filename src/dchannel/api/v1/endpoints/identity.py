"""Identity unlock and rotation endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter
from pydantic import BaseModel, Field

from dchannel.schemas.common import Envelope

from ..dependencies import IdentityDep

router = APIRouter(prefix="/identity", tags=["identity"])


class UnlockRequest(BaseModel):
    password: str = Field(..., min_length=1)


class RotateRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    password: str | None = Field(None, description="New passphrase; keeps the old one if unset")


@router.post("/unlock")
async def unlock_identity(payload: UnlockRequest, identity: IdentityDep) -> Envelope:
    """Unlock the identity file, creating it on first use.

    Returns:
        Envelope wrapping the current recipient key.
    """
    keyring = await asyncio.to_thread(identity.unlock, payload.password)
    return Envelope.ok(str(keyring.recipient))


@router.post("/rotate")
async def rotate_identity(payload: RotateRequest, identity: IdentityDep) -> Envelope:
    """Add a fresh keypair and make it the current recipient."""
    keyring = await asyncio.to_thread(identity.rotate, payload.old_password, payload.password)
    return Envelope.ok(str(keyring.recipient))


@router.get("/recipient")
async def get_recipient(identity: IdentityDep) -> Envelope:
    return Envelope.ok(str(identity.require().recipient))
