"""System information endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from dchannel.core.settings import settings
from dchannel.schemas.common import Envelope

from ..dependencies import IdentityDep, RegistryDep

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config(identity: IdentityDep, registry: RegistryDep) -> Envelope:
    """Return a sanitized snapshot of runtime configuration.

    Excludes file paths and connection strings.
    """
    return Envelope.ok(
        {
            "app": {"name": settings.app_name, "version": settings.app_version},
            "store_backend": settings.store_backend,
            "default_channel": settings.default_channel,
            "poll_interval_seconds": settings.poll_interval_seconds,
            "identity_unlocked": identity.ready,
            "subscriptions": len(registry.active()),
        }
    )
