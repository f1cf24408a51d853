"""Reading bundles back from the object store and walking feed chains."""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from dchannel.core.errors import (
    DChannelError,
    DecryptionError,
    NoMatchingIdentity,
    ResolutionError,
    StorageError,
)
from dchannel.core.settings import Settings, settings
from dchannel.schemas.feed import META_FILE, POST_FILE, FeedEntry, Meta, Post
from dchannel.services.crypto import Identity, decrypt_bytes, is_encrypted
from dchannel.services.identity import IdentityContext
from dchannel.services.storage import NamingService, ObjectStore, normalize_address

logger = logging.getLogger(__name__)


class FeedReader:
    """Fetches and decrypts bundles using the unlocked identity, if any."""

    def __init__(
        self,
        identity: IdentityContext,
        objects: ObjectStore,
        naming: NamingService,
        config: Settings | None = None,
    ) -> None:
        self.identity = identity
        self.objects = objects
        self.naming = naming
        self.config = config or settings

    def _identities(self) -> list[Identity]:
        # A locked reader can still read public posts through passthrough.
        return list(self.identity.require().identities) if self.identity.ready else []

    async def read(self, address: str, subpath: str = "") -> bytes | list[str]:
        """Return a decrypted file, or the names inside a directory.

        The address is pinned after a successful read; pin failures are only
        logged.
        """
        content = await self.objects.get(address, subpath)
        if isinstance(content, bytes):
            content = decrypt_bytes(self._identities(), content)
        await self._pin(address)
        return content

    async def _pin(self, address: str) -> None:
        try:
            await self.objects.pin(address)
        except DChannelError as err:
            logger.warning("Failed to pin %s: %s", address, err)

    async def load_entry(self, address: str) -> FeedEntry:
        """Load the meta and, when readable, the post of one bundle."""
        address = normalize_address(address)
        raw_meta = await self.objects.get(address, META_FILE)
        raw_post = await self.objects.get(address, POST_FILE)
        if not isinstance(raw_meta, bytes) or not isinstance(raw_post, bytes):
            raise StorageError(f"bundle {address} is malformed")

        try:
            meta = Meta.model_validate_json(raw_meta)
        except ValidationError as err:
            raise StorageError(f"bundle {address} has invalid meta: {err}") from err

        encrypted = is_encrypted(raw_post)
        post: Post | None
        try:
            post = Post.model_validate_json(decrypt_bytes(self._identities(), raw_post))
        except NoMatchingIdentity:
            post = None
        except (DecryptionError, ValidationError) as err:
            logger.warning("Bundle %s has an unreadable post: %s", address, err)
            post = None
        return FeedEntry(cid=address, meta=meta, post=post, encrypted=encrypted)

    async def walk(self, head: str, limit: int | None = None) -> list[FeedEntry]:
        """Follow ``next`` pointers from ``head`` back towards genesis.

        Raises:
            StorageError: The chain loops back onto an already visited bundle.
        """
        entries: list[FeedEntry] = []
        seen: set[str] = set()
        address = normalize_address(head)
        while address and (limit is None or len(entries) < limit):
            if address in seen:
                raise StorageError(f"feed chain loops back to {address}")
            seen.add(address)
            entry = await self.load_entry(address)
            entries.append(entry)
            address = normalize_address(entry.meta.next)
        return entries

    async def resolve(self, name: str) -> str:
        try:
            return await asyncio.wait_for(
                self.naming.resolve(name, use_cache=self.config.name_resolve_use_cache),
                timeout=self.config.name_resolve_timeout_seconds,
            )
        except TimeoutError as err:
            raise ResolutionError(f"resolving {name} timed out") from err
