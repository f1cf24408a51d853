"""Feed publisher: assembles, encrypts and uploads chained post bundles.

Every publish runs under one process-wide lock covering the read of the
previous head, the upload and the head update, so concurrent publishes can
never chain onto the same predecessor. The previous head always comes from
the local channel cache; the naming service is only written to, in the
background, after the cache has moved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from dchannel.core.errors import (
    DChannelError,
    DuplicateEntryError,
    EncryptionError,
    FilenameConflictError,
    PersistenceError,
    RecipientParseError,
    StorageError,
    UploadError,
)
from dchannel.core.settings import Settings, settings
from dchannel.db.time import utcnow
from dchannel.schemas.directory import ChannelRecord
from dchannel.schemas.feed import (
    META_FILE,
    POST_FILE,
    RESERVED_FILENAMES,
    Attachment,
    Meta,
    Post,
    PostRecord,
    PublishRequest,
)
from dchannel.services.crypto import X25519Recipient, encrypt_bytes, parse_recipient
from dchannel.services.directory import DirectoryStore
from dchannel.services.identity import IdentityContext
from dchannel.services.storage import NamingService, ObjectStore

logger = logging.getLogger(__name__)


def effective_recipients(
    requested: Sequence[str], own: X25519Recipient
) -> list[X25519Recipient]:
    """Parse ``requested`` and add the author's own key when it is non-empty.

    An empty request yields an empty set: the post is public and stays
    unencrypted.
    """
    recipients: list[X25519Recipient] = []
    for text in requested:
        try:
            recipient = parse_recipient(text)
        except RecipientParseError as err:
            raise RecipientParseError(err.message, stage="recipients") from err
        if recipient not in recipients:
            recipients.append(recipient)
    if recipients and own not in recipients:
        recipients.append(own)
    return recipients


def check_attachment_names(attachments: Sequence[Attachment]) -> None:
    seen: set[str] = set()
    for attachment in attachments:
        name = attachment.filename
        if name in RESERVED_FILENAMES:
            raise FilenameConflictError(
                f"attachment name {name!r} is reserved", stage="attachments"
            )
        if name in seen:
            raise FilenameConflictError(
                f"duplicate attachment name {name!r}", stage="attachments"
            )
        seen.add(name)


class FeedPublisher:
    """Publishes posts onto self-owned channels."""

    def __init__(
        self,
        identity: IdentityContext,
        directory: DirectoryStore,
        objects: ObjectStore,
        naming: NamingService,
        config: Settings | None = None,
    ) -> None:
        self.identity = identity
        self.directory = directory
        self.objects = objects
        self.naming = naming
        self.config = config or settings
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()

    async def publish(self, request: PublishRequest) -> PostRecord:
        """Publish one post and advance the channel head.

        Args:
            request: Post content, attachments, recipients and target channel.

        Returns:
            The new bundle address, the channel's external name and the
            address it was chained onto.

        Raises:
            KeyNotReady: The identity is locked.
            RecipientParseError: A requested recipient is malformed.
            FilenameConflictError: An attachment name is reserved or repeated.
            EncryptionError: Encrypting the post or an attachment failed.
            UploadError: The object store rejected the bundle.
            PersistenceError: The new head could not be recorded locally.
        """
        keyring = self.identity.require()
        label = request.channel or self.config.default_channel

        async with self._lock:
            recipients = effective_recipients(request.to, keyring.recipient)
            check_attachment_names(request.attachments)

            channel = await self._ensure_channel(label)
            previous = "" if request.genesis else channel.latest_address
            files = self._assemble(request, recipients, previous)

            try:
                address = await self.objects.upload(files)
            except UploadError:
                raise
            except DChannelError as err:
                raise UploadError(err.message, stage="upload") from err

            try:
                await asyncio.to_thread(self.directory.set_channel_head, label, address)
            except DChannelError as err:
                logger.error("Uploaded %s but failed to record it as head of %s", address, label)
                raise PersistenceError(err.message, stage="persist") from err

            logger.info("Published %s on channel %s (next=%s)", address, label, previous or "-")
            self._schedule_name_publish(channel, address)

        return PostRecord(
            cid=address, name=channel.external_name, channel=label, next=previous
        )

    async def create_channel(self, label: str) -> ChannelRecord:
        """Create a naming key and channel row for ``label``.

        Raises:
            DuplicateEntryError: The channel already exists.
        """
        async with self._lock:
            if await asyncio.to_thread(self.directory.get_channel, label) is not None:
                raise DuplicateEntryError(f"channel {label} already exists", stage="persist")
            return await self._ensure_channel(label)

    async def remove_channel(self, label: str) -> ChannelRecord:
        """Forget a channel locally, then drop its naming key (best-effort)."""
        async with self._lock:
            channel = await asyncio.to_thread(self.directory.remove_channel, label)
        try:
            await self.naming.remove(channel.key_handle)
        except DChannelError as err:
            logger.warning("Failed to remove naming key %s: %s", channel.key_handle, err)
        return channel

    async def _ensure_channel(self, label: str) -> ChannelRecord:
        channel = await asyncio.to_thread(self.directory.get_channel, label)
        if channel is not None:
            return channel
        try:
            key = await self.naming.generate(label)
        except DChannelError as err:
            raise StorageError(
                f"failed to create naming key for {label}: {err.message}", stage="identity"
            ) from err
        return await asyncio.to_thread(
            self.directory.create_channel, label, key.name, key.key_handle
        )

    @staticmethod
    def _assemble(
        request: PublishRequest, recipients: list[X25519Recipient], previous: str
    ) -> dict[str, bytes]:
        post = Post(
            body=request.body,
            type=request.type,
            attachments=[attachment.filename for attachment in request.attachments],
        )
        meta = Meta(
            to=[str(recipient) for recipient in recipients],
            next=previous,
            created_at=utcnow().isoformat(),
        )

        files: dict[str, bytes] = {}
        try:
            post_data = post.model_dump_json().encode("utf-8")
            files[POST_FILE] = encrypt_bytes(recipients, post_data) if recipients else post_data
            for attachment in request.attachments:
                files[attachment.filename] = (
                    encrypt_bytes(recipients, attachment.data, armored=False)
                    if recipients
                    else attachment.data
                )
        except EncryptionError as err:
            raise EncryptionError(err.message, stage="encrypt") from err
        files[META_FILE] = meta.model_dump_json().encode("utf-8")
        return files

    def _schedule_name_publish(self, channel: ChannelRecord, address: str) -> None:
        task = asyncio.create_task(self._publish_name(channel, address))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _publish_name(self, channel: ChannelRecord, address: str) -> None:
        try:
            await asyncio.wait_for(
                self.naming.publish(channel.key_handle, address),
                timeout=self.config.name_publish_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Name publish for %s -> %s timed out after %.0fs",
                channel.external_name,
                address,
                self.config.name_publish_timeout_seconds,
            )
        except DChannelError as err:
            logger.warning(
                "Name publish for %s -> %s failed: %s", channel.external_name, address, err
            )
        else:
            logger.info("Name %s now points at %s", channel.external_name, address)

    @property
    def pending(self) -> int:
        """Number of name publications still running."""
        return len(self._background)

    async def drain(self) -> None:
        """Wait for outstanding name publications to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
