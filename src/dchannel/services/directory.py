"""Local directory store: follows, peers, self-owned channels and messages.

Rows are never hard-deleted for follows and peers; removal flips ``deleted``
and re-adding the same external name revives the row. Every method opens its
own short session and returns detached pydantic records, so callers never
hold ORM instances across threads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from dchannel.core.errors import (
    DChannelError,
    DuplicateEntryError,
    NotFoundError,
    PersistenceError,
)
from dchannel.models import Channel, Follow, Message, Peer
from dchannel.schemas.directory import (
    ChannelRecord,
    FollowRecord,
    MessageRecord,
    PeerRecord,
)

logger = logging.getLogger(__name__)

ALL_ROWS = -1
DEFAULT_PAGE_SIZE = 10


def _page(stmt: Any, skip: int, limit: int) -> Any:
    stmt = stmt.offset(max(skip, 0))
    if limit != ALL_ROWS:
        stmt = stmt.limit(max(limit, 0))
    return stmt


class DirectoryStore:
    """Persistence operations over the directory tables."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except DChannelError:
            session.rollback()
            raise
        except IntegrityError as err:
            session.rollback()
            raise DuplicateEntryError(f"entry already exists: {err.orig}", stage="persist") from err
        except SQLAlchemyError as err:
            session.rollback()
            logger.error("Directory store operation failed: %s", err, exc_info=True)
            raise PersistenceError(f"directory store failure: {err}", stage="persist") from err
        finally:
            session.close()

    # Follows -----------------------------------------------------------------

    def add_follow(
        self, display_name: str, external_name: str, is_self: bool = False
    ) -> FollowRecord:
        """Follow ``external_name``, reviving a previously unfollowed row.

        Raises:
            DuplicateEntryError: The name is already followed.
        """
        external_name = external_name.strip()
        with self._session() as session:
            follow = session.scalars(
                select(Follow).where(Follow.external_name == external_name)
            ).first()
            if follow is not None and not follow.deleted:
                raise DuplicateEntryError(f"already following {external_name}", stage="persist")
            if follow is None:
                follow = Follow(
                    external_name=external_name, display_name=display_name, is_self=is_self
                )
                session.add(follow)
            else:
                follow.deleted = False
                follow.display_name = display_name or follow.display_name
            session.flush()
            return FollowRecord.model_validate(follow)

    def list_follows(self, skip: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> list[FollowRecord]:
        """Return live follows in insertion order; ``limit=-1`` returns all."""
        with self._session() as session:
            stmt = select(Follow).where(Follow.deleted.is_(False)).order_by(Follow.id)
            rows = session.scalars(_page(stmt, skip, limit))
            return [FollowRecord.model_validate(row) for row in rows]

    def get_follow(self, follow_id: int) -> FollowRecord:
        with self._session() as session:
            follow = session.get(Follow, follow_id)
            if follow is None or follow.deleted:
                raise NotFoundError(f"follow {follow_id} not found")
            return FollowRecord.model_validate(follow)

    def unfollow(self, follow_id: int) -> FollowRecord:
        with self._session() as session:
            follow = session.get(Follow, follow_id)
            if follow is None or follow.deleted:
                raise NotFoundError(f"follow {follow_id} not found")
            if follow.is_self:
                raise PersistenceError(
                    "cannot unfollow a self-owned channel; remove the channel instead",
                    stage="persist",
                )
            follow.deleted = True
            return FollowRecord.model_validate(follow)

    def update_follow_head(self, follow_id: int, address: str) -> FollowRecord:
        """Record ``address`` as the last observed head of a follow."""
        with self._session() as session:
            follow = session.get(Follow, follow_id)
            if follow is None or follow.deleted:
                raise NotFoundError(f"follow {follow_id} not found")
            follow.latest_address = address
            session.flush()
            return FollowRecord.model_validate(follow)

    # Peers -------------------------------------------------------------------

    def add_peer(
        self,
        display_name: str,
        recipient: str,
        peer_pubkey: str = "",
        peer_id: str = "",
    ) -> PeerRecord:
        with self._session() as session:
            peer = Peer(
                recipient=recipient.strip(),
                display_name=display_name,
                peer_pubkey=peer_pubkey,
                peer_id=peer_id,
            )
            session.add(peer)
            session.flush()
            return PeerRecord.model_validate(peer)

    def list_peers(self, skip: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> list[PeerRecord]:
        with self._session() as session:
            stmt = select(Peer).where(Peer.deleted.is_(False)).order_by(Peer.id)
            return [PeerRecord.model_validate(row) for row in session.scalars(_page(stmt, skip, limit))]

    def remove_peer(self, peer_id: int) -> PeerRecord:
        with self._session() as session:
            peer = session.get(Peer, peer_id)
            if peer is None or peer.deleted:
                raise NotFoundError(f"peer {peer_id} not found")
            peer.deleted = True
            return PeerRecord.model_validate(peer)

    # Channels ----------------------------------------------------------------

    def get_channel(self, name: str) -> ChannelRecord | None:
        """Return the channel labelled ``name`` or None when it does not exist."""
        with self._session() as session:
            channel = session.scalars(select(Channel).where(Channel.name == name)).first()
            return ChannelRecord.model_validate(channel) if channel is not None else None

    def create_channel(self, name: str, external_name: str, key_handle: str) -> ChannelRecord:
        """Register a self-owned channel together with its follow mirror.

        An existing unfollowed row for the same external name is revived and
        flagged as a self mirror.

        Raises:
            DuplicateEntryError: A channel with this name already exists.
        """
        with self._session() as session:
            if session.scalars(select(Channel).where(Channel.name == name)).first() is not None:
                raise DuplicateEntryError(f"channel {name} already exists", stage="persist")
            channel = Channel(name=name, external_name=external_name, key_handle=key_handle)
            session.add(channel)

            mirror = session.scalars(
                select(Follow).where(Follow.external_name == external_name)
            ).first()
            if mirror is None:
                mirror = Follow(external_name=external_name, display_name=name)
                session.add(mirror)
            mirror.is_self = True
            mirror.deleted = False
            session.flush()
            logger.info("Created channel %s (%s)", name, external_name)
            return ChannelRecord.model_validate(channel)

    def list_channels(self) -> list[ChannelRecord]:
        with self._session() as session:
            rows = session.scalars(select(Channel).order_by(Channel.id))
            return [ChannelRecord.model_validate(row) for row in rows]

    def remove_channel(self, name: str) -> ChannelRecord:
        """Delete a channel row and retire its follow mirror."""
        with self._session() as session:
            channel = session.scalars(select(Channel).where(Channel.name == name)).first()
            if channel is None:
                raise NotFoundError(f"channel {name} not found")
            record = ChannelRecord.model_validate(channel)
            mirror = session.scalars(
                select(Follow).where(Follow.external_name == channel.external_name)
            ).first()
            if mirror is not None:
                mirror.deleted = True
            session.delete(channel)
            return record

    def set_channel_head(self, name: str, address: str) -> ChannelRecord:
        """Update a channel head and its follow mirror in one transaction."""
        with self._session() as session:
            channel = session.scalars(select(Channel).where(Channel.name == name)).first()
            if channel is None:
                raise NotFoundError(f"channel {name} not found", stage="persist")
            channel.latest_address = address
            mirror = session.scalars(
                select(Follow).where(Follow.external_name == channel.external_name)
            ).first()
            if mirror is not None:
                mirror.latest_address = address
            session.flush()
            return ChannelRecord.model_validate(channel)

    # Messages ----------------------------------------------------------------

    def append_message(self, body: str, sender: str | None = None) -> MessageRecord:
        with self._session() as session:
            message = Message(body=body, sender=sender)
            session.add(message)
            session.flush()
            return MessageRecord.model_validate(message)

    def list_messages(self, skip: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> list[MessageRecord]:
        """Return received messages, newest first."""
        with self._session() as session:
            stmt = select(Message).order_by(Message.id.desc())
            return [
                MessageRecord.model_validate(row) for row in session.scalars(_page(stmt, skip, limit))
            ]

    def export_document(self) -> dict[str, list[dict[str, Any]]]:
        """Return follows and peers as a JSON-ready document."""
        return {
            "follows": [
                follow.model_dump(mode="json") for follow in self.list_follows(limit=ALL_ROWS)
            ],
            "peers": [peer.model_dump(mode="json") for peer in self.list_peers(limit=ALL_ROWS)],
        }
