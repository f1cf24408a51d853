"""Follow list, peer address book and received-message log."""

from datetime import datetime

from sqlalchemy import Boolean, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from dchannel.db.session import Base
from dchannel.db.time import utcnow


class Follow(Base):
    """A followed mutable name and the last head observed for it."""

    __tablename__ = "follow"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # One row per external name; unfollowing only flips ``deleted``.
    external_name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    latest_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Mirrors of self-owned channels so head lookups are uniform.
    is_self: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class Peer(Base):
    """Address book entry used to compose recipient sets and locate peers."""

    __tablename__ = "peer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    recipient: Mapped[str] = mapped_column(Text, nullable=False, default="")
    peer_pubkey: Mapped[str] = mapped_column(Text, nullable=False, default="")
    peer_id: Mapped[str] = mapped_column(Text, nullable=False, default="")
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class Message(Base):
    """Append-only log of messages received from peers."""

    __tablename__ = "message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(default=utcnow)
