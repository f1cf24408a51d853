"""Self-owned channels published under a naming key."""

from datetime import datetime

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from dchannel.db.session import Base
from dchannel.db.time import utcnow


class Channel(Base):
    """A feed owned by the local identity.

    ``latest_address`` is the locally cached head. It is authoritative for the
    owner even before the naming service has propagated the new pointer, and
    is the only source the publisher reads the previous head from.
    """

    __tablename__ = "channel"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Local label of the naming key ("self" for the node key).
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    # Stable external name other identities follow.
    external_name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    key_handle: Mapped[str] = mapped_column(Text, nullable=False)
    latest_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
