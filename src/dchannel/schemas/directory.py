"""Records returned by the local directory store."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FollowRecord(BaseModel):
    """A followed name; also the JSON body of every live diff event."""

    id: int
    display_name: str
    external_name: str
    latest_address: str = ""
    is_self: bool = False
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PeerRecord(BaseModel):
    """Address book entry."""

    id: int
    display_name: str
    recipient: str
    peer_pubkey: str = ""
    peer_id: str = ""
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ChannelRecord(BaseModel):
    """Self-owned channel and its locally cached head."""

    id: int
    name: str
    external_name: str
    key_handle: str
    latest_address: str = ""
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageRecord(BaseModel):
    """Entry in the received-message log."""

    id: int
    body: str
    sender: str | None = None
    received_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class FollowCreate(BaseModel):
    """Request body for following a name."""

    display_name: str = Field("", max_length=200)
    external_name: str = Field(..., min_length=1, description="Mutable name to follow")


class PeerCreate(BaseModel):
    """Request body for adding a peer to the address book."""

    display_name: str = Field("", max_length=200)
    recipient: str = Field(..., min_length=1, description="Recipient key of the peer")
    peer_pubkey: str = Field("", description="libp2p marshalled public key, base64url")
    peer_id: str = Field("", description="libp2p peer id derived from peer_pubkey")


class ChannelCreate(BaseModel):
    """Request body for creating a self-owned channel."""

    name: str = Field(..., min_length=1, max_length=100)
