"""Peer key utilities built on Ed25519 primitives."""
from __future__ import annotations

import base64
import binascii

from nacl.exceptions import CryptoError
from nacl.signing import VerifyKey

from dchannel.core.errors import PeerIdMismatch

# libp2p PublicKey protobuf: field 1 (KeyType) = Ed25519, field 2 (Data) of 32 bytes.
ED25519_KEY_PREFIX = b"\x08\x01\x12\x20"
ED25519_KEY_LENGTH = 32
# Keys this short are embedded in the peer id with the identity multihash.
IDENTITY_MULTIHASH_CODE = 0x00

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def b58encode(data: bytes) -> str:
    """Encode ``data`` with the bitcoin base58 alphabet."""
    number = int.from_bytes(data, "big")
    encoded = ""
    while number:
        number, remainder = divmod(number, 58)
        encoded = _B58_ALPHABET[remainder] + encoded
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return _B58_ALPHABET[0] * leading_zeros + encoded


def decode_peer_pubkey(peer_pubkey: str) -> VerifyKey:
    """Decode a base64url libp2p-marshalled Ed25519 public key.

    Raises:
        PeerIdMismatch: The value is not a valid marshalled Ed25519 key.
    """
    try:
        padded = peer_pubkey.strip() + "=" * (-len(peer_pubkey.strip()) % 4)
        marshalled = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as err:
        raise PeerIdMismatch(f"peer public key is not base64url: {err}") from err

    if (
        len(marshalled) != len(ED25519_KEY_PREFIX) + ED25519_KEY_LENGTH
        or not marshalled.startswith(ED25519_KEY_PREFIX)
    ):
        raise PeerIdMismatch("peer public key is not a marshalled Ed25519 key")
    try:
        return VerifyKey(marshalled[len(ED25519_KEY_PREFIX):])
    except (CryptoError, ValueError, TypeError) as err:
        raise PeerIdMismatch(f"invalid Ed25519 public key: {err}") from err


def peer_id_from_key(key: VerifyKey) -> str:
    """Derive the libp2p peer id (base58btc identity multihash) of ``key``."""
    marshalled = ED25519_KEY_PREFIX + bytes(key)
    multihash = bytes([IDENTITY_MULTIHASH_CODE, len(marshalled)]) + marshalled
    return b58encode(multihash)


def verify_peer(peer_pubkey: str, peer_id: str) -> str:
    """Check that ``peer_id`` derives from ``peer_pubkey``.

    Args:
        peer_pubkey: Base64url libp2p-marshalled Ed25519 public key.
        peer_id: Claimed libp2p peer id.

    Returns:
        The verified peer id.

    Raises:
        PeerIdMismatch: The key is malformed or derives a different id.
    """
    derived = peer_id_from_key(decode_peer_pubkey(peer_pubkey))
    if derived != peer_id.strip():
        raise PeerIdMismatch(f"peer id {peer_id} does not match public key ({derived})")
    return derived
