"""Hybrid, recipient-addressed encryption for arbitrary byte streams.

A random file key is generated per message and wrapped once for every
recipient. X25519 recipients wrap it with an ephemeral Diffie-Hellman
exchange, passphrase recipients wrap it with scrypt. The header listing the
wrapped keys is authenticated with an HMAC derived from the file key, and the
payload is sealed with ChaCha20-Poly1305 in fixed size chunks.

Envelope layout::

    dchannel-encryption.org/v1
    -> X25519 <ephemeral public key>
    <wrapped file key>
    --- <header mac>
    <16 byte nonce><sealed chunks...>

The armored form wraps the whole envelope in PEM style base64 framing. Input
that carries neither header is treated as plaintext by :func:`decrypt` and
copied through unchanged, which is how unencrypted bundle files (``meta.json``
and public posts) are read with the same code path.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import io
import os
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import BinaryIO, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from dchannel.core.errors import (
    DecryptionError,
    EncryptionError,
    NoMatchingIdentity,
    RecipientParseError,
)

VERSION_LINE = b"dchannel-encryption.org/v1"
ARMOR_HEADER = b"-----BEGIN DCHANNEL ENCRYPTED FILE-----"
ARMOR_FOOTER = b"-----END DCHANNEL ENCRYPTED FILE-----"
ARMOR_LINE_LENGTH = 64

RECIPIENT_PREFIX = "dcage1"
IDENTITY_PREFIX = "DCAGE-SECRET-KEY-1"

X25519_STANZA = "X25519"
SCRYPT_STANZA = "scrypt"

KEY_LENGTH = 32
FILE_KEY_LENGTH = 16
PAYLOAD_NONCE_LENGTH = 16
SCRYPT_SALT_LENGTH = 16
CHUNK_SIZE = 64 * 1024
TAG_LENGTH = 16
DEFAULT_SCRYPT_WORK_FACTOR = 18
MAX_SCRYPT_WORK_FACTOR = 22

_ZERO_NONCE = b"\x00" * 12
_X25519_INFO = VERSION_LINE + b"/X25519"
_SCRYPT_LABEL = VERSION_LINE + b"/scrypt"


@dataclass
class Stanza:
    """One wrapped copy of the file key, addressed to a single recipient."""

    type: str
    args: list[str] = field(default_factory=list)
    body: bytes = b""


class Recipient(Protocol):
    """Anything able to wrap a file key."""

    def wrap(self, file_key: bytes) -> Stanza: ...


class Identity(Protocol):
    """Anything able to unwrap a file key from one of the header stanzas."""

    def unwrap(self, stanzas: Sequence[Stanza]) -> bytes | None: ...


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode().rstrip("=")


def _b64decode(data: str | bytes) -> bytes:
    try:
        if isinstance(data, bytes):
            data = data.decode("ascii")
        padding = "=" * (-len(data) % 4)
        return base64.b64decode(data + padding, validate=True)
    except (binascii.Error, UnicodeDecodeError, ValueError) as err:
        raise DecryptionError(f"invalid base64 in header: {err}") from err


def _b32encode(data: bytes) -> str:
    return base64.b32encode(data).decode().rstrip("=")


def _b32decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 8)
    return base64.b32decode(data.upper() + padding)


def _hkdf(secret: bytes, salt: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=info,
    ).derive(secret)


def _raw_public(key: X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


class X25519Recipient:
    """Public half of an identity, in ``dcage1...`` textual form."""

    def __init__(self, public_key: X25519PublicKey) -> None:
        self._public_key = public_key

    @classmethod
    def parse(cls, text: str) -> X25519Recipient:
        cleaned = text.strip()
        if not cleaned.lower().startswith(RECIPIENT_PREFIX):
            raise RecipientParseError(f"recipient must start with {RECIPIENT_PREFIX!r}")
        try:
            raw = _b32decode(cleaned[len(RECIPIENT_PREFIX):])
            public_key = X25519PublicKey.from_public_bytes(raw)
        except (binascii.Error, ValueError) as err:
            raise RecipientParseError(f"invalid recipient {cleaned!r}: {err}") from err
        return cls(public_key)

    @property
    def raw(self) -> bytes:
        return _raw_public(self._public_key)

    def wrap(self, file_key: bytes) -> Stanza:
        ephemeral = X25519PrivateKey.generate()
        ephemeral_public = _raw_public(ephemeral.public_key())
        shared = ephemeral.exchange(self._public_key)
        wrap_key = _hkdf(shared, ephemeral_public + self.raw, _X25519_INFO)
        body = ChaCha20Poly1305(wrap_key).encrypt(_ZERO_NONCE, file_key, None)
        return Stanza(type=X25519_STANZA, args=[_b64encode(ephemeral_public)], body=body)

    def __str__(self) -> str:
        return RECIPIENT_PREFIX + _b32encode(self.raw).lower()

    def __repr__(self) -> str:
        return f"X25519Recipient({self})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, X25519Recipient) and other.raw == self.raw

    def __hash__(self) -> int:
        return hash(self.raw)


class X25519Identity:
    """Private key able to unwrap stanzas addressed to its recipient."""

    def __init__(self, private_key: X25519PrivateKey) -> None:
        self._private_key = private_key

    @classmethod
    def generate(cls) -> X25519Identity:
        return cls(X25519PrivateKey.generate())

    @classmethod
    def parse(cls, text: str) -> X25519Identity:
        cleaned = text.strip()
        if not cleaned.upper().startswith(IDENTITY_PREFIX):
            raise RecipientParseError(f"identity must start with {IDENTITY_PREFIX!r}")
        try:
            raw = _b32decode(cleaned[len(IDENTITY_PREFIX):])
            private_key = X25519PrivateKey.from_private_bytes(raw)
        except (binascii.Error, ValueError) as err:
            raise RecipientParseError(f"invalid identity: {err}") from err
        return cls(private_key)

    @property
    def recipient(self) -> X25519Recipient:
        return X25519Recipient(self._private_key.public_key())

    def unwrap(self, stanzas: Sequence[Stanza]) -> bytes | None:
        own_public = self.recipient.raw
        for stanza in stanzas:
            if stanza.type != X25519_STANZA or len(stanza.args) != 1:
                continue
            ephemeral_public = _b64decode(stanza.args[0])
            try:
                shared = self._private_key.exchange(
                    X25519PublicKey.from_public_bytes(ephemeral_public)
                )
            except ValueError as err:
                raise DecryptionError(f"invalid X25519 stanza: {err}") from err
            wrap_key = _hkdf(shared, ephemeral_public + own_public, _X25519_INFO)
            try:
                return ChaCha20Poly1305(wrap_key).decrypt(_ZERO_NONCE, stanza.body, None)
            except InvalidTag:
                continue
        return None

    def __str__(self) -> str:
        raw = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return IDENTITY_PREFIX + _b32encode(raw)

    def __repr__(self) -> str:
        return f"X25519Identity(recipient={self.recipient})"


def _scrypt_key(passphrase: str, salt: bytes, work_factor: int) -> bytes:
    return Scrypt(
        salt=_SCRYPT_LABEL + salt,
        length=KEY_LENGTH,
        n=2**work_factor,
        r=8,
        p=1,
    ).derive(passphrase.encode("utf-8"))


class ScryptRecipient:
    """Passphrase recipient. Must be the only recipient of a message."""

    def __init__(self, passphrase: str, work_factor: int = DEFAULT_SCRYPT_WORK_FACTOR) -> None:
        if not passphrase:
            raise EncryptionError("passphrase must not be empty")
        self._passphrase = passphrase
        self._work_factor = work_factor

    def wrap(self, file_key: bytes) -> Stanza:
        salt = os.urandom(SCRYPT_SALT_LENGTH)
        wrap_key = _scrypt_key(self._passphrase, salt, self._work_factor)
        body = ChaCha20Poly1305(wrap_key).encrypt(_ZERO_NONCE, file_key, None)
        return Stanza(
            type=SCRYPT_STANZA,
            args=[_b64encode(salt), str(self._work_factor)],
            body=body,
        )


class ScryptIdentity:
    """Passphrase identity matching :class:`ScryptRecipient`."""

    def __init__(self, passphrase: str, max_work_factor: int = MAX_SCRYPT_WORK_FACTOR) -> None:
        self._passphrase = passphrase
        self._max_work_factor = max_work_factor

    def unwrap(self, stanzas: Sequence[Stanza]) -> bytes | None:
        for stanza in stanzas:
            if stanza.type != SCRYPT_STANZA:
                continue
            if len(stanzas) != 1:
                raise DecryptionError("scrypt stanza must be the only stanza")
            if len(stanza.args) != 2 or not stanza.args[1].isdecimal():
                raise DecryptionError("malformed scrypt stanza")
            work_factor = int(stanza.args[1])
            if work_factor > self._max_work_factor:
                raise DecryptionError(f"scrypt work factor {work_factor} is too large")
            wrap_key = _scrypt_key(self._passphrase, _b64decode(stanza.args[0]), work_factor)
            try:
                return ChaCha20Poly1305(wrap_key).decrypt(_ZERO_NONCE, stanza.body, None)
            except InvalidTag:
                return None
        return None


def parse_recipient(text: str) -> X25519Recipient:
    """Parse a recipient string, raising :class:`RecipientParseError` if invalid."""
    return X25519Recipient.parse(text)


def parse_identity(text: str) -> X25519Identity:
    """Parse an identity string, raising :class:`RecipientParseError` if invalid."""
    return X25519Identity.parse(text)


def _chunk_nonce(counter: int, last: bool) -> bytes:
    return counter.to_bytes(11, "big") + (b"\x01" if last else b"\x00")


def _header_mac(file_key: bytes, header: bytes) -> bytes:
    mac_key = _hkdf(file_key, b"", b"header")
    return hmac.new(mac_key, header, "sha256").digest()


def _encode_header(stanzas: Sequence[Stanza]) -> bytes:
    lines = [VERSION_LINE]
    for stanza in stanzas:
        lines.append(" ".join(["->", stanza.type, *stanza.args]).encode())
        lines.append(_b64encode(stanza.body).encode())
    lines.append(b"---")
    return b"\n".join(lines)


def _parse_header(data: bytes) -> tuple[list[Stanza], bytes, bytes, int]:
    """Split an envelope into stanzas, mac, mac'd header bytes and payload offset."""

    def read_line(pos: int) -> tuple[bytes, int]:
        end = data.find(b"\n", pos)
        if end == -1:
            raise DecryptionError("truncated header")
        return data[pos:end], end + 1

    line, pos = read_line(0)
    if line != VERSION_LINE:
        raise DecryptionError("unsupported envelope version")

    stanzas: list[Stanza] = []
    while True:
        line_start = pos
        line, pos = read_line(pos)
        if line.startswith(b"--- "):
            mac = _b64decode(line[4:])
            return stanzas, mac, data[: line_start + 3], pos
        if not line.startswith(b"-> "):
            raise DecryptionError("malformed header line")
        parts = line[3:].decode("ascii", errors="replace").split(" ")
        if not parts or not parts[0]:
            raise DecryptionError("stanza without a type")
        body_line, pos = read_line(pos)
        stanzas.append(Stanza(type=parts[0], args=parts[1:], body=_b64decode(body_line)))


def armor(data: bytes) -> bytes:
    """Wrap a binary envelope in the textual framing."""
    encoded = base64.b64encode(data)
    lines = [
        encoded[i : i + ARMOR_LINE_LENGTH] for i in range(0, len(encoded), ARMOR_LINE_LENGTH)
    ]
    return b"\n".join([ARMOR_HEADER, *lines, ARMOR_FOOTER]) + b"\n"


def dearmor(data: bytes) -> bytes:
    """Strip the textual framing and return the binary envelope."""
    lines = [line.strip() for line in data.strip().splitlines()]
    if len(lines) < 2 or lines[0] != ARMOR_HEADER or lines[-1] != ARMOR_FOOTER:
        raise DecryptionError("malformed armor framing")
    try:
        return base64.b64decode(b"".join(lines[1:-1]), validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecryptionError(f"invalid armor body: {err}") from err


def is_encrypted(data: bytes) -> bool:
    """Return True if ``data`` starts with an armored or binary envelope header."""
    return data.startswith(ARMOR_HEADER) or data.startswith(VERSION_LINE + b"\n")


def encrypt(
    recipients: Sequence[Recipient],
    src: BinaryIO,
    dst: BinaryIO,
    *,
    armored: bool = True,
) -> None:
    """Encrypt ``src`` for every recipient and write the envelope to ``dst``.

    Args:
        recipients: At least one recipient. A scrypt recipient must be alone.
        src: Plaintext stream.
        dst: Destination for the (optionally armored) envelope.
        armored: Wrap the envelope in textual framing.

    Raises:
        EncryptionError: If no recipients are given or a key cannot be wrapped.
    """
    if not recipients:
        raise EncryptionError("no recipients specified")
    if len(recipients) > 1 and any(isinstance(r, ScryptRecipient) for r in recipients):
        raise EncryptionError("a passphrase recipient must be the only recipient")

    file_key = os.urandom(FILE_KEY_LENGTH)
    try:
        stanzas = [recipient.wrap(file_key) for recipient in recipients]
    except (ValueError, TypeError) as err:
        raise EncryptionError(f"failed to wrap file key: {err}") from err

    header = _encode_header(stanzas)
    out = io.BytesIO() if armored else dst
    out.write(header)
    out.write(b" " + _b64encode(_header_mac(file_key, header)).encode() + b"\n")

    nonce = os.urandom(PAYLOAD_NONCE_LENGTH)
    out.write(nonce)
    aead = ChaCha20Poly1305(_hkdf(file_key, nonce, b"payload"))

    counter = 0
    chunk = src.read(CHUNK_SIZE)
    while True:
        following = src.read(CHUNK_SIZE) if len(chunk) == CHUNK_SIZE else b""
        last = not following
        out.write(aead.encrypt(_chunk_nonce(counter, last), chunk, None))
        if last:
            break
        chunk = following
        counter += 1

    if armored:
        dst.write(armor(out.getvalue()))


def _decrypt_envelope(identities: Sequence[Identity], envelope: bytes, dst: BinaryIO) -> None:
    stanzas, mac, header, offset = _parse_header(envelope)

    file_key = None
    for identity in identities:
        file_key = identity.unwrap(stanzas)
        if file_key is not None:
            break
    if file_key is None:
        raise NoMatchingIdentity("no identity matched any of the recipients")

    if not hmac.compare_digest(_header_mac(file_key, header), mac):
        raise DecryptionError("header MAC mismatch")

    nonce = envelope[offset : offset + PAYLOAD_NONCE_LENGTH]
    payload = envelope[offset + PAYLOAD_NONCE_LENGTH :]
    if len(nonce) != PAYLOAD_NONCE_LENGTH or len(payload) < TAG_LENGTH:
        raise DecryptionError("truncated payload")
    aead = ChaCha20Poly1305(_hkdf(file_key, nonce, b"payload"))

    sealed_size = CHUNK_SIZE + TAG_LENGTH
    counter = 0
    for start in range(0, len(payload), sealed_size):
        sealed = payload[start : start + sealed_size]
        last = start + sealed_size >= len(payload)
        try:
            dst.write(aead.decrypt(_chunk_nonce(counter, last), sealed, None))
        except InvalidTag as err:
            raise DecryptionError("payload authentication failed") from err
        counter += 1


def decrypt(identities: Sequence[Identity], src: BinaryIO, dst: BinaryIO) -> None:
    """Decrypt ``src`` into ``dst``, passing plaintext input through unchanged.

    Armored and binary envelopes are detected by their header. Anything else
    is copied verbatim, so this succeeds on plaintext even with no identities.

    Raises:
        NoMatchingIdentity: If the input is encrypted and no identity unwraps it.
        DecryptionError: If the envelope is malformed or fails authentication.
    """
    head = src.read(len(ARMOR_HEADER))
    if head == ARMOR_HEADER:
        _decrypt_envelope(identities, dearmor(head + src.read()), dst)
    elif head.startswith(VERSION_LINE + b"\n"):
        _decrypt_envelope(identities, head + src.read(), dst)
    else:
        dst.write(head)
        shutil.copyfileobj(src, dst)


def encrypt_bytes(recipients: Sequence[Recipient], data: bytes, *, armored: bool = True) -> bytes:
    """Encrypt an in-memory payload."""
    out = io.BytesIO()
    encrypt(recipients, io.BytesIO(data), out, armored=armored)
    return out.getvalue()


def decrypt_bytes(identities: Sequence[Identity], data: bytes) -> bytes:
    """Decrypt an in-memory payload, passing plaintext through."""
    out = io.BytesIO()
    decrypt(identities, io.BytesIO(data), out)
    return out.getvalue()
