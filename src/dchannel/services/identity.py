"""Identity keyring persisted encrypted-at-rest under a passphrase.

The keyring is an append-only list of X25519 identities plus the single
current recipient new content is addressed to. Rotating adds a keypair and
switches the current recipient, but never drops an older private key, so
everything encrypted before the rotation stays readable.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

from dchannel.core.errors import (
    DecryptionError,
    KeyNotReady,
    PersistenceError,
    RecipientParseError,
)
from dchannel.core.settings import settings
from dchannel.services.crypto import (
    ScryptIdentity,
    ScryptRecipient,
    X25519Identity,
    X25519Recipient,
    decrypt_bytes,
    encrypt_bytes,
)

logger = logging.getLogger(__name__)


@dataclass
class Keyring:
    """Unlocked key material of the local identity."""

    identities: list[X25519Identity] = field(default_factory=list)
    recipient: X25519Recipient | None = None

    @classmethod
    def generate(cls) -> Keyring:
        identity = X25519Identity.generate()
        return cls(identities=[identity], recipient=identity.recipient)

    def rotated(self) -> Keyring:
        """Return a copy with a fresh keypair appended and made current."""
        identity = X25519Identity.generate()
        return Keyring(identities=[*self.identities, identity], recipient=identity.recipient)

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "identities": [str(identity) for identity in self.identities],
                "recipient": str(self.recipient) if self.recipient else "",
            }
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> Keyring:
        try:
            payload = json.loads(data)
            identities = [X25519Identity.parse(text) for text in payload["identities"]]
            recipient = X25519Recipient.parse(payload["recipient"])
        except (ValueError, KeyError, TypeError, RecipientParseError) as err:
            raise PersistenceError(f"identity file is corrupt: {err}", stage="identity") from err
        if not identities:
            raise PersistenceError("identity file holds no identities", stage="identity")
        return cls(identities=identities, recipient=recipient)


class IdentityStore:
    """Reads and writes the passphrase-protected identity file."""

    def __init__(self, path: Path | str, work_factor: int | None = None) -> None:
        self.path = Path(path)
        self.work_factor = work_factor or settings.scrypt_work_factor

    def exists(self) -> bool:
        return self.path.exists()

    def unlock(self, passphrase: str) -> Keyring:
        """Return the keyring, creating and persisting a new one on first use."""
        if not self.exists():
            keyring = Keyring.generate()
            self._write(keyring, passphrase)
            logger.info("Created new identity file at %s", self.path)
            return keyring
        return self._read(passphrase)

    def rotate(self, passphrase: str, new_passphrase: str | None = None) -> Keyring:
        """Append a new keypair, make it current and re-encrypt the file.

        Args:
            passphrase: Passphrase currently protecting the file.
            new_passphrase: Optional replacement passphrase.

        Returns:
            The rotated keyring.
        """
        keyring = self._read(passphrase).rotated()
        self._write(keyring, new_passphrase or passphrase)
        logger.info(
            "Rotated identity; keyring now holds %d identities", len(keyring.identities)
        )
        return keyring

    def _read(self, passphrase: str) -> Keyring:
        try:
            data = self.path.read_bytes()
        except OSError as err:
            raise PersistenceError(f"failed to read identity file: {err}", stage="identity") from err
        try:
            plaintext = decrypt_bytes([ScryptIdentity(passphrase)], data)
        except DecryptionError as err:
            raise DecryptionError(
                "failed to unlock identity file (wrong passphrase?)", stage="identity"
            ) from err
        return Keyring.from_json(plaintext)

    def _write(self, keyring: Keyring, passphrase: str) -> None:
        envelope = encrypt_bytes([ScryptRecipient(passphrase, self.work_factor)], keyring.to_json())
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as handle:
                handle.write(envelope)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as err:
            raise PersistenceError(f"failed to write identity file: {err}", stage="identity") from err


class IdentityContext:
    """Holds the unlocked keyring for one hosting service.

    Owned by the application and passed to the publisher and reader instead of
    living in a module-level global, so several identities can coexist.
    """

    def __init__(self, store: IdentityStore) -> None:
        self.store = store
        self._keyring: Keyring | None = None
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._keyring is not None

    def require(self) -> Keyring:
        keyring = self._keyring
        if keyring is None or keyring.recipient is None:
            raise KeyNotReady("identity is locked; unlock it first", stage="identity")
        return keyring

    def unlock(self, passphrase: str) -> Keyring:
        with self._lock:
            self._keyring = self.store.unlock(passphrase)
            return self._keyring

    def rotate(self, passphrase: str, new_passphrase: str | None = None) -> Keyring:
        with self._lock:
            self._keyring = self.store.rotate(passphrase, new_passphrase)
            return self._keyring

    def lock(self) -> None:
        with self._lock:
            self._keyring = None
