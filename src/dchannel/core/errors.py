"""Error taxonomy shared by the feed engine and the HTTP surface.

Every error carries a machine readable ``kind``, an optional ``stage`` naming
the step that failed, and the HTTP status the API layer should use. The API
translates these into the uniform response envelope so no raw exception type
crosses the boundary.
"""

from __future__ import annotations

HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_BAD_GATEWAY = 502
HTTP_SERVICE_UNAVAILABLE = 503


class DChannelError(RuntimeError):
    """Base exception for all dchannel failures."""

    kind = "error"
    status_code = HTTP_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_dict(self) -> dict[str, str | None]:
        """Return the structured failure payload used in API envelopes."""
        return {"error": self.kind, "stage": self.stage, "message": self.message}


class KeyNotReady(DChannelError):
    """Raised when an operation needs the identity keyring before it is unlocked."""

    kind = "key_not_ready"
    status_code = HTTP_SERVICE_UNAVAILABLE


class RecipientParseError(DChannelError):
    """Raised when a recipient or identity string is not in canonical form."""

    kind = "recipient_parse_error"
    status_code = HTTP_BAD_REQUEST


class EncryptionError(DChannelError):
    """Raised when a payload cannot be encrypted."""

    kind = "encryption_error"
    status_code = HTTP_INTERNAL_SERVER_ERROR


class DecryptionError(DChannelError):
    """Raised when a ciphertext is malformed or fails authentication."""

    kind = "decryption_error"
    status_code = HTTP_BAD_REQUEST


class NoMatchingIdentity(DecryptionError):
    """Raised when none of the supplied identities can unwrap the file key."""

    kind = "no_matching_identity"


class UploadError(DChannelError):
    """Raised when the object store rejects or fails a bundle upload."""

    kind = "upload_error"
    status_code = HTTP_BAD_GATEWAY


class StorageError(DChannelError):
    """Raised for object store or naming failures outside upload and resolve."""

    kind = "storage_error"
    status_code = HTTP_BAD_GATEWAY


class ResolutionError(DChannelError):
    """Raised when a mutable name cannot be resolved (unpublished or unreachable)."""

    kind = "resolution_error"
    status_code = HTTP_BAD_GATEWAY


class FilenameConflictError(DChannelError):
    """Raised when an attachment name is reserved or duplicated."""

    kind = "filename_conflict"
    status_code = HTTP_BAD_REQUEST


class PersistenceError(DChannelError):
    """Raised when the local directory store fails to read or write."""

    kind = "persistence_error"
    status_code = HTTP_INTERNAL_SERVER_ERROR


class DuplicateEntryError(PersistenceError):
    """Raised when inserting a row that collides with a live unique entry."""

    kind = "duplicate_entry"
    status_code = HTTP_CONFLICT


class NotFoundError(DChannelError):
    """Raised when a referenced row or object does not exist."""

    kind = "not_found"
    status_code = HTTP_NOT_FOUND


class PeerIdMismatch(DChannelError):
    """Raised when a peer id does not derive from the supplied public key."""

    kind = "peer_id_mismatch"
    status_code = HTTP_BAD_REQUEST
