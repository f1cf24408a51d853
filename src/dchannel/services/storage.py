"""Ports for the content-addressed object store and the mutable naming service.

The feed engine only talks to these two interfaces. Which implementation backs
them is chosen once, at startup, from :class:`StoreBackend`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from dchannel.core.settings import Settings

IPFS_PREFIX = "/ipfs/"


class StoreBackend(str, Enum):
    """Available storage backends."""

    KUBO = "kubo"
    LOCAL = "local"


@dataclass(frozen=True)
class NameKey:
    """A naming key: its stable external name and the handle used to publish."""

    label: str
    name: str
    key_handle: str


@dataclass(frozen=True)
class NameRecord:
    """Acknowledgement of a name publication."""

    name: str
    value: str


def normalize_address(address: str) -> str:
    """Strip a leading ``/ipfs/`` so addresses compare as bare content ids."""
    address = address.strip()
    if address.startswith(IPFS_PREFIX):
        return address[len(IPFS_PREFIX):]
    return address


class ObjectStore(ABC):
    """Content-addressed store of immutable bundles."""

    @abstractmethod
    async def upload(self, files: Mapping[str, bytes]) -> str:
        """Upload a bundle of named blobs atomically and return its address."""

    @abstractmethod
    async def get(self, address: str, subpath: str = "") -> bytes | list[str]:
        """Return a blob's bytes, or the ordered names when the path is a directory."""

    @abstractmethod
    async def pin(self, address: str) -> None:
        """Ask the store to retain ``address``."""

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release underlying resources."""


class NamingService(ABC):
    """Resolves stable names to the current content address."""

    @abstractmethod
    async def generate(self, label: str) -> NameKey:
        """Create (or return the existing) naming key for ``label``."""

    @abstractmethod
    async def publish(self, key_handle: str, address: str) -> NameRecord:
        """Point the name behind ``key_handle`` at ``address``."""

    @abstractmethod
    async def resolve(self, name: str, use_cache: bool = True) -> str:
        """Return the address ``name`` currently points at."""

    @abstractmethod
    async def list_keys(self) -> list[NameKey]:
        """List naming keys held locally."""

    @abstractmethod
    async def remove(self, label: str) -> NameKey:
        """Delete the naming key ``label``."""

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release underlying resources."""


def build_backends(config: Settings) -> tuple[ObjectStore, NamingService]:
    """Instantiate the object store and naming service selected in ``config``."""
    backend = StoreBackend(config.store_backend)
    if backend is StoreBackend.KUBO:
        from dchannel.services.kubo import KuboClient, KuboConfig

        client = KuboClient(
            KuboConfig(
                base_url=config.kubo_api_url,
                timeout_seconds=config.kubo_timeout_seconds,
            )
        )
        return client, client

    from dchannel.services.local_store import LocalNamingService, LocalObjectStore

    return LocalObjectStore(config.objects_dir), LocalNamingService(config.names_file)
