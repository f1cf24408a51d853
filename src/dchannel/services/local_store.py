"""Filesystem backed object store and naming service.

Used for offline development and single-host setups. Bundles are written to
``<root>/<address>/`` where the address is the BLAKE3 hash of the bundle
manifest, so identical bundles share an address and written bundles are never
modified. Names are kept in a small JSON document.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import shutil
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dchannel.core.errors import (
    NotFoundError,
    ResolutionError,
    StorageError,
    UploadError,
)
from dchannel.services.storage import (
    NameKey,
    NameRecord,
    NamingService,
    ObjectStore,
    normalize_address,
)
from dchannel.utils.hash import blake3_hexdigest

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "b3"
NAME_PREFIX = "dcn"


def _check_filename(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise UploadError(f"invalid bundle filename {name!r}", stage="upload")


def bundle_address(files: Mapping[str, bytes]) -> str:
    """Return the content address of a bundle."""
    manifest = [[name, blake3_hexdigest(files[name])] for name in sorted(files)]
    encoded = json.dumps(manifest, separators=(",", ":")).encode("utf-8")
    return ADDRESS_PREFIX + blake3_hexdigest(encoded)


class LocalObjectStore(ObjectStore):
    """Content-addressed bundles stored under a local directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    async def upload(self, files: Mapping[str, bytes]) -> str:
        return await asyncio.to_thread(self._upload, dict(files))

    def _upload(self, files: dict[str, bytes]) -> str:
        for name in files:
            _check_filename(name)
        address = bundle_address(files)
        target = self.root / address
        if target.is_dir():
            return address

        staging = self.root / f".staging-{secrets.token_hex(8)}"
        try:
            staging.mkdir(parents=True)
            for name, data in files.items():
                (staging / name).write_bytes(data)
            os.replace(staging, target)
        except OSError as err:
            shutil.rmtree(staging, ignore_errors=True)
            if target.is_dir():
                # Another writer stored the same bundle first.
                return address
            raise UploadError(f"failed to store bundle: {err}", stage="upload") from err
        logger.debug("Stored bundle %s with %d files", address, len(files))
        return address

    def _locate(self, address: str, subpath: str = "") -> Path:
        address = normalize_address(address)
        base = (self.root / address).resolve()
        path = (base / subpath.strip("/")).resolve() if subpath.strip("/") else base
        if base.parent != self.root.resolve() or not path.is_relative_to(base):
            raise NotFoundError(f"invalid object path {address}/{subpath}")
        if not path.exists():
            raise NotFoundError(f"object {address}/{subpath.strip('/')} not found")
        return path

    async def get(self, address: str, subpath: str = "") -> bytes | list[str]:
        return await asyncio.to_thread(self._get, address, subpath)

    def _get(self, address: str, subpath: str) -> bytes | list[str]:
        path = self._locate(address, subpath)
        try:
            if path.is_dir():
                return sorted(entry.name for entry in path.iterdir())
            return path.read_bytes()
        except OSError as err:
            raise StorageError(f"failed to read {address}: {err}") from err

    async def pin(self, address: str) -> None:
        # Every stored bundle is retained; pinning only checks it exists.
        await asyncio.to_thread(self._locate, address)


class LocalNamingService(NamingService):
    """Name records kept in a JSON document next to the object store."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"keys": {}, "records": {}}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            raise StorageError(f"failed to read name records: {err}") from err

    def _save(self, state: dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(state, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as err:
            raise StorageError(f"failed to write name records: {err}") from err

    @staticmethod
    def _key(label: str, entry: Mapping[str, str]) -> NameKey:
        return NameKey(label=label, name=entry["name"], key_handle=label)

    async def generate(self, label: str) -> NameKey:
        return await asyncio.to_thread(self._generate, label)

    def _generate(self, label: str) -> NameKey:
        with self._lock:
            state = self._load()
            entry = state["keys"].get(label)
            if entry is None:
                entry = {"name": NAME_PREFIX + secrets.token_hex(20)}
                state["keys"][label] = entry
                self._save(state)
                logger.info("Generated naming key %s -> %s", label, entry["name"])
            return self._key(label, entry)

    async def publish(self, key_handle: str, address: str) -> NameRecord:
        return await asyncio.to_thread(self._publish, key_handle, address)

    def _publish(self, key_handle: str, address: str) -> NameRecord:
        with self._lock:
            state = self._load()
            entry = state["keys"].get(key_handle)
            if entry is None:
                raise StorageError(f"unknown naming key {key_handle!r}")
            state["records"][entry["name"]] = normalize_address(address)
            self._save(state)
            return NameRecord(name=entry["name"], value=normalize_address(address))

    async def resolve(self, name: str, use_cache: bool = True) -> str:
        return await asyncio.to_thread(self._resolve, name)

    def _resolve(self, name: str) -> str:
        with self._lock:
            state = self._load()
        address = state["records"].get(name.removeprefix("/ipns/"))
        if not address:
            raise ResolutionError(f"name {name} has not been published")
        return address

    async def list_keys(self) -> list[NameKey]:
        state = await asyncio.to_thread(self._load)
        return [self._key(label, entry) for label, entry in sorted(state["keys"].items())]

    async def remove(self, label: str) -> NameKey:
        return await asyncio.to_thread(self._remove, label)

    def _remove(self, label: str) -> NameKey:
        with self._lock:
            state = self._load()
            entry = state["keys"].pop(label, None)
            if entry is None:
                raise NotFoundError(f"naming key {label!r} not found")
            state["records"].pop(entry["name"], None)
            self._save(state)
            return self._key(label, entry)
