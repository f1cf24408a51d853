"""Kubo (go-ipfs) RPC client implementing the object store and naming ports.

Bundles are added with ``wrap-with-directory`` so the returned directory CID
is the bundle address. Mutable names are IPNS keys managed through the
``key/*`` and ``name/*`` endpoints.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from dchannel.core.errors import (
    DChannelError,
    NotFoundError,
    ResolutionError,
    StorageError,
    UploadError,
)
from dchannel.services.storage import (
    IPFS_PREFIX,
    NameKey,
    NameRecord,
    NamingService,
    ObjectStore,
    normalize_address,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v0"
HTTP_BAD_REQUEST = 400


@dataclass(frozen=True)
class KuboConfig:
    """Immutable configuration for the Kubo RPC client."""

    base_url: str
    timeout_seconds: float


class KuboClient(ObjectStore, NamingService):
    """HTTP client wrapper for a Kubo node's RPC API."""

    def __init__(self, config: KuboConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    @dataclass
    class RequestParams:
        """Parameters for RPC calls."""

        command: str
        params: list[tuple[str, str]] | None = None
        files: list[tuple[str, tuple[str, bytes, str]]] | None = None
        error: type[DChannelError] = StorageError
        stage: str | None = None

    async def _request(self, params: RequestParams) -> httpx.Response:
        client = await self._ensure_client()
        try:
            # Kubo only accepts POST on its RPC endpoints.
            response = await client.post(
                f"{API_PREFIX}/{params.command}",
                params=params.params,
                files=params.files,
            )
        except httpx.HTTPError as exc:
            raise params.error(
                f"kubo {params.command} failed: {exc}", stage=params.stage
            ) from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            raise params.error(
                f"kubo {params.command} failed ({response.status_code}): "
                f"{self._error_message(response)}",
                stage=params.stage,
            )
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return str(response.json().get("Message", response.text))
        except ValueError:
            return response.text

    @staticmethod
    def _path(address: str, subpath: str = "") -> str:
        path = IPFS_PREFIX + normalize_address(address).strip("/")
        if subpath.strip("/"):
            path += "/" + subpath.strip("/")
        return path

    async def upload(self, files: Mapping[str, bytes]) -> str:
        response = await self._request(
            self.RequestParams(
                command="add",
                params=[
                    ("wrap-with-directory", "true"),
                    ("pin", "true"),
                    ("cid-version", "1"),
                ],
                files=[
                    ("file", (name, data, "application/octet-stream"))
                    for name, data in files.items()
                ],
                error=UploadError,
                stage="upload",
            )
        )

        # The response is newline-delimited JSON; the wrapping directory is the
        # entry with an empty name.
        directory: str | None = None
        for line in response.text.splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except ValueError as err:
                raise UploadError(f"unexpected add response: {line!r}", stage="upload") from err
            if entry.get("Name", "") == "":
                directory = entry.get("Hash")
        if not directory:
            raise UploadError("kubo add returned no directory hash", stage="upload")
        return directory

    async def get(self, address: str, subpath: str = "") -> bytes | list[str]:
        path = self._path(address, subpath)
        stat = await self._request(
            self.RequestParams(command="files/stat", params=[("arg", path)], error=NotFoundError)
        )
        if stat.json().get("Type") == "directory":
            listing = await self._request(self.RequestParams(command="ls", params=[("arg", path)]))
            objects = listing.json().get("Objects") or [{}]
            return [link["Name"] for link in objects[0].get("Links") or []]

        content = await self._request(self.RequestParams(command="cat", params=[("arg", path)]))
        return content.content

    async def pin(self, address: str) -> None:
        await self._request(
            self.RequestParams(command="pin/add", params=[("arg", self._path(address))])
        )

    async def generate(self, label: str) -> NameKey:
        for key in await self.list_keys():
            if key.label == label:
                return key
        response = await self._request(
            self.RequestParams(command="key/gen", params=[("arg", label), ("type", "ed25519")])
        )
        return self._key(response.json())

    async def publish(self, key_handle: str, address: str) -> NameRecord:
        response = await self._request(
            self.RequestParams(
                command="name/publish",
                params=[
                    ("arg", self._path(address)),
                    ("key", key_handle),
                    ("allow-offline", "true"),
                ],
            )
        )
        body = response.json()
        return NameRecord(name=body.get("Name", ""), value=normalize_address(body.get("Value", "")))

    async def resolve(self, name: str, use_cache: bool = True) -> str:
        response = await self._request(
            self.RequestParams(
                command="name/resolve",
                params=[("arg", name), ("nocache", "false" if use_cache else "true")],
                error=ResolutionError,
            )
        )
        path = response.json().get("Path", "")
        if not path:
            raise ResolutionError(f"name {name} resolved to an empty path")
        return normalize_address(path)

    async def list_keys(self) -> list[NameKey]:
        response = await self._request(self.RequestParams(command="key/list"))
        return [self._key(item) for item in response.json().get("Keys") or []]

    async def remove(self, label: str) -> NameKey:
        response = await self._request(
            self.RequestParams(command="key/rm", params=[("arg", label)], error=NotFoundError)
        )
        keys = response.json().get("Keys") or []
        if not keys:
            raise NotFoundError(f"naming key {label!r} not found")
        return self._key(keys[0])

    @staticmethod
    def _key(item: Mapping[str, Any]) -> NameKey:
        return NameKey(label=item["Name"], name=item["Id"], key_handle=item["Name"])

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
