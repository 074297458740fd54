"""Blob store collaborator used for ticket attachments."""

from __future__ import annotations

import asyncio
import re
import uuid
from pathlib import Path
from typing import Protocol

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_FOLDER = re.compile(r"[0-9a-f]{32}")


class BlobStore(Protocol):
    async def put(self, file_name: str, content: bytes, content_type: str | None = None) -> str:
        """Store ``content`` durably and return the URL it can be fetched from."""
        ...

    async def delete(self, url: str) -> bool:
        """Remove a blob previously returned by :meth:`put`; False when it is unknown."""
        ...


def safe_file_name(file_name: str) -> str:
    name = Path(file_name).name
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "attachment"


class LocalBlobStore:
    """Write blobs under a local directory, one random folder per upload."""

    def __init__(self, root: Path, *, base_url: str = "/attachments") -> None:
        self._root = root
        self._base_url = base_url.rstrip("/")

    async def put(self, file_name: str, content: bytes, content_type: str | None = None) -> str:
        key = f"{uuid.uuid4().hex}/{safe_file_name(file_name)}"
        await asyncio.to_thread(self._write, key, content)
        return f"{self._base_url}/{key}"

    async def delete(self, url: str) -> bool:
        prefix = f"{self._base_url}/"
        if not url.startswith(prefix):
            return False
        folder, _, name = url[len(prefix) :].partition("/")
        if not _FOLDER.fullmatch(folder) or name != safe_file_name(name):
            return False
        return await asyncio.to_thread(self._remove, folder, name)

    def _write(self, key: str, content: bytes) -> None:
        path = self._root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def _remove(self, folder: str, name: str) -> bool:
        path = self._root / folder / name
        if not path.is_file():
            return False
        path.unlink()
        try:
            path.parent.rmdir()
        except OSError:
            pass
        return True
