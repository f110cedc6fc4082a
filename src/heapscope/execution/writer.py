"""Artifact persistence."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, AsyncIterable, Protocol, Union

from ..core.errors import StorageError
from ..core.types import PathLike

logger = logging.getLogger(__name__)

Chunk = Union[str, bytes]


class PendingFile(Protocol):
    def write(self, data: bytes) -> None: ...

    def commit(self) -> None: ...

    def discard(self) -> None: ...


class Storage(Protocol):
    def make_dirs(self, path: Path) -> None: ...

    def write_bytes(self, path: Path, data: bytes) -> None: ...

    def open_for_write(self, path: Path) -> PendingFile: ...


class AtomicFile:
    """Temporary sibling of ``path`` that replaces it on :meth:`commit`."""

    def __init__(self, path: Path) -> None:
        self.path = path
        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        self._tmp_path = Path(tmp_path)
        self._handle = os.fdopen(fd, "wb")

    def write(self, data: bytes) -> None:
        self._handle.write(data)

    def commit(self) -> None:
        self._handle.close()
        self._tmp_path.replace(self.path)

    def discard(self) -> None:
        self._handle.close()
        self._tmp_path.unlink(missing_ok=True)


class LocalStorage:
    """Filesystem storage with replace-on-success writes.

    Content goes to a temporary sibling first and is moved over ``path`` only
    once fully written, so readers never observe a partial artifact.
    """

    def make_dirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def write_bytes(self, path: Path, data: bytes) -> None:
        pending = self.open_for_write(path)
        try:
            pending.write(data)
            pending.commit()
        except BaseException:
            pending.discard()
            raise

    def open_for_write(self, path: Path) -> AtomicFile:
        return AtomicFile(path)


def has_separator(path: PathLike) -> bool:
    text = os.fspath(path)
    return "/" in text or "\\" in text


class ArtifactWriter:
    """Write artifacts to paths whose parent directories may not exist yet.

    All filesystem calls run on worker threads so large artifacts never
    stall the event loop.
    """

    def __init__(self, storage: Storage | None = None) -> None:
        self._storage = storage or LocalStorage()

    def ensure_parent(self, path: Path) -> None:
        # Bare file names go to the working directory as-is.
        if not has_separator(path):
            return
        parent = path.parent
        if parent == Path("."):
            return
        try:
            self._storage.make_dirs(parent)
        except OSError as exc:
            raise StorageError(f"Unable to create directory {parent}: {exc}", path=str(path)) from exc

    async def write(self, path: PathLike, payload: Any) -> Path:
        """Replace ``path`` with ``payload``; non-bytes payloads are written as UTF-8 JSON."""
        path = Path(path)
        if isinstance(payload, bytes):
            data = payload
        else:
            try:
                data = json.dumps(payload).encode("utf-8")
            except (TypeError, ValueError) as exc:
                raise StorageError(
                    f"Artifact for {path} is not JSON serialisable: {exc}", path=str(path)
                ) from exc
        await asyncio.to_thread(self.ensure_parent, path)
        try:
            await asyncio.to_thread(self._storage.write_bytes, path, data)
        except OSError as exc:
            raise StorageError(f"Unable to write {path}: {exc}", path=str(path)) from exc
        logger.debug("Wrote %d bytes to %s", len(data), path)
        return path

    async def write_stream(self, path: PathLike, chunks: AsyncIterable[Chunk]) -> Path:
        """Write ``chunks`` to ``path`` in arrival order without buffering them."""
        path = Path(path)
        await asyncio.to_thread(self.ensure_parent, path)
        written = 0
        try:
            pending = await asyncio.to_thread(self._storage.open_for_write, path)
        except OSError as exc:
            raise StorageError(f"Unable to write {path}: {exc}", path=str(path)) from exc
        try:
            async for chunk in chunks:
                data = chunk.encode("utf-8") if isinstance(chunk, str) else chunk
                await asyncio.to_thread(pending.write, data)
                written += len(data)
            await asyncio.to_thread(pending.commit)
        except OSError as exc:
            pending.discard()
            raise StorageError(f"Unable to write {path}: {exc}", path=str(path)) from exc
        except BaseException:
            pending.discard()
            raise
        logger.debug("Streamed %d bytes to %s", written, path)
        return path


__all__ = ["ArtifactWriter", "AtomicFile", "LocalStorage", "PendingFile", "Storage", "has_separator"]
