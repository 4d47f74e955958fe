import asyncio
import logging
import os
import secrets
import shutil
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from ..errors import StorageIOException

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

__all__ = [
    "CHUNK_SIZE",
    "DownloadStream",
    "LocalItemStorage",
]


@dataclass
class DownloadStream:
    """A file on disk handed to a client in chunks.

    Temporary files (archives) set ``delete_on_close`` so that ``close``
    removes them once the response has been written.
    """

    path: Path
    filename: str
    content_type: str
    size: int
    delete_on_close: bool = False

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.path, "rb") as f:
            while chunk := await f.read(chunk_size):
                yield chunk

    async def read_all(self) -> bytes:
        async with aiofiles.open(self.path, "rb") as f:
            return await f.read()

    async def close(self) -> None:
        if not self.delete_on_close:
            return
        try:
            await asyncio.to_thread(self.path.unlink, missing_ok=True)
        except OSError:
            logger.exception(f"Failed to remove temporary file {self.path}")


def _move(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(os.fspath(src), os.fspath(dst))


def _remove_empty_directory(path: Path) -> bool:
    try:
        path.rmdir()
    except FileNotFoundError:
        return True
    except OSError:
        # Not empty
        return False
    return True


class LocalItemStorage:
    """Physical file operations for item content on the local filesystem.

    All paths are absolute and already sandboxed by the path resolver.
    Blocking calls run in a worker thread. ``OSError`` is reported as
    ``StorageIOException``.
    """

    def __init__(self, storage_root: Path) -> None:
        self.root = storage_root
        self.root.mkdir(parents=True, exist_ok=True)

    async def save_stream(self, dest: Path, stream: AsyncIterator[bytes]) -> int:
        """Write ``stream`` to ``dest`` and return the number of bytes written.

        Data goes to a temp file in the target directory first which is then
        renamed into place, so a failed upload never leaves a partial file.
        """
        temp_path = dest.parent / f".upload_{secrets.token_hex(8)}.tmp"
        written = 0
        try:
            await asyncio.to_thread(dest.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                async for chunk in stream:
                    written += len(chunk)
                    await f.write(chunk)
            await asyncio.to_thread(os.replace, temp_path, dest)
        except OSError as err:
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            raise StorageIOException(f"Failed to write {dest.name}: {err}") from err
        except BaseException:
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            raise
        return written

    async def available_name(self, directory: Path, name: str) -> str:
        """Return ``name`` or the first free ``name(N).ext`` in ``directory``."""

        def _find() -> str:
            if not (directory / name).exists():
                return name
            stem, dot, suffix = name.rpartition(".")
            if not dot or not stem:
                stem, suffix = name, ""
            else:
                suffix = f".{suffix}"
            counter = 1
            while True:
                candidate = f"{stem}({counter}){suffix}"
                if not (directory / candidate).exists():
                    return candidate
                counter += 1

        return await asyncio.to_thread(_find)

    async def move(self, src: Path, dst: Path) -> None:
        """Move a file or directory. The destination must not exist."""
        if await self.exists(dst):
            raise StorageIOException(f"Destination already exists: {dst.name}")
        try:
            await asyncio.to_thread(_move, src, dst)
        except OSError as err:
            raise StorageIOException(f"Failed to move {src.name}: {err}") from err
        logger.debug(f"Moved {src} -> {dst}")

    async def make_directory(self, path: Path) -> None:
        try:
            await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        except OSError as err:
            raise StorageIOException(f"Failed to create {path.name}: {err}") from err

    async def remove_file(self, path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as err:
            raise StorageIOException(f"Failed to remove {path.name}: {err}") from err

    async def remove_empty_directory(self, path: Path) -> bool:
        """Remove ``path`` if it is empty. Returns False if it still has content."""
        return await asyncio.to_thread(_remove_empty_directory, path)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.exists)

    async def is_file(self, path: Path) -> bool:
        return await asyncio.to_thread(path.is_file)

    async def size(self, path: Path) -> int:
        stat = await asyncio.to_thread(path.stat)
        return stat.st_size

    async def open_stream(
        self, path: Path, filename: str, content_type: str
    ) -> DownloadStream:
        """Prepare ``path`` for a chunked download."""
        if not await self.is_file(path):
            raise StorageIOException(f"File is missing from storage: {filename}")
        return DownloadStream(
            path=path,
            filename=filename,
            content_type=content_type,
            size=await self.size(path),
        )
