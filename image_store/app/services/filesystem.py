import asyncio
import os
import shutil
import uuid
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Protocol, Tuple

import aiofiles
import aiofiles.os

from image_store import config
from image_store.logger_config import setup_logger

logger = setup_logger()


class FileSystem(Protocol):
    """Async filesystem operations the folder store is built on.

    Every byte write goes through a scratch file that is moved into place,
    so readers never observe a partially written entry.
    """

    async def exists(self, path: Path) -> bool: ...

    async def is_dir(self, path: Path) -> bool: ...

    async def is_file(self, path: Path) -> bool: ...

    async def make_dirs(self, path: Path) -> None: ...

    async def write_replace(self, path: Path, data: bytes) -> None:
        """Write data to path, replacing any existing file atomically."""
        ...

    async def write_new(self, path: Path, data: bytes) -> bool:
        """Write data to path only if nothing is there yet.

        Returns:
            bool: True if the file was created, False if path already existed
        """
        ...

    async def open_read(self, path: Path) -> Tuple[int, AsyncIterator[bytes], Callable[[], Awaitable[None]]]:
        """Open path for reading.

        Returns:
            The file size, a chunk iterator and a close callable that releases
            the handle whether or not the chunks were consumed
        """
        ...

    async def unlink(self, path: Path) -> bool: ...

    async def list_files(self, path: Path) -> List[str]: ...

    async def remove_tree(self, path: Path) -> bool:
        """Remove a directory and everything under it.

        Returns:
            bool: False if the directory was already gone
        """
        ...

    async def clear_scratch(self) -> int: ...


class LocalFileSystem:
    """FileSystem backed by the local disk.

    Scratch files and directories being removed live in temp_dir, which must
    be on the same filesystem as the storage root for renames to be atomic.
    """

    def __init__(self, temp_dir: Path, chunk_size: int = config.CHUNK_SIZE):
        self.temp_dir = Path(temp_dir)
        self.chunk_size = chunk_size

    def _scratch_path(self, suffix: str) -> Path:
        return self.temp_dir / f"{uuid.uuid4().hex}{suffix}"

    async def exists(self, path: Path) -> bool:
        return await aiofiles.os.path.exists(path)

    async def is_dir(self, path: Path) -> bool:
        return await aiofiles.os.path.isdir(path)

    async def is_file(self, path: Path) -> bool:
        return await aiofiles.os.path.isfile(path)

    async def make_dirs(self, path: Path) -> None:
        await aiofiles.os.makedirs(path, exist_ok=True)

    async def _write_scratch(self, data: bytes) -> Path:
        temp_path = self._scratch_path(".tmp")
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                await f.write(data)
        except OSError:
            await self._discard(temp_path)
            raise
        return temp_path

    async def _discard(self, temp_path: Path) -> None:
        try:
            await aiofiles.os.unlink(temp_path)
        except FileNotFoundError:
            pass

    async def write_replace(self, path: Path, data: bytes) -> None:
        temp_path = await self._write_scratch(data)
        try:
            await aiofiles.os.replace(temp_path, path)
        except OSError:
            await self._discard(temp_path)
            raise
        logger.debug(f"Wrote {len(data)} bytes to {path}")

    async def write_new(self, path: Path, data: bytes) -> bool:
        temp_path = await self._write_scratch(data)
        try:
            # link() fails if the target exists, making this an exclusive create
            await aiofiles.os.link(temp_path, path)
        except FileExistsError:
            logger.debug(f"{path} already exists, nothing written")
            return False
        finally:
            await self._discard(temp_path)
        logger.debug(f"Created {path} with {len(data)} bytes")
        return True

    async def open_read(self, path: Path) -> Tuple[int, AsyncIterator[bytes], Callable[[], Awaitable[None]]]:
        handle = await aiofiles.open(path, 'rb')
        try:
            stat = await asyncio.to_thread(os.fstat, handle.fileno())
        except OSError:
            await handle.close()
            raise

        async def chunks():
            try:
                while chunk := await handle.read(self.chunk_size):
                    yield chunk
            finally:
                await handle.close()

        # Closing twice is a no-op, so this is safe after a full read too
        async def close():
            await handle.close()

        return stat.st_size, chunks(), close

    async def unlink(self, path: Path) -> bool:
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            return False
        return True

    async def list_files(self, path: Path) -> List[str]:
        names = await aiofiles.os.listdir(path)
        files = []
        for name in names:
            if await aiofiles.os.path.isfile(Path(path) / name):
                files.append(name)
        return files

    async def remove_tree(self, path: Path) -> bool:
        # Detach first so the folder disappears from the root in one step
        detached = self._scratch_path(".removing")
        try:
            await aiofiles.os.rename(path, detached)
        except FileNotFoundError:
            return False
        logger.debug(f"Detached {path} to {detached}")
        await asyncio.to_thread(shutil.rmtree, detached)
        return True

    async def clear_scratch(self) -> int:
        await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        removed = 0
        for name in await aiofiles.os.listdir(self.temp_dir):
            leftover = self.temp_dir / name
            if await aiofiles.os.path.isdir(leftover):
                await asyncio.to_thread(shutil.rmtree, leftover)
            else:
                await aiofiles.os.unlink(leftover)
            removed += 1
        return removed
