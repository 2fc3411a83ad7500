import enum
import os
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, NamedTuple

from image_store import config
from image_store.app.errors import InvalidInput, NotFound, StorageUnavailable
from image_store.app.services.filesystem import FileSystem
from image_store.logger_config import setup_logger

logger = setup_logger()

FORBIDDEN_NAME_CHARS = ("/", "\\", "\x00")


class UpsertOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"


class FetchedFile(NamedTuple):
    filename: str
    size: int
    chunks: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]


class FolderStore:
    """Stores files in named folders directly under a root directory.

    The store keeps no state of its own; everything is read back from the
    filesystem on each call.
    """

    def __init__(self, root: Path, filesystem: FileSystem, max_name_length: int = config.MAX_NAME_LENGTH):
        self.root = Path(os.path.abspath(root))
        self.fs = filesystem
        self.max_name_length = max_name_length

    async def initialize(self):
        """Create the storage root and clear leftovers from interrupted operations."""
        logger.info("Initializing folder store...")
        try:
            await self.fs.make_dirs(self.root)
            removed = await self.fs.clear_scratch()
        except OSError as exc:
            raise self._unavailable("initialize storage", exc) from exc
        logger.debug(f"Storage root created/verified: {self.root}")
        logger.info(f"Cleaned scratch area, removed {removed} leftovers")

    def _check_name(self, kind: str, name: str):
        if not name:
            raise InvalidInput(f"{kind} name is required")
        if len(name) > self.max_name_length:
            raise InvalidInput(f"{kind} name is too long. Maximum is {self.max_name_length}")
        if name in (".", "..") or any(c in name for c in FORBIDDEN_NAME_CHARS) or os.path.isabs(name):
            raise InvalidInput(f"Invalid {kind.lower()} name: {name!r}")

    def _inside_root(self, path: Path) -> Path:
        normalized = os.path.normpath(path)
        if os.path.commonpath([str(self.root), normalized]) != str(self.root) or normalized == str(self.root):
            raise InvalidInput("Path escapes the storage root")
        return Path(normalized)

    def folder_path(self, folder: str) -> Path:
        """Map a folder name to its directory, rejecting unsafe names."""
        self._check_name("Folder", folder)
        return self._inside_root(self.root / folder)

    def entry_path(self, folder: str, filename: str) -> Path:
        """Map (folder, filename) to its file path, rejecting unsafe names."""
        folder_path = self.folder_path(folder)
        self._check_name("File", filename)
        return self._inside_root(folder_path / filename)

    def _unavailable(self, action: str, exc: OSError) -> StorageUnavailable:
        logger.error(f"Storage failure while trying to {action}: {exc}", exc_info=exc)
        return StorageUnavailable(f"Storage failure while trying to {action}")

    async def _ensure_folder(self, folder_path: Path):
        await self.fs.make_dirs(folder_path)

    async def _write_into_folder(self, folder_path: Path, write, path: Path, data: bytes):
        await self._ensure_folder(folder_path)
        try:
            return await write(path, data)
        except FileNotFoundError:
            # The folder was removed by a concurrent delete_all after being ensured
            logger.debug(f"Folder {folder_path} vanished during write, recreating")
            await self._ensure_folder(folder_path)
            return await write(path, data)

    async def create(self, folder: str, filename: str, data: bytes) -> str:
        """Write data to (folder, filename), overwriting any existing file."""
        file_path = self.entry_path(folder, filename)
        if not data:
            raise InvalidInput("No file uploaded")

        try:
            await self._write_into_folder(file_path.parent, self.fs.write_replace, file_path, data)
        except OSError as exc:
            raise self._unavailable(f"store {filename} in {folder}", exc) from exc

        logger.debug(f"Stored {len(data)} bytes as {folder}/{filename}")
        return filename

    async def upsert(self, folder: str, filename: str, data: bytes) -> UpsertOutcome:
        """Create (folder, filename) if absent; report UPDATED if it exists.

        An existing file is left untouched: its bytes are not replaced by data.
        """
        file_path = self.entry_path(folder, filename)
        if not data:
            raise InvalidInput("No file uploaded")

        try:
            if await self.fs.exists(file_path):
                logger.debug(f"{folder}/{filename} exists, left as is")
                return UpsertOutcome.UPDATED
            created = await self._write_into_folder(file_path.parent, self.fs.write_new, file_path, data)
        except OSError as exc:
            raise self._unavailable(f"create {filename} in {folder}", exc) from exc

        return UpsertOutcome.CREATED if created else UpsertOutcome.UPDATED

    async def delete(self, folder: str, filename: str) -> bool:
        """Delete (folder, filename). Returns whether the file existed."""
        file_path = self.entry_path(folder, filename)
        try:
            return await self.fs.unlink(file_path)
        except OSError as exc:
            raise self._unavailable(f"delete {filename} in {folder}", exc) from exc

    async def delete_all(self, folder: str):
        """Remove a folder together with everything in it."""
        folder_path = self.folder_path(folder)
        try:
            if not await self.fs.is_dir(folder_path):
                raise NotFound("Folder not found")
            removed = await self.fs.remove_tree(folder_path)
        except OSError as exc:
            raise self._unavailable(f"delete folder {folder}", exc) from exc

        if not removed:
            raise NotFound("Folder not found")
        logger.debug(f"Removed folder {folder}")

    async def fetch(self, folder: str, filename: str) -> FetchedFile:
        """Open (folder, filename) for streaming."""
        file_path = self.entry_path(folder, filename)
        try:
            if not await self.fs.is_file(file_path):
                raise NotFound("Image not found")
            size, chunks, close = await self.fs.open_read(file_path)
        except FileNotFoundError:
            raise NotFound("Image not found")
        except OSError as exc:
            raise self._unavailable(f"read {filename} in {folder}", exc) from exc

        return FetchedFile(filename=filename, size=size, chunks=chunks, close=close)

    async def count(self, folder: str) -> int:
        """Number of regular files directly inside folder, 0 if it does not exist."""
        folder_path = self.folder_path(folder)
        try:
            if not await self.fs.is_dir(folder_path):
                return 0
            return len(await self.fs.list_files(folder_path))
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise self._unavailable(f"list folder {folder}", exc) from exc
