from pathlib import Path

import pytest_asyncio

from image_store.app.services.filesystem import LocalFileSystem
from image_store.app.services.folder_store import FolderStore


class MemoryFileSystem:
    """In-memory stand-in for LocalFileSystem."""

    def __init__(self):
        self.files = {}
        self.dirs = set()

    def _require_parent(self, path: Path):
        if path.parent not in self.dirs:
            raise FileNotFoundError(str(path.parent))

    async def exists(self, path):
        return path in self.files or path in self.dirs

    async def is_dir(self, path):
        return path in self.dirs

    async def is_file(self, path):
        return path in self.files

    async def make_dirs(self, path):
        self.dirs.add(path)
        self.dirs.update(path.parents)

    async def write_replace(self, path, data):
        self._require_parent(path)
        self.files[path] = bytes(data)

    async def write_new(self, path, data):
        self._require_parent(path)
        if path in self.files or path in self.dirs:
            return False
        self.files[path] = bytes(data)
        return True

    async def open_read(self, path):
        if path not in self.files:
            raise FileNotFoundError(str(path))
        data = self.files[path]

        async def chunks():
            yield data

        async def close():
            pass

        return len(data), chunks(), close

    async def unlink(self, path):
        return self.files.pop(path, None) is not None

    async def list_files(self, path):
        if path not in self.dirs:
            raise FileNotFoundError(str(path))
        return [p.name for p in self.files if p.parent == path]

    async def remove_tree(self, path):
        if path not in self.dirs:
            return False
        self.dirs = {d for d in self.dirs if d != path and path not in d.parents}
        self.files = {p: v for p, v in self.files.items() if path not in p.parents}
        return True

    async def clear_scratch(self):
        return 0


@pytest_asyncio.fixture
async def disk_store(tmp_path):
    store = FolderStore(tmp_path / "images", LocalFileSystem(tmp_path / "temp"))
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def memory_store():
    store = FolderStore(Path("/srv/images"), MemoryFileSystem())
    await store.initialize()
    return store


@pytest_asyncio.fixture(params=["disk", "memory"])
async def store(request, tmp_path):
    if request.param == "disk":
        store = FolderStore(tmp_path / "images", LocalFileSystem(tmp_path / "temp"))
    else:
        store = FolderStore(Path("/srv/images"), MemoryFileSystem())
    await store.initialize()
    return store
