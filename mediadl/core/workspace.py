import os
import uuid
import logging
import mimetypes
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class TempArea:
    """
    The managed directory holding produced media and the two index files.

    Media files are named by a fresh random identifier plus an extension,
    so names never collide and carry no user input.
    """
    HISTORY_FILENAME = "download-history.json"
    SETTINGS_FILENAME = "user-settings.json"
    INDEX_FILENAMES = (HISTORY_FILENAME, SETTINGS_FILENAME)

    def __init__(self, root_path):
        self.root = Path(root_path).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def history_path(self) -> Path:
        return self.root / self.HISTORY_FILENAME

    @property
    def settings_path(self) -> Path:
        return self.root / self.SETTINGS_FILENAME

    def new_name(self, extension: str) -> str:
        ext = extension.lstrip(".") or "bin"
        return f"{uuid.uuid4()}.{ext}"

    def new_path(self, extension: str) -> Path:
        return self.root / self.new_name(extension)

    def path_for(self, filename: str) -> Path:
        return self.root / Path(filename).name

    def contains(self, path) -> bool:
        """Check if the given path is inside the managed area."""
        try:
            p = Path(path).resolve()
            return self.root in p.parents
        except (OSError, ValueError):
            return False

    def exists(self, path) -> bool:
        if not path:
            return False
        p = Path(path)
        return self.contains(p) and p.is_file()

    def is_index_file(self, name: str) -> bool:
        return name in self.INDEX_FILENAMES or name.endswith(".tmp")

    def files(self) -> Iterator[Path]:
        """Media files in the area, excluding the index files."""
        for entry in self.root.iterdir():
            if entry.is_file() and not self.is_index_file(entry.name):
                yield entry

    def size_of(self, path) -> int:
        try:
            return Path(path).stat().st_size
        except OSError:
            return 0

    def remove(self, path) -> int:
        """Delete a managed file. Returns the bytes freed (0 if it was already gone)."""
        p = Path(path)
        if not self.contains(p):
            logger.warning("refusing to remove file outside temp area path=%s", p)
            return 0
        try:
            size = p.stat().st_size
            p.unlink()
            return size
        except FileNotFoundError:
            return 0

    def total_size(self) -> int:
        return sum(self.size_of(p) for p in self.files())


def guess_mime_type(path, default: str = "application/octet-stream") -> str:
    mime, _ = mimetypes.guess_type(str(path))
    return mime or default


def file_extension(name: Optional[str], default: str = "bin") -> str:
    if not name:
        return default
    _, ext = os.path.splitext(name)
    return ext.lstrip(".").lower() or default
