"""File operations confined to the data root.

Every user supplied path goes through FileStore.resolve() first, which is
the only thing standing between the API and path traversal.
"""

from __future__ import annotations

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from sidecar.api.models import FileInfo

MAX_UPLOAD_BYTES = 500 * 1024 * 1024
COPY_CHUNK_BYTES = 1024 * 1024

BLOCKED_EXTENSIONS = frozenset({
    ".exe", ".dll", ".sh", ".bat", ".cmd",
    ".php", ".phtml", ".js", ".jsp", ".asp",
})


class PathAccessError(ValueError):
    def __init__(self) -> None:
        super().__init__("invalid path: access denied")


class UploadTooLargeError(ValueError):
    pass


class FileStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(os.path.abspath(root))

    def resolve(self, user_path: str) -> Path:
        """Map a client path onto the data root.

        Leading slashes are ignored, so "/maps" and "maps" are the same
        place. Raises PathAccessError when the normalised path escapes the
        root.
        """
        relative = (user_path or "").replace("\\", "/").lstrip("/")
        full = os.path.normpath(os.path.join(self.root, relative))
        if os.path.commonpath([str(self.root), full]) != str(self.root):
            raise PathAccessError()
        return Path(full)

    def list_dir(self, directory: Path) -> list[FileInfo]:
        entries = []
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            try:
                st = entry.stat()
            except OSError:
                # Vanished or dangling symlink between listing and stat.
                continue
            entries.append(FileInfo(
                name=entry.name,
                size=st.st_size,
                is_dir=entry.is_dir(),
                modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            ))
        return entries

    def save_upload(self, source: BinaryIO, destination: Path, limit: int = MAX_UPLOAD_BYTES) -> int:
        """Copy an upload to disk, removing the partial file if it is too big."""
        written = 0
        try:
            with open(destination, "wb") as out:
                while chunk := source.read(COPY_CHUNK_BYTES):
                    written += len(chunk)
                    if written > limit:
                        raise UploadTooLargeError(f"upload exceeds {limit} bytes")
                    out.write(chunk)
        except UploadTooLargeError:
            destination.unlink(missing_ok=True)
            raise
        return written

    def delete(self, target: Path) -> None:
        """Remove a file or a whole tree. Missing paths are not an error."""
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)

    def make_dirs(self, target: Path) -> None:
        target.mkdir(mode=0o755, parents=True, exist_ok=True)


def is_blocked_filename(filename: str) -> bool:
    return Path(filename).suffix.lower() in BLOCKED_EXTENSIONS
