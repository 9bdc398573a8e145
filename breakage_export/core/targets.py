"""
Storage targets that export files are written through.

The channels never touch the filesystem directly; they go through a
``StorageTarget`` so the private-root and user-granted-root cases are
chosen by the caller and tests can inject failing primitives.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

TEXT_MIME = "text/plain"


class StorageTarget(Protocol):
    """Directory and file primitives. Every method may raise ``OSError``."""

    def exists(self, path: Any) -> bool:
        ...

    def create_directory(self, path: Any) -> None:
        ...

    def create_file(self, directory: Any, name: str, mime: str = TEXT_MIME) -> Any:
        ...

    def write_all(self, handle: Any, text: str) -> None:
        ...


class LocalFileTarget:
    """StorageTarget backed by the local filesystem.
    
    Files are written as UTF-8 and an existing file of the same name is
    overwritten.
    """

    def exists(self, path) -> bool:
        return Path(path).exists()

    def create_directory(self, path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def create_file(self, directory, name: str, mime: str = TEXT_MIME) -> Path:
        path = Path(directory) / name
        path.touch()
        return path

    def write_all(self, handle, text: str) -> None:
        with open(handle, "w", encoding="utf-8", newline="") as f:
            f.write(text)


@dataclass(frozen=True)
class DirectoryGrant:
    """Outcome of asking the user for access to an external directory."""
    granted: bool
    directory_handle: Optional[Any] = None


AccessRequest = Callable[[], DirectoryGrant]
