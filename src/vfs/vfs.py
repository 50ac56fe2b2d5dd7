# vfs.py
# Packfs – VFS subsystem: serve packed files by virtual path

import io
import re
from typing import Dict, Iterator, Optional

from pack import Entry, Manifest, PackError


_DUPLICATE_SLASHES = re.compile(r"/{2,}")


def collapse_slashes(path: str) -> str:
    """'/pkg//sub///b.txt' -> '/pkg/sub/b.txt'"""
    return _DUPLICATE_SLASHES.sub("/", path)


class PackedFS:
    """
    Read-only view over a blob manifest, addressed by virtual path.

    Lookups collapse repeated slashes and only consider paths under the
    manifest prefix; anything else is not served from the pack.
    """

    def __init__(self, manifest: Manifest):
        self.manifest = manifest
        self.prefix = collapse_slashes(manifest.prefix)
        self._index: Dict[str, int] = {
            entry.virtual_path: i for i, entry in enumerate(manifest.entries)
        }

    def __len__(self) -> int:
        return self.manifest.entry_count

    def __iter__(self) -> Iterator[str]:
        return (entry.virtual_path for entry in self.manifest.entries)

    def __contains__(self, path: str) -> bool:
        return self.resolve(path) is not None

    def resolve(self, path: str) -> Optional[Entry]:
        path = collapse_slashes(path)
        if not path.startswith(self.prefix):
            return None
        index = self._index.get(path)
        if index is None:
            return None
        return self.manifest.entries[index]

    def exists(self, path: str) -> bool:
        return path in self

    def read_bytes(self, path: str) -> bytes:
        entry = self.resolve(path)
        if entry is None:
            raise FileNotFoundError(path)
        if self.manifest.blob is None:
            raise PackError(f"{self.manifest.backend} manifest carries no file data")
        return self.manifest.blob[entry.offset:entry.offset + entry.size]

    def open(self, path: str) -> io.BytesIO:
        return io.BytesIO(self.read_bytes(path))
