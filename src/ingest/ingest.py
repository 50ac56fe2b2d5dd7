# ingest.py
# Packfs – Ingest subsystem: walk a directory tree into an ordered file list

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Pattern


# ============================================================
# Exceptions
# ============================================================

class IngestError(Exception):
    pass


class PatternError(IngestError):
    """Skip pattern is not a valid regular expression."""
    pass


class FilesystemError(IngestError):
    """Listing, stat or read failure on a path under the input root."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


# ============================================================
# Output Format
# ============================================================

@dataclass(frozen=True)
class SourceFile:
    """A file selected for packing."""
    absolute_path: str
    relative_path: str


# ============================================================
# Skip Rule Processing
# ============================================================

def compile_skip_pattern(skip: Optional[str]) -> Optional[Pattern]:
    """
    Compile the skip expression once, before any traversal.

    Args:
        skip: Regular expression, or None/empty for "include everything"

    Returns:
        Compiled pattern, or None when no filtering is configured
    """
    if not skip:
        return None
    try:
        return re.compile(skip)
    except re.error as e:
        raise PatternError(f"Invalid skip pattern {skip!r}: {e}")


def should_skip(relative_path: str, pattern: Optional[Pattern]) -> bool:
    """Check if a forward-slash relative path matches the skip pattern."""
    if pattern is None:
        return False
    return pattern.search(relative_path) is not None


# ============================================================
# Ordering
# ============================================================

def sort_key(relative_path: str) -> bytes:
    """Byte-wise ordering key, independent of locale and platform."""
    return relative_path.encode("utf-8", "surrogateescape")


# ============================================================
# Directory Traversal
# ============================================================

def _scan(directory: str) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            return list(it)
    except OSError as e:
        raise FilesystemError(directory, e.strerror or str(e))


def walk_directory(
    root: str | Path,
    pattern: Optional[Pattern] = None,
) -> List[SourceFile]:
    """
    Recursively enumerate packable files under root.

    Only leaf files are returned; directories are descended into but never
    filtered or yielded. The result is sorted by relative path bytes so the
    same directory contents always produce the same order.

    Args:
        root: Input directory
        pattern: Compiled skip pattern (from compile_skip_pattern)

    Returns:
        List of SourceFile objects in packing order
    """
    root = os.path.abspath(str(root))
    files: List[SourceFile] = []

    def visit(directory: str, rel_dir: str):
        for entry in _scan(directory):
            rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            try:
                is_dir = entry.is_dir()
                is_file = not is_dir and entry.is_file()
                # A link whose target cannot be stat'ed is an error, not a skip
                if not is_dir and not is_file and entry.is_symlink():
                    entry.stat()
            except OSError as e:
                raise FilesystemError(entry.path, e.strerror or str(e))

            if is_dir:
                visit(entry.path, rel)
            elif is_file:
                if should_skip(rel, pattern):
                    continue
                files.append(SourceFile(absolute_path=entry.path, relative_path=rel))

    visit(root, "")
    files.sort(key=lambda f: sort_key(f.relative_path))
    return files


def read_payload(source: SourceFile) -> bytes:
    """Read a source file's bytes, raising FilesystemError on failure."""
    try:
        with open(source.absolute_path, "rb") as f:
            return f.read()
    except OSError as e:
        raise FilesystemError(source.absolute_path, e.strerror or str(e))


def stat_size(source: SourceFile) -> int:
    """Size of a source file in bytes, raising FilesystemError on failure."""
    try:
        return os.stat(source.absolute_path).st_size
    except OSError as e:
        raise FilesystemError(source.absolute_path, e.strerror or str(e))


# ============================================================
# Local Path Ingestion
# ============================================================

def ingest_directory(
    path: str | Path,
    skip: Optional[str] = None,
) -> List[SourceFile]:
    """
    Validate the input root and walk it.

    The skip pattern is compiled before the root is touched, so an invalid
    pattern fails the run without any traversal.

    Args:
        path: Input directory
        skip: Optional regular expression; matching relative paths are excluded

    Returns:
        List of SourceFile objects in packing order
    """
    pattern = compile_skip_pattern(skip)

    path = Path(path)
    if not path.exists():
        raise IngestError(f"Path does not exist: {path}")
    if not path.is_dir():
        raise IngestError(f"Path is not a directory: {path}")

    return walk_directory(path, pattern)
