# pack.py
# Packfs – Pack subsystem: turn ordered source files into a link-addressable manifest

import os
import subprocess
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ingest import SourceFile, read_payload, stat_size
from naming import check_unique_names, is_symbol_safe, virtual_path


# ============================================================
# Exceptions
# ============================================================

class PackError(Exception):
    pass


class ExternalToolError(PackError):
    """The object compiler could not be run or exited non-zero."""

    def __init__(self, command: List[str], returncode: Optional[int], stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        status = "could not be started" if returncode is None else f"exited with status {returncode}"
        message = f"{' '.join(self.command)} {status}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


# ============================================================
# Configuration
# ============================================================

DEFAULT_LD = "ld"
DEFAULT_JOBS = 1

# Symbol prefix an object compiler uses for "-b binary" inputs
BINARY_SYMBOL_PREFIX = "_binary"


# ============================================================
# Output Format
# ============================================================

@dataclass(frozen=True)
class Entry:
    """
    One packed file.

    Attributes:
        relative_path: Forward-slash path relative to the input root
        virtual_path: Path presented to consumers at runtime (prefix + relative)
        safe_name: Sanitized identifier derived from relative_path
        size: Payload length in bytes
        offset: Start of the payload in the blob (blob backend only)
        start_symbol: Link-time symbol marking the first byte (object backend only)
        end_symbol: Link-time symbol marking one past the last byte (object backend only)
        object_path: Generated relocatable object (object backend only)
    """
    relative_path: str
    virtual_path: str
    safe_name: str
    size: int
    offset: Optional[int] = None
    start_symbol: Optional[str] = None
    end_symbol: Optional[str] = None
    object_path: Optional[str] = None


@dataclass(frozen=True)
class Manifest:
    """Ordered entry table plus run-level metadata, built once per run."""
    backend: str
    prefix: str
    entries: Tuple[Entry, ...]
    blob: Optional[bytes] = field(default=None, repr=False)

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def total_blob_size(self) -> Optional[int]:
        if self.blob is None:
            return None
        return len(self.blob)

    @property
    def object_paths(self) -> List[str]:
        return [e.object_path for e in self.entries if e.object_path is not None]

    def payload(self, index: int) -> bytes:
        """Bytes of entry `index` as addressed by its blob range."""
        if self.blob is None:
            raise PackError(f"{self.backend} manifest carries no blob")
        entry = self.entries[index]
        return self.blob[entry.offset:entry.offset + entry.size]

    def verify(self):
        """
        Check the blob addressing invariants.

        Ranges must start at 0, be contiguous in entry order, and cover the
        blob exactly.
        """
        if self.blob is None:
            return
        expected = 0
        for entry in self.entries:
            if entry.offset != expected:
                raise PackError(
                    f"{entry.relative_path}: offset {entry.offset}, expected {expected}"
                )
            expected += entry.size
        if expected != len(self.blob):
            raise PackError(f"entry sizes sum to {expected}, blob is {len(self.blob)} bytes")


# ============================================================
# Backends
# ============================================================

class Backend(ABC):
    """Strategy turning ordered source files into a Manifest."""

    name = "backend"

    def __init__(self, prefix: str = "", verbose: bool = False):
        self.prefix = prefix
        self.verbose = verbose

    def _names(self, sources: Sequence[SourceFile]) -> List[Tuple[str, str]]:
        """(virtual path, safe name) per source, failing on identifier collisions."""
        safe_names = check_unique_names(s.relative_path for s in sources)
        return [
            (virtual_path(self.prefix, s.relative_path), safe_names[s.relative_path])
            for s in sources
        ]

    @abstractmethod
    def pack_entries(self, sources: Sequence[SourceFile]) -> Manifest:
        ...


class BlobBackend(Backend):
    """Concatenate every payload into one contiguous, unpadded blob."""

    name = "blob"

    def pack_entries(self, sources: Sequence[SourceFile]) -> Manifest:
        names = self._names(sources)

        payloads = []
        for source in sources:
            payloads.append(read_payload(source))
            if self.verbose:
                print(f"  • {source.relative_path} ({len(payloads[-1])} bytes)")

        # Later offsets depend on earlier sizes: offset[i] = sum(size[:i])
        sizes = np.array([len(p) for p in payloads], dtype=np.int64)
        offsets = np.cumsum(sizes) - sizes
        blob = b"".join(payloads)

        entries = tuple(
            Entry(
                relative_path=source.relative_path,
                virtual_path=vpath,
                safe_name=safe,
                size=int(sizes[i]),
                offset=int(offsets[i]),
            )
            for i, (source, (vpath, safe)) in enumerate(zip(sources, names))
        )

        manifest = Manifest(backend=self.name, prefix=self.prefix, entries=entries, blob=blob)
        manifest.verify()
        return manifest


class ObjectBackend(Backend):
    """
    Compile each file into its own relocatable object with an external tool.

    The tool is run as `<ld> -r -b binary -o <object> <relative path>` from
    the input root, so the symbols it exposes are named from the relative
    path: `_binary_<safe name>_start` and `_binary_<safe name>_end`.
    Addresses are resolved at final link time, not here.
    """

    name = "object"

    def __init__(
        self,
        root: str,
        object_dir: str,
        prefix: str = "",
        ld: str = DEFAULT_LD,
        jobs: int = DEFAULT_JOBS,
        verbose: bool = False,
    ):
        super().__init__(prefix=prefix, verbose=verbose)
        self.root = os.path.abspath(root)
        self.object_dir = object_dir
        self.ld = ld
        self.jobs = max(1, jobs)

    def object_path(self, safe_name: str) -> str:
        return os.path.join(self.object_dir, f"{safe_name}.o")

    def compile_one(self, source: SourceFile, safe_name: str) -> str:
        """Run the object compiler for one file; returns the object path."""
        obj = self.object_path(safe_name)
        cmd = [self.ld, "-r", "-b", "binary", "-o", os.path.abspath(obj), source.relative_path]
        try:
            result = subprocess.run(
                cmd,
                cwd=self.root,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise ExternalToolError(cmd, None, e.strerror or str(e))

        if result.returncode != 0:
            raise ExternalToolError(cmd, result.returncode, result.stderr.strip())

        if self.verbose:
            print(f"  • {source.relative_path} -> {obj}")
        return obj

    def _compile_sequential(self, jobs: List[Tuple[SourceFile, str]]) -> List[str]:
        created: List[str] = []
        try:
            for source, safe in jobs:
                created.append(self.compile_one(source, safe))
        except ExternalToolError:
            _remove_files(created)
            raise
        return created

    def _compile_parallel(self, jobs: List[Tuple[SourceFile, str]]) -> List[str]:
        with ThreadPoolExecutor(max_workers=self.jobs) as pool:
            futures = [pool.submit(self.compile_one, source, safe) for source, safe in jobs]
            _, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()

        finished = [f for f in futures if not f.cancelled()]
        errors = [f.exception() for f in finished if f.exception() is not None]
        if errors:
            _remove_files([f.result() for f in finished if f.exception() is None])
            raise errors[0]

        # Results come back in submission order, i.e. traversal order
        return [f.result() for f in futures]

    def pack_entries(self, sources: Sequence[SourceFile]) -> Manifest:
        names = self._names(sources)

        for source, (_, safe) in zip(sources, names):
            if not is_symbol_safe(safe):
                raise PackError(
                    f"{source.relative_path}: identifier {safe!r} is not a valid symbol name"
                )

        sizes = [stat_size(source) for source in sources]

        os.makedirs(self.object_dir, exist_ok=True)

        jobs = [(source, safe) for source, (_, safe) in zip(sources, names)]
        if self.jobs > 1 and len(jobs) > 1:
            objects = self._compile_parallel(jobs)
        else:
            objects = self._compile_sequential(jobs)

        entries = tuple(
            Entry(
                relative_path=source.relative_path,
                virtual_path=vpath,
                safe_name=safe,
                size=sizes[i],
                start_symbol=f"{BINARY_SYMBOL_PREFIX}_{safe}_start",
                end_symbol=f"{BINARY_SYMBOL_PREFIX}_{safe}_end",
                object_path=objects[i],
            )
            for i, (source, (vpath, safe)) in enumerate(zip(sources, names))
        )
        return Manifest(backend=self.name, prefix=self.prefix, entries=entries)


def _remove_files(paths: List[str]):
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


# ============================================================
# Backend Selection
# ============================================================

BACKENDS = ("blob", "object")


def pack_files(
    sources: Sequence[SourceFile],
    backend: str = "blob",
    prefix: str = "",
    root: Optional[str] = None,
    object_dir: Optional[str] = None,
    ld: str = DEFAULT_LD,
    jobs: int = DEFAULT_JOBS,
    verbose: bool = False,
) -> Manifest:
    """
    Pack source files with the chosen backend.

    Args:
        sources: Ordered files from the ingest stage
        backend: "blob" or "object"
        prefix: Virtual mount point prepended to relative paths
        root: Input root (object backend only; tool working directory)
        object_dir: Where generated objects go (object backend only)
        ld: Object compiler command (object backend only)
        jobs: Concurrent tool invocations (object backend only)
        verbose: Print per-file progress

    Returns:
        Manifest with entries in source order
    """
    if backend == "blob":
        return BlobBackend(prefix=prefix, verbose=verbose).pack_entries(sources)
    if backend == "object":
        if root is None or object_dir is None:
            raise PackError("object backend needs an input root and an object directory")
        return ObjectBackend(
            root=root,
            object_dir=object_dir,
            prefix=prefix,
            ld=ld,
            jobs=jobs,
            verbose=verbose,
        ).pack_entries(sources)
    raise PackError(f"Unknown backend: {backend!r} (expected one of {', '.join(BACKENDS)})")
