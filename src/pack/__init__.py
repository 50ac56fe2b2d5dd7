# pack/__init__.py
# Packfs – Pack subsystem

from .pack import (
    # Main functions
    pack_files,

    # Backends
    Backend,
    BlobBackend,
    ObjectBackend,

    # Result classes
    Entry,
    Manifest,

    # Errors
    PackError,
    ExternalToolError,

    # Constants
    BACKENDS,
    DEFAULT_LD,
    BINARY_SYMBOL_PREFIX,
)

__all__ = [
    # Main functions
    "pack_files",

    # Backends
    "Backend",
    "BlobBackend",
    "ObjectBackend",

    # Result classes
    "Entry",
    "Manifest",

    # Errors
    "PackError",
    "ExternalToolError",

    # Constants
    "BACKENDS",
    "DEFAULT_LD",
    "BINARY_SYMBOL_PREFIX",
]
