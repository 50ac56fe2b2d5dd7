# vfs/__init__.py
from .vfs import PackedFS, collapse_slashes

__all__ = ["PackedFS", "collapse_slashes"]
