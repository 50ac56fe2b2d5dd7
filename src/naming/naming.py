# naming.py
# Packfs – Naming subsystem: symbol-safe identifiers and virtual paths

import posixpath
import re
from typing import Dict, Iterable, List


# ============================================================
# Exceptions
# ============================================================

class NameCollisionError(Exception):
    """Two or more relative paths sanitize to the same identifier."""

    def __init__(self, collisions: Dict[str, List[str]]):
        self.collisions = collisions
        lines = [
            f"  {name}: {', '.join(paths)}"
            for name, paths in sorted(collisions.items())
        ]
        super().__init__(
            f"{len(collisions)} identifier collision(s) after sanitizing paths:\n"
            + "\n".join(lines)
        )


# ============================================================
# Configuration
# ============================================================

# Characters replaced by "_" when deriving a safe name
UNSAFE_CHARS = re.compile(r"[/.\-]")

# What an object compiler keeps intact in a binary-input symbol
SYMBOL_SAFE = re.compile(r"^[A-Za-z0-9_]+$")


# ============================================================
# Sanitization
# ============================================================

def sanitize_name(relative_path: str) -> str:
    """
    Map a relative path to a backend-safe identifier.

    Every "/", "." and "-" becomes "_". Pure and deterministic; no uniqueness
    guarantee (see check_unique_names).

    >>> sanitize_name("a/b-c.txt")
    'a_b_c_txt'
    """
    return UNSAFE_CHARS.sub("_", relative_path)


def is_symbol_safe(name: str) -> bool:
    """True if name survives an object compiler's symbol mangling unchanged."""
    return bool(SYMBOL_SAFE.match(name))


def check_unique_names(relative_paths: Iterable[str]) -> Dict[str, str]:
    """
    Sanitize every path and fail if any two share an identifier.

    Returns:
        Mapping relative_path -> safe name
    """
    names: Dict[str, str] = {}
    by_name: Dict[str, List[str]] = {}
    for rel in relative_paths:
        safe = sanitize_name(rel)
        names[rel] = safe
        by_name.setdefault(safe, []).append(rel)

    collisions = {name: paths for name, paths in by_name.items() if len(paths) > 1}
    if collisions:
        raise NameCollisionError(collisions)
    return names


# ============================================================
# Virtual Paths
# ============================================================

def virtual_path(prefix: str, relative_path: str) -> str:
    """
    Join the mount prefix and a relative path with forward-slash semantics.

    An empty prefix leaves the relative path unchanged.
    """
    if not prefix:
        return relative_path
    return posixpath.normpath(posixpath.join(prefix, relative_path))
