# naming/__init__.py
from .naming import (
    sanitize_name,
    is_symbol_safe,
    check_unique_names,
    virtual_path,
    NameCollisionError,
)

__all__ = [
    "sanitize_name",
    "is_symbol_safe",
    "check_unique_names",
    "virtual_path",
    "NameCollisionError",
]
