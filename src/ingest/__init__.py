"""
Ingest subsystem for Packfs.

Purpose: Turn an input directory into the ordered list of files to pack.

Responsibilities:
- Validate the input root
- Compile and apply the skip pattern (against forward-slash relative paths)
- Walk the tree depth-first, leaf files only
- Output: sorted list of SourceFile(absolute_path, relative_path)

Non-responsibilities:
- No symbol naming
- No blob assembly or object compilation
"""

from .ingest import (
    ingest_directory,
    walk_directory,
    compile_skip_pattern,
    should_skip,
    read_payload,
    stat_size,
    SourceFile,
    IngestError,
    PatternError,
    FilesystemError,
)

__all__ = [
    "ingest_directory",
    "walk_directory",
    "compile_skip_pattern",
    "should_skip",
    "read_payload",
    "stat_size",
    "SourceFile",
    "IngestError",
    "PatternError",
    "FilesystemError",
]
