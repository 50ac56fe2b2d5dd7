# emit.py
# Packfs – Emit subsystem: render the manifest as C source and write it atomically

import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from pack import Manifest


# ============================================================
# Exceptions
# ============================================================

class EmitError(Exception):
    """Error while rendering or writing output artifacts."""
    pass


# ============================================================
# Configuration
# ============================================================

DEFAULT_BLOB_NAME = "sfs"
DEFAULT_OBJECT_NAME = "packfs"

BYTES_PER_LINE = 16

# Byte value -> C hex literal, indexed by the blob itself
_HEX_LITERALS = np.array([f"0x{i:02x}" for i in range(256)])


@dataclass
class EmitConfig:
    """Configuration for manifest emission."""
    output_path: str
    name: str = DEFAULT_BLOB_NAME  # C identifier prefix for emitted declarations
    write_json: bool = False


# ============================================================
# Output Format
# ============================================================

@dataclass
class EmitResult:
    """Paths written by one emission."""
    header_path: str
    written: List[str] = field(default_factory=list)
    data_path: Optional[str] = None
    object_list_path: Optional[str] = None
    json_path: Optional[str] = None


# ============================================================
# Output Naming
# ============================================================

def data_output_path(output_path: str) -> str:
    """sfs.h -> sfs_data.c; names without .h get the suffix appended."""
    if output_path.endswith(".h"):
        return output_path[:-2] + "_data.c"
    return output_path + "_data.c"


def object_list_path(output_path: str) -> str:
    return output_path + ".txt"


def object_dir_path(output_path: str) -> str:
    return output_path + ".o"


def json_output_path(output_path: str) -> str:
    return output_path + ".json"


def include_guard(output_path: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", os.path.basename(output_path)).upper()


# ============================================================
# C Literals
# ============================================================

def c_string(text: str) -> str:
    """
    Quote text as a C string literal.

    Printable ASCII passes through; quotes and backslashes are escaped and
    every other byte of the UTF-8 encoding becomes a three-digit octal escape.
    """
    out = []
    for b in text.encode("utf-8", "surrogateescape"):
        if b == 0x5C:
            out.append("\\\\")
        elif b == 0x22:
            out.append('\\"')
        elif 0x20 <= b < 0x7F:
            out.append(chr(b))
        else:
            out.append(f"\\{b:03o}")
    return '"' + "".join(out) + '"'


def format_blob_rows(blob: bytes, per_line: int = BYTES_PER_LINE) -> List[str]:
    """Render blob bytes as rows of comma-separated hex literals."""
    literals = _HEX_LITERALS[np.frombuffer(blob, dtype=np.uint8)]
    return [
        ", ".join(literals[start:start + per_line].tolist())
        for start in range(0, len(literals), per_line)
    ]


def _initializer(items: List[str], indent: str = "  ") -> str:
    # C forbids empty initializer lists; a zero element keeps the array valid
    if not items:
        return f"{{\n{indent}0\n}}"
    return "{\n" + indent + f",\n{indent}".join(items) + "\n}"


# ============================================================
# Blob Backend Rendering
# ============================================================

def render_blob_header(manifest: Manifest, name: str, output_path: str) -> str:
    """Header declaring the entry struct, the entry count and the entry table."""
    guard = include_guard(output_path)
    upper = name.upper()
    lines = [
        f"#ifndef {guard}",
        f"#define {guard}",
        "",
        "#include <stddef.h>",
        "",
        "#ifdef __cplusplus",
        'extern "C" {',
        "#endif",
        "",
        f"#define {upper}_BUILTIN_PREFIX {c_string(manifest.prefix)}",
        "",
        f"struct {name}_entry {{",
        "    const char *abspath;         // Virtual absolute path (prefix + relative path)",
        "    const char *safepath;        // Sanitized identifier of the relative path",
        "    const unsigned char *start;  // Pointer into the data blob",
        "    const unsigned char *end;    // Pointer just past the end of the file data",
        "};",
        "",
        f"extern size_t {name}_builtin_files_num;",
        f"extern const struct {name}_entry {name}_entries[];",
        "",
        "#ifdef __cplusplus",
        "}",
        "#endif",
        "",
        f"#endif // {guard}",
        "",
    ]
    return "\n".join(lines)


def render_blob_data(manifest: Manifest, name: str, header_path: str) -> str:
    """Data source holding the blob bytes and the entry table pointing into it."""
    if manifest.blob is None:
        raise EmitError(f"{manifest.backend} manifest has no blob to render")

    lines = [
        f'#include "{os.path.basename(header_path)}"',
        "",
        f"size_t {name}_builtin_files_num = {manifest.entry_count};",
        "",
        f"// {manifest.total_blob_size} bytes",
        f"const unsigned char {name}_builtin_data[] = {{",
    ]
    rows = format_blob_rows(manifest.blob)
    if rows:
        lines.extend(
            "    " + row + ("," if i < len(rows) - 1 else "")
            for i, row in enumerate(rows)
        )
    else:
        lines.append("    0x00")
    lines.append("};")
    lines.append("")

    lines.append(f"const struct {name}_entry {name}_entries[] = {{")
    if not manifest.entries:
        lines.append("    { 0 }")
    for entry in manifest.entries:
        data = f"{name}_builtin_data"
        lines.append(
            f"    {{ {c_string(entry.virtual_path)}, {c_string(entry.safe_name)}, "
            f"{data} + {entry.offset}, {data} + {entry.offset} + {entry.size} }},"
        )
    lines.append("};")
    lines.append("")
    return "\n".join(lines)


# ============================================================
# Object Backend Rendering
# ============================================================

def render_object_header(manifest: Manifest, name: str, output_path: str) -> str:
    """Header with path tables, extern symbol declarations and pointer arrays."""
    guard = include_guard(output_path)
    upper = name.upper()
    entries = manifest.entries

    lines = [
        f"#ifndef {guard}",
        f"#define {guard}",
        "",
        "#include <stddef.h>",
        "",
        f"#define {upper}_BUILTIN_PREFIX {c_string(manifest.prefix)}",
        "",
        f"size_t {name}_builtin_files_num = {manifest.entry_count};",
        "",
        f"const char* {name}_builtin_abspaths[] = "
        + _initializer([c_string(e.virtual_path) for e in entries]) + ";",
        "",
        f"const char* {name}_builtin_safepaths[] = "
        + _initializer([c_string(e.safe_name) for e in entries]) + ";",
        "",
    ]
    for entry in entries:
        lines.append(f"extern const char {entry.start_symbol}[];")
        lines.append(f"extern const char {entry.end_symbol}[];")
    if entries:
        lines.append("")

    lines.append(
        f"const char* {name}_builtin_starts[] = "
        + _initializer([e.start_symbol for e in entries]) + ";"
    )
    lines.append("")
    lines.append(
        f"const char* {name}_builtin_ends[] = "
        + _initializer([e.end_symbol for e in entries]) + ";"
    )
    lines.append("")
    lines.append("#endif")
    lines.append("")
    return "\n".join(lines)


def render_object_list(manifest: Manifest) -> str:
    """One generated object path per line, in entry order."""
    paths = manifest.object_paths
    if not paths:
        return ""
    return "\n".join(paths) + "\n"


# ============================================================
# Machine-readable Manifest
# ============================================================

def manifest_to_dict(manifest: Manifest) -> Dict[str, Any]:
    entries = []
    for i, entry in enumerate(manifest.entries):
        item: Dict[str, Any] = {
            "id": i,
            "virtual_path": entry.virtual_path,
            "relative_path": entry.relative_path,
            "safe_name": entry.safe_name,
            "size": entry.size,
        }
        if entry.offset is not None:
            item["offset"] = entry.offset
        if entry.start_symbol is not None:
            item["start_symbol"] = entry.start_symbol
            item["end_symbol"] = entry.end_symbol
            item["object_path"] = entry.object_path
        entries.append(item)

    return {
        "backend": manifest.backend,
        "prefix": manifest.prefix,
        "entry_count": manifest.entry_count,
        "total_blob_size": manifest.total_blob_size,
        "entries": entries,
    }


def render_manifest_json(manifest: Manifest) -> str:
    return json.dumps(manifest_to_dict(manifest), indent=2, ensure_ascii=False) + "\n"


# ============================================================
# File Writing
# ============================================================

def write_outputs(files: Dict[str, str]) -> List[str]:
    """
    Write every artifact or none of them.

    Each file is staged as a temporary next to its destination; the
    temporaries are moved into place only once all of them were written.

    Args:
        files: Mapping destination path -> text

    Returns:
        Destination paths, in the order given
    """
    staged = []
    current = None
    try:
        for path, text in files.items():
            current = path
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
            )
            staged.append((tmp, path))
            # Undecodable file names round-trip to their original bytes
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
                f.write(text)

        for tmp, path in staged:
            current = path
            os.replace(tmp, path)
    except (OSError, UnicodeError) as e:
        raise EmitError(f"Failed to write {current}: {e}")
    finally:
        # Replaced temporaries are gone; anything left is from a failed run
        for tmp, _ in staged:
            if os.path.exists(tmp):
                os.remove(tmp)

    return list(files)


# ============================================================
# Emission
# ============================================================

def render_outputs(manifest: Manifest, config: EmitConfig) -> Dict[str, str]:
    """Render every artifact for the manifest's backend, keyed by destination path."""
    out = config.output_path
    files: Dict[str, str] = {}

    if manifest.backend == "blob":
        data_path = data_output_path(out)
        files[out] = render_blob_header(manifest, config.name, out)
        files[data_path] = render_blob_data(manifest, config.name, out)
    elif manifest.backend == "object":
        files[out] = render_object_header(manifest, config.name, out)
        files[object_list_path(out)] = render_object_list(manifest)
    else:
        raise EmitError(f"Unknown backend: {manifest.backend!r}")

    if config.write_json:
        files[json_output_path(out)] = render_manifest_json(manifest)

    return files


def emit_manifest(manifest: Manifest, config: EmitConfig, verbose: bool = False) -> EmitResult:
    """
    Render and write all output artifacts for a manifest.

    Args:
        manifest: Manifest from the pack stage
        config: Output location and naming
        verbose: Print each written path

    Returns:
        EmitResult listing the written files
    """
    files = render_outputs(manifest, config)
    written = write_outputs(files)

    if verbose:
        for path in written:
            print(f"  • Wrote {path}")

    out = config.output_path
    return EmitResult(
        header_path=out,
        written=written,
        data_path=data_output_path(out) if manifest.backend == "blob" else None,
        object_list_path=object_list_path(out) if manifest.backend == "object" else None,
        json_path=json_output_path(out) if config.write_json else None,
    )
