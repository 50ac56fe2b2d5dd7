# emit/__init__.py
# Packfs – Emit subsystem: C source rendering and atomic output

from .emit import (
    emit_manifest,
    render_outputs,
    render_blob_header,
    render_blob_data,
    render_object_header,
    render_object_list,
    render_manifest_json,
    write_outputs,
    c_string,
    data_output_path,
    object_list_path,
    object_dir_path,
    json_output_path,
    EmitConfig,
    EmitResult,
    EmitError,
    DEFAULT_BLOB_NAME,
    DEFAULT_OBJECT_NAME,
)

__all__ = [
    "emit_manifest",
    "render_outputs",
    "render_blob_header",
    "render_blob_data",
    "render_object_header",
    "render_object_list",
    "render_manifest_json",
    "write_outputs",
    "c_string",
    "data_output_path",
    "object_list_path",
    "object_dir_path",
    "json_output_path",
    "EmitConfig",
    "EmitResult",
    "EmitError",
    "DEFAULT_BLOB_NAME",
    "DEFAULT_OBJECT_NAME",
]
