#!/usr/bin/env python3
"""
main.py
Packfs – Main orchestrator

Single entry point for the directory-to-blob packer.
Runs all subsystems sequentially: ingest → pack → emit

Usage:
    python main.py blob -i <dir> -o <header.h> [--prefix /mnt] [--skip REGEX]
    python main.py object -i <dir> -o <header.h> --prefix /mnt [--ld ld] [--jobs N]

Examples:
    python main.py blob -i assets -o build/sfs.h --prefix /assets
    python main.py object -i lib/perl5 -o build/perlpack.h --prefix /perl --skip '\\.pod$'
"""

import argparse
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

# Import all subsystems
from ingest import ingest_directory, IngestError
from naming import NameCollisionError
from pack import pack_files, Manifest, PackError, BACKENDS, DEFAULT_LD
from emit import (
    emit_manifest,
    EmitError,
    object_dir_path,
    EmitConfig,
    DEFAULT_BLOB_NAME,
    DEFAULT_OBJECT_NAME,
)


# ============================================================
# Exceptions
# ============================================================

class UsageError(Exception):
    """Invalid invocation: nothing has been read or written."""
    pass


# ============================================================
# Configuration
# ============================================================

@dataclass
class PipelineConfig:
    """Configuration for the pipeline."""
    input_path: str
    output_path: str
    backend: str = "blob"

    # Ingest settings
    skip: Optional[str] = None

    # Pack settings
    prefix: str = ""
    ld: str = DEFAULT_LD
    jobs: int = 1

    # Emit settings
    name: Optional[str] = None  # defaults per backend
    write_json: bool = False

    verbose: bool = True

    @property
    def symbol_name(self) -> str:
        if self.name:
            return self.name
        return DEFAULT_OBJECT_NAME if self.backend == "object" else DEFAULT_BLOB_NAME

    @property
    def object_dir(self) -> str:
        return object_dir_path(self.output_path)


# ============================================================
# Pipeline Statistics
# ============================================================

@dataclass
class PipelineStats:
    """Statistics collected during pipeline execution."""
    # Stage timings
    ingest_time: float = 0.0
    pack_time: float = 0.0
    emit_time: float = 0.0
    total_time: float = 0.0

    # Stage outputs
    files_found: int = 0
    entries_packed: int = 0
    total_bytes: int = 0
    outputs: List[str] = field(default_factory=list)

    def print_summary(self):
        """Print a formatted summary of pipeline statistics."""
        print("\n" + "=" * 70)
        print("PACK SUMMARY")
        print("=" * 70)

        print("\nStage Timings:")
        print(f"  Ingest:  {self.ingest_time:>8.2f}s  ({self.files_found} files)")
        print(f"  Pack:    {self.pack_time:>8.2f}s  ({self.entries_packed} entries, {self.total_bytes:,} bytes)")
        print(f"  Emit:    {self.emit_time:>8.2f}s  ({len(self.outputs)} files)")
        print(f"  {'─' * 40}")
        print(f"  Total:   {self.total_time:>8.2f}s")

        print("\nOutputs:")
        for path in self.outputs:
            print(f"  {path}")

        print("\nPipeline Status: ✓ Complete")
        print("=" * 70)


# ============================================================
# Validation
# ============================================================

def validate_config(config: PipelineConfig):
    """Reject invocations that cannot succeed before any work starts."""
    if config.backend not in BACKENDS:
        raise UsageError(f"Unknown backend: {config.backend}")

    path = Path(config.input_path)
    if not path.exists() or not path.is_dir():
        raise UsageError(f"Input path does not exist or is not a directory: {config.input_path}")

    if not config.output_path:
        raise UsageError("Output path not specified")

    if config.backend == "object" and not config.prefix:
        raise UsageError("Prefix not specified (required by the object backend)")

    if config.jobs < 1:
        raise UsageError(f"--jobs must be at least 1, got {config.jobs}")


# ============================================================
# Pipeline Stages
# ============================================================

def _banner(title: str):
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def stage_ingest(config: PipelineConfig):
    """
    Stage 1: Walk the input directory.

    Returns:
        (list of SourceFile objects, elapsed seconds)
    """
    if config.verbose:
        _banner("STAGE 1: INGEST")
        print(f"\nWalking: {config.input_path}")
        if config.skip:
            print(f"  Skip pattern: {config.skip}")

    start_time = time.time()
    sources = ingest_directory(config.input_path, skip=config.skip)
    elapsed = time.time() - start_time

    if config.verbose:
        print(f"\n✓ Found {len(sources)} files in {elapsed:.2f}s")

    return sources, elapsed


def stage_pack(sources, config: PipelineConfig):
    """
    Stage 2: Pack files with the configured backend.

    Returns:
        (Manifest, elapsed seconds)
    """
    if config.verbose:
        _banner("STAGE 2: PACK")
        print(f"\nBackend: {config.backend}")
        print(f"  Prefix: {config.prefix or '(none)'}")
        if config.backend == "object":
            print(f"  Tool:   {config.ld} (jobs: {config.jobs})")
            print(f"  Objects: {config.object_dir}")
        print()

    start_time = time.time()
    manifest = pack_files(
        sources,
        backend=config.backend,
        prefix=config.prefix,
        root=config.input_path,
        object_dir=config.object_dir,
        ld=config.ld,
        jobs=config.jobs,
        verbose=config.verbose,
    )
    elapsed = time.time() - start_time

    if config.verbose:
        print(f"\n✓ Packed {manifest.entry_count} entries in {elapsed:.2f}s")
        if manifest.total_blob_size is not None:
            print(f"  Blob size: {manifest.total_blob_size:,} bytes")

    return manifest, elapsed


def stage_emit(manifest: Manifest, config: PipelineConfig):
    """
    Stage 3: Render and write the manifest.

    Returns:
        (EmitResult, elapsed seconds)
    """
    if config.verbose:
        _banner("STAGE 3: EMIT")
        print()

    start_time = time.time()
    result = emit_manifest(
        manifest,
        EmitConfig(
            output_path=config.output_path,
            name=config.symbol_name,
            write_json=config.write_json,
        ),
        verbose=config.verbose,
    )
    elapsed = time.time() - start_time

    if config.verbose:
        print(f"\n✓ Emitted {len(result.written)} files in {elapsed:.2f}s")

    return result, elapsed


# ============================================================
# Main Pipeline
# ============================================================

def run_pipeline(config: PipelineConfig):
    """
    Run the complete packing pipeline.

    Any failure propagates to the caller; outputs are only written by the
    final stage, after the manifest has been fully built.

    Args:
        config: Pipeline configuration

    Returns:
        (Manifest, EmitResult, PipelineStats)
    """
    validate_config(config)

    stats = PipelineStats()
    pipeline_start = time.time()

    # Stage 1: Ingest
    sources, stats.ingest_time = stage_ingest(config)
    stats.files_found = len(sources)

    # Stage 2: Pack
    manifest, stats.pack_time = stage_pack(sources, config)
    stats.entries_packed = manifest.entry_count
    stats.total_bytes = sum(e.size for e in manifest.entries)

    # Stage 3: Emit
    result, stats.emit_time = stage_emit(manifest, config)
    stats.outputs = list(result.written)

    stats.total_time = time.time() - pipeline_start

    if config.verbose:
        stats.print_summary()

    return manifest, result, stats


# ============================================================
# CLI Interface
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="packfs",
        description="Packfs - Pack a directory tree into C-linkable data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s blob -i assets -o build/sfs.h --prefix /assets
  %(prog)s object -i lib -o build/perlpack.h --prefix /lib --skip '\\.pod$'
  %(prog)s object -i lib -o build/perlpack.h --prefix /lib --ld x86_64-linux-gnu-ld --jobs 8
        """
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--input-path", "-i",
        required=True,
        help="Directory to pack"
    )
    common.add_argument(
        "--output-file", "--output-path", "-o",
        dest="output_path",
        required=True,
        help="Header file to generate"
    )
    common.add_argument(
        "--skip",
        default=None,
        help="Regular expression; files whose relative path matches are not packed"
    )
    common.add_argument(
        "--name",
        default=None,
        help="C identifier prefix for emitted declarations"
    )
    common.add_argument(
        "--json",
        action="store_true",
        dest="write_json",
        help="Also write a machine-readable <output>.json manifest"
    )
    common.add_argument(
        "--quiet", "-q",
        action="store_false",
        dest="verbose",
        help="Only report errors"
    )

    sub = parser.add_subparsers(dest="backend", required=True)

    blob = sub.add_parser(
        "blob",
        parents=[common],
        help="Concatenate all files into one data blob (<output> + <output>_data.c)",
    )
    blob.add_argument(
        "--prefix",
        default="",
        help="Virtual mount path prepended to relative paths (default: none)"
    )

    obj = sub.add_parser(
        "object",
        parents=[common],
        help="Compile each file into its own object with an external linker",
    )
    obj.add_argument(
        "--prefix",
        default="",
        help="Virtual mount path prepended to relative paths (required)"
    )
    obj.add_argument(
        "--ld",
        default=DEFAULT_LD,
        help=f"Object compiler invoked as '<ld> -r -b binary' (default: {DEFAULT_LD})"
    )
    obj.add_argument(
        "--jobs", "-j",
        type=int,
        default=1,
        help="Concurrent linker invocations (default: 1)"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with CLI argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = PipelineConfig(
        input_path=args.input_path,
        output_path=args.output_path,
        backend=args.backend,
        skip=args.skip,
        prefix=args.prefix,
        ld=getattr(args, "ld", DEFAULT_LD),
        jobs=getattr(args, "jobs", 1),
        name=args.name,
        write_json=args.write_json,
        verbose=args.verbose,
    )

    try:
        run_pipeline(config)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (IngestError, NameCollisionError, PackError, EmitError) as e:
        print(f"\n✗ Pack failed: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
