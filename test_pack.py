#!/usr/bin/env python3
"""
Test the pack subsystem: blob assembly and per-file object compilation.
"""

import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / "src"))

from ingest import ingest_directory, SourceFile, FilesystemError
from naming import NameCollisionError
from pack import (
    pack_files,
    BlobBackend,
    ObjectBackend,
    Manifest,
    Entry,
    PackError,
    ExternalToolError,
)


FAKE_LD = """#!{python}
import os, sys
args = sys.argv[1:]
out = args[args.index("-o") + 1]
src = args[-1]
with open(os.environ["FAKE_LD_LOG"], "a") as log:
    log.write(src + "\\n")
if src.endswith("{fail_on}"):
    sys.stderr.write("cannot handle " + src + "\\n")
    sys.exit(3)
with open(src, "rb") as f:
    data = f.read()
with open(out, "wb") as f:
    f.write(b"OBJ:" + data)
"""


def make_tree(root: Path, files: dict):
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


@pytest.fixture
def fake_ld(tmp_path, monkeypatch):
    """Build a stand-in object compiler; returns (tool path, log path) factory."""
    log = tmp_path / "ld.log"
    monkeypatch.setenv("FAKE_LD_LOG", str(log))

    def build(fail_on="<never>"):
        tool = tmp_path / "fake-ld"
        tool.write_text(FAKE_LD.format(python=sys.executable, fail_on=fail_on))
        tool.chmod(0o755)
        return str(tool), log

    return build


@pytest.fixture
def scenario(tmp_path):
    root = tmp_path / "in"
    make_tree(root, {"a.txt": b"hi", "sub/b.txt": b"bye"})
    return root


# ============================================================
# Blob Backend
# ============================================================

def test_blob_end_to_end_scenario(scenario):
    sources = ingest_directory(scenario)
    manifest = BlobBackend(prefix="/pkg").pack_entries(sources)

    assert manifest.blob == b"hibye"
    assert manifest.entry_count == 2
    assert manifest.total_blob_size == 5
    assert [(e.virtual_path, e.offset, e.size) for e in manifest.entries] == [
        ("/pkg/a.txt", 0, 2),
        ("/pkg/sub/b.txt", 2, 3),
    ]
    assert [e.safe_name for e in manifest.entries] == ["a_txt", "sub_b_txt"]


def test_blob_round_trip_and_contiguity(tmp_path):
    files = {
        "empty": b"",
        "bin/zeros.dat": bytes(1000),
        "bin/all.dat": bytes(range(256)),
        "docs/readme.md": "héllo\n".encode("utf-8"),
    }
    make_tree(tmp_path, files)

    manifest = pack_files(ingest_directory(tmp_path), backend="blob")

    assert manifest.entries[0].offset == 0
    for i, entry in enumerate(manifest.entries):
        assert manifest.blob[entry.offset:entry.offset + entry.size] == files[entry.relative_path]
        assert manifest.payload(i) == files[entry.relative_path]
        if i + 1 < manifest.entry_count:
            assert manifest.entries[i + 1].offset == entry.offset + entry.size
    assert manifest.total_blob_size == sum(e.size for e in manifest.entries) == len(manifest.blob)


def test_blob_preserves_walk_order(tmp_path):
    make_tree(tmp_path, {"c": b"3", "a": b"1", "b/x": b"2"})
    sources = ingest_directory(tmp_path)

    manifest = pack_files(sources)

    assert [e.relative_path for e in manifest.entries] == [s.relative_path for s in sources]


def test_blob_bytes_are_held_once(tmp_path):
    make_tree(tmp_path, {"a": b"first", "b": b"second"})

    manifest = pack_files(ingest_directory(tmp_path))

    # Entries address the blob by range; they keep no copy of their own
    assert all(not hasattr(e, "payload") for e in manifest.entries)
    assert [manifest.payload(i) for i in range(2)] == [b"first", b"second"]


def test_blob_empty_prefix_keeps_relative_path(scenario):
    manifest = pack_files(ingest_directory(scenario), prefix="")
    assert [e.virtual_path for e in manifest.entries] == ["a.txt", "sub/b.txt"]


def test_blob_empty_directory(tmp_path):
    manifest = pack_files(ingest_directory(tmp_path))
    assert manifest.entry_count == 0
    assert manifest.blob == b""


def test_blob_read_failure_aborts(tmp_path):
    make_tree(tmp_path, {"a.txt": b"a"})
    sources = ingest_directory(tmp_path)
    sources.append(SourceFile(absolute_path=str(tmp_path / "vanished"), relative_path="vanished"))

    with pytest.raises(FilesystemError):
        pack_files(sources)


def test_blob_name_collision_fails_fast(tmp_path):
    make_tree(tmp_path, {"a-b": b"1", "a_b": b"2"})
    with pytest.raises(NameCollisionError):
        pack_files(ingest_directory(tmp_path))


def test_manifest_verify_detects_gaps():
    entries = (
        Entry(relative_path="a", virtual_path="a", safe_name="a", size=1, offset=0),
        Entry(relative_path="b", virtual_path="b", safe_name="b", size=1, offset=2),
    )
    with pytest.raises(PackError):
        Manifest(backend="blob", prefix="", entries=entries, blob=b"xyz").verify()


# ============================================================
# Object Backend
# ============================================================

def test_object_backend_invokes_tool_per_file(scenario, tmp_path, fake_ld):
    tool, log = fake_ld()
    obj_dir = str(tmp_path / "out" / "pack.h.o")

    manifest = ObjectBackend(
        root=str(scenario), object_dir=obj_dir, prefix="/perl", ld=tool
    ).pack_entries(ingest_directory(scenario))

    # Tool ran from the input root with relative inputs
    assert log.read_text().splitlines() == ["a.txt", "sub/b.txt"]

    assert manifest.backend == "object"
    assert manifest.blob is None
    assert manifest.total_blob_size is None
    assert [e.virtual_path for e in manifest.entries] == ["/perl/a.txt", "/perl/sub/b.txt"]
    assert [e.size for e in manifest.entries] == [2, 3]
    assert [(e.start_symbol, e.end_symbol) for e in manifest.entries] == [
        ("_binary_a_txt_start", "_binary_a_txt_end"),
        ("_binary_sub_b_txt_start", "_binary_sub_b_txt_end"),
    ]
    assert manifest.object_paths == [
        os.path.join(obj_dir, "a_txt.o"),
        os.path.join(obj_dir, "sub_b_txt.o"),
    ]
    assert Path(obj_dir, "sub_b_txt.o").read_bytes() == b"OBJ:bye"


def test_object_backend_creates_object_dir_idempotently(scenario, tmp_path, fake_ld):
    tool, _ = fake_ld()
    obj_dir = tmp_path / "objs"
    obj_dir.mkdir()

    manifest = pack_files(
        ingest_directory(scenario), backend="object", prefix="/p",
        root=str(scenario), object_dir=str(obj_dir), ld=tool,
    )
    assert manifest.entry_count == 2


def test_object_backend_stops_at_first_failure(tmp_path, fake_ld):
    root = tmp_path / "in"
    make_tree(root, {"a.txt": b"a", "bad.txt": b"b", "c.txt": b"c"})
    tool, log = fake_ld(fail_on="bad.txt")
    obj_dir = tmp_path / "objs"

    with pytest.raises(ExternalToolError) as excinfo:
        pack_files(
            ingest_directory(root), backend="object", prefix="/p",
            root=str(root), object_dir=str(obj_dir), ld=tool,
        )

    assert excinfo.value.returncode == 3
    assert "cannot handle bad.txt" in excinfo.value.stderr
    # c.txt never reached; a.txt's object cleaned up
    assert log.read_text().splitlines() == ["a.txt", "bad.txt"]
    assert os.listdir(obj_dir) == []


def test_object_backend_missing_tool(scenario, tmp_path):
    with pytest.raises(ExternalToolError) as excinfo:
        pack_files(
            ingest_directory(scenario), backend="object", prefix="/p",
            root=str(scenario), object_dir=str(tmp_path / "objs"),
            ld=str(tmp_path / "no-such-ld"),
        )
    assert excinfo.value.returncode is None


def test_object_backend_parallel_keeps_order(tmp_path, fake_ld):
    root = tmp_path / "in"
    files = {f"dir{i % 4}/file{i:02d}.txt": f"payload {i}".encode() for i in range(24)}
    make_tree(root, files)
    tool, _ = fake_ld()
    sources = ingest_directory(root)

    manifest = pack_files(
        sources, backend="object", prefix="/p",
        root=str(root), object_dir=str(tmp_path / "objs"), ld=tool, jobs=6,
    )

    assert [e.relative_path for e in manifest.entries] == [s.relative_path for s in sources]
    for entry in manifest.entries:
        assert Path(entry.object_path).read_bytes() == b"OBJ:" + files[entry.relative_path]


def test_object_backend_parallel_failure_leaves_no_objects(tmp_path, fake_ld):
    root = tmp_path / "in"
    make_tree(root, {f"f{i:02d}.txt": b"x" for i in range(12)})
    make_tree(root, {"f05.bad": b"x"})
    tool, _ = fake_ld(fail_on=".bad")
    obj_dir = tmp_path / "objs"

    with pytest.raises(ExternalToolError):
        pack_files(
            ingest_directory(root), backend="object", prefix="/p",
            root=str(root), object_dir=str(obj_dir), ld=tool, jobs=4,
        )
    assert os.listdir(obj_dir) == []


def test_object_backend_rejects_unmangleable_names(tmp_path, fake_ld):
    root = tmp_path / "in"
    make_tree(root, {"with space.txt": b"x"})
    tool, log = fake_ld()

    with pytest.raises(PackError, match="not a valid symbol"):
        pack_files(
            ingest_directory(root), backend="object", prefix="/p",
            root=str(root), object_dir=str(tmp_path / "objs"), ld=tool,
        )
    assert not log.exists()


def test_unknown_backend():
    with pytest.raises(PackError, match="Unknown backend"):
        pack_files([], backend="zip")


@pytest.mark.skipif(
    sys.platform != "linux" or shutil.which("ld") is None or shutil.which("nm") is None,
    reason="needs GNU ld and nm",
)
def test_object_backend_with_system_ld(scenario, tmp_path):
    manifest = pack_files(
        ingest_directory(scenario), backend="object", prefix="/p",
        root=str(scenario), object_dir=str(tmp_path / "objs"),
    )

    entry = manifest.entries[1]
    symbols = subprocess.run(
        ["nm", entry.object_path], capture_output=True, text=True, check=True
    ).stdout
    assert entry.start_symbol in symbols
    assert entry.end_symbol in symbols
