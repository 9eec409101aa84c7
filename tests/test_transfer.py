from __future__ import annotations

import json
from pathlib import Path

import pytest

from plumber.errors import DUPLICATE_STASH, STASH_NOT_CAPTURED_YET, UNKNOWN_STASH, TransferError
from plumber.transfer import WorkspaceTransfer, select_files


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    (ws / "outputDir" / "nested").mkdir(parents=True)
    (ws / "outputDir" / "outputFile").write_text("PANTStrousers", encoding="utf-8")
    (ws / "outputDir" / "nested" / "deep.txt").write_text("deep", encoding="utf-8")
    (ws / "outputDir" / "nested" / "junk.pyc").write_bytes(b"\0")
    (ws / "other.txt").write_text("other", encoding="utf-8")
    return ws


def test_select_files_dir_glob_and_excludes(workspace: Path) -> None:
    rels = sorted(p.relative_to(workspace).as_posix() for p in select_files(workspace, ["outputDir"], ["**/*.pyc"]))
    assert rels == ["outputDir/nested/deep.txt", "outputDir/outputFile"]

    rels = [p.relative_to(workspace).as_posix() for p in select_files(workspace, ["*.txt", "other.txt"])]
    assert rels == ["other.txt"]


def test_capture_then_restore(tmp_path: Path, workspace: Path) -> None:
    transfer = WorkspaceTransfer(tmp_path / "stash", producers={"build": ["build"]})
    entry = transfer.capture("build", workspace, ["outputDir/**"], phase="build")

    assert entry.path.is_file()
    assert transfer.get("build") == entry
    assert "outputDir/outputFile" in entry.files
    assert not any(f.endswith(".pyc") for f in entry.files)
    manifest = json.loads(transfer.manifest_path("build").read_text(encoding="utf-8"))
    assert manifest["phase"] == "build"
    assert manifest["files"] == list(entry.files)

    dest = tmp_path / "consumer"
    restored = transfer.restore(dest, "build")
    assert [e.key for e in restored] == ["build"]
    assert (dest / "outputDir" / "outputFile").read_text(encoding="utf-8") == "PANTStrousers"


def test_capture_is_write_once(tmp_path: Path, workspace: Path) -> None:
    transfer = WorkspaceTransfer(tmp_path / "stash")
    transfer.capture("build", workspace, ["other.txt"])
    with pytest.raises(TransferError) as exc:
        transfer.capture("build", workspace, ["other.txt"])
    assert exc.value.kind == DUPLICATE_STASH


def test_restore_unknown_name(tmp_path: Path) -> None:
    transfer = WorkspaceTransfer(tmp_path / "stash", producers={"build": ["build"]})
    with pytest.raises(TransferError) as exc:
        transfer.restore(tmp_path / "dest", "nope")
    assert exc.value.kind == UNKNOWN_STASH


def test_restore_before_capture(tmp_path: Path) -> None:
    transfer = WorkspaceTransfer(tmp_path / "stash", producers={"build": ["build"]})
    with pytest.raises(TransferError) as exc:
        transfer.restore(tmp_path / "dest", "build")
    assert exc.value.kind == STASH_NOT_CAPTURED_YET


def test_matrix_producer_needs_every_unit(tmp_path: Path, workspace: Path) -> None:
    keys = ["build+X=1", "build+X=2"]
    transfer = WorkspaceTransfer(tmp_path / "stash", producers={"build": keys})
    transfer.capture(keys[0], workspace, ["other.txt"], phase="build")

    with pytest.raises(TransferError) as exc:
        transfer.restore(tmp_path / "dest", "build")
    assert exc.value.kind == STASH_NOT_CAPTURED_YET
    assert exc.value.details["missing"] == "build+X=2"

    transfer.capture(keys[1], workspace, ["outputDir/outputFile"], phase="build")
    restored = transfer.restore(tmp_path / "dest", "build")
    assert [e.key for e in restored] == keys
    assert (tmp_path / "dest" / "other.txt").is_file()
    assert (tmp_path / "dest" / "outputDir" / "outputFile").is_file()


def test_archive_later_workspaces_overwrite(tmp_path: Path) -> None:
    first, second = tmp_path / "one", tmp_path / "two"
    for ws, text in ((first, "first"), (second, "second")):
        (ws / "outputDir").mkdir(parents=True)
        (ws / "outputDir" / "outputFile").write_text(text, encoding="utf-8")
    (first / "outputDir" / "only-first").write_text("x", encoding="utf-8")

    transfer = WorkspaceTransfer(tmp_path / "stash")
    dest = tmp_path / "archive"
    archived = transfer.archive(["outputDir/**"], [first, second, tmp_path / "missing"], dest)

    assert archived == ["outputDir/only-first", "outputDir/outputFile"]
    assert (dest / "outputDir" / "outputFile").read_text(encoding="utf-8") == "second"


def test_keys_that_look_alike_get_separate_archives(tmp_path: Path) -> None:
    keys = ["build app", "build_app", "m+X=a/b", "m+X=a_b"]
    transfer = WorkspaceTransfer(tmp_path / "stash")
    for i, key in enumerate(keys):
        ws = tmp_path / "ws" / str(i)
        ws.mkdir(parents=True)
        (ws / "f.txt").write_text(f"from {key!r}", encoding="utf-8")
        transfer.capture(key, ws, ["f.txt"])

    assert len({transfer.artifact_path(k) for k in keys}) == len(keys)
    assert all(transfer.artifact_path(k).parent == transfer.root for k in keys)
    for i, key in enumerate(keys):
        dest = tmp_path / "dest" / str(i)
        transfer.restore(dest, key)
        assert (dest / "f.txt").read_text(encoding="utf-8") == f"from {key!r}"
