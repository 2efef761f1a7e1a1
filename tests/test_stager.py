import zipfile

import py7zr
import pytest

from buildmatrix.pipeline.errors import InstallError, StageError
from buildmatrix.pipeline.models import (
    ArtifactKind,
    ArtifactSpec,
    FetchResult,
    FetchStatus,
    JobDescriptor,
)
from buildmatrix.pipeline.stager import FilesystemStager

from conftest import INSTALLER_FAIL, INSTALLER_OK, posix_only

JOB = JobDescriptor("x64", "t1")


def _fetched(tmp_path, payload, *, name="libsodium", dest=None, suffix=".a", extract=False, kind=None):
    scratch = tmp_path / "scratch"
    scratch.mkdir(exist_ok=True)
    path = scratch / f"{name}-download{suffix}"
    path.write_bytes(payload)

    spec = ArtifactSpec(
        name=name,
        kind=kind or ArtifactKind.NATIVE_DEPENDENCY,
        source_url=f"https://deps.example.invalid/{name}{suffix}",
        destination=dest or tmp_path / "bin" / "t1" / "libsodium.a",
        triple="t1",
        extract=extract,
    )
    return FetchResult(spec=spec, status=FetchStatus.OK, path=path, size=len(payload))


def test_place_dependency(tmp_path):
    result = _fetched(tmp_path, b"sodium")

    dest = FilesystemStager().place_dependency(result)

    assert dest == tmp_path / "bin" / "t1" / "libsodium.a"
    assert dest.read_bytes() == b"sodium"
    assert not result.path.exists()


def test_restaging_is_idempotent(tmp_path):
    stager = FilesystemStager()

    stager.stage(JOB, [_fetched(tmp_path, b"sodium")], installer_args=[], cwd=tmp_path)
    first = (tmp_path / "bin" / "t1" / "libsodium.a").read_bytes()

    stager.stage(JOB, [_fetched(tmp_path, b"sodium")], installer_args=[], cwd=tmp_path)
    second = (tmp_path / "bin" / "t1" / "libsodium.a").read_bytes()

    assert first == second == b"sodium"
    assert sorted(p.name for p in (tmp_path / "bin" / "t1").iterdir()) == ["libsodium.a"]


def test_stale_copy_is_overwritten(tmp_path):
    dest = tmp_path / "bin" / "t1" / "libsodium.a"
    dest.parent.mkdir(parents=True)
    dest.write_bytes(b"old")

    FilesystemStager().place_dependency(_fetched(tmp_path, b"new"))

    assert dest.read_bytes() == b"new"


def test_failed_fetch_is_refused(tmp_path):
    spec = _fetched(tmp_path, b"x").spec
    failed = FetchResult(spec=spec, status=FetchStatus.NOT_FOUND, error="HTTP 404")

    with pytest.raises(StageError, match="failed fetch"):
        FilesystemStager().stage(JOB, [failed], installer_args=[], cwd=tmp_path)

    assert not spec.destination.exists()


def test_write_failure_is_stage_error(tmp_path):
    # A regular file where the destination directory should be.
    blocker = tmp_path / "bin"
    blocker.write_bytes(b"")

    result = _fetched(tmp_path, b"sodium")
    with pytest.raises(StageError, match="cannot write"):
        FilesystemStager().place_dependency(result)

    assert not result.path.exists()


def test_unpack_archive(tmp_path):
    archive = tmp_path / "src.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("mingw64/bin/gcc", "#!/bin/sh\n")
        zf.writestr("mingw64/README", "mingw")

    dest = tmp_path / "tools" / "t1" / "mingw"
    result = _fetched(tmp_path, archive.read_bytes(), name="mingw", dest=dest, suffix=".zip", extract=True)

    stager = FilesystemStager()
    stager.stage(JOB, [result], installer_args=[], cwd=tmp_path)

    assert (dest / "mingw64" / "bin" / "gcc").is_file()
    assert (dest / "mingw64" / "README").read_text() == "mingw"
    assert not result.path.exists()

    # Re-staging replaces the tree wholesale.
    (dest / "leftover").write_text("stale")
    again = _fetched(tmp_path, archive.read_bytes(), name="mingw", dest=dest, suffix=".zip", extract=True)
    stager.stage(JOB, [again], installer_args=[], cwd=tmp_path)

    assert not (dest / "leftover").exists()
    assert not dest.with_name("mingw.partial").exists()
    assert not dest.with_name("mingw.stale").exists()


def test_corrupt_archive_is_stage_error(tmp_path):
    dest = tmp_path / "tools" / "t1" / "mingw"
    result = _fetched(tmp_path, b"not a zip", name="mingw", dest=dest, suffix=".zip", extract=True)

    with pytest.raises(StageError, match="cannot unpack"):
        FilesystemStager().unpack_dependency(result)

    assert not dest.exists()


def test_unpack_7z_archive(tmp_path):
    tree = tmp_path / "tree" / "mingw64" / "bin"
    tree.mkdir(parents=True)
    (tree / "gcc").write_text("#!/bin/sh\n")

    archive = tmp_path / "mingw.7z"
    with py7zr.SevenZipFile(archive, "w") as zf:
        zf.writeall(tmp_path / "tree" / "mingw64", arcname="mingw64")

    dest = tmp_path / "tools" / "t1" / "mingw"
    result = _fetched(tmp_path, archive.read_bytes(), name="mingw", dest=dest, suffix=".7z", extract=True)

    FilesystemStager().stage(JOB, [result], installer_args=[], cwd=tmp_path)

    assert (dest / "mingw64" / "bin" / "gcc").read_text() == "#!/bin/sh\n"
    assert not result.path.exists()


def test_corrupt_7z_is_stage_error(tmp_path):
    dest = tmp_path / "tools" / "t1" / "mingw"
    result = _fetched(tmp_path, b"not a 7z", name="mingw", dest=dest, suffix=".7z", extract=True)

    with pytest.raises(StageError, match="cannot unpack"):
        FilesystemStager().unpack_dependency(result)

    assert not dest.exists()
    assert not dest.with_name("mingw.partial").exists()


def test_unpack_replaces_a_file_at_destination(tmp_path):
    dest = tmp_path / "tools" / "t1" / "mingw"
    dest.parent.mkdir(parents=True)
    dest.write_text("not a directory")
    # Left behind by an interrupted earlier run.
    dest.with_name("mingw.stale").write_text("old")

    archive = tmp_path / "src.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("mingw64/README", "mingw")

    result = _fetched(tmp_path, archive.read_bytes(), name="mingw", dest=dest, suffix=".zip", extract=True)
    FilesystemStager().unpack_dependency(result)

    assert (dest / "mingw64" / "README").read_text() == "mingw"
    assert not dest.with_name("mingw.stale").exists()
    assert not dest.with_name("mingw.partial").exists()


def test_ok_result_without_file_is_stage_error(tmp_path):
    spec = _fetched(tmp_path, b"x").spec
    empty = FetchResult(spec=spec, status=FetchStatus.OK, path=None)
    stager = FilesystemStager()

    with pytest.raises(StageError, match="carries no file"):
        stager.place_dependency(empty)
    with pytest.raises(StageError, match="carries no archive"):
        stager.unpack_dependency(empty)
    with pytest.raises(StageError, match="carries no installer"):
        stager.install_toolchain(JOB, empty, installer_args=[], cwd=tmp_path)


@posix_only
def test_install_toolchain(tmp_path):
    install_dir = tmp_path / "toolchains" / "t1"
    result = _fetched(
        tmp_path,
        INSTALLER_OK,
        name="toolchain",
        dest=install_dir,
        suffix=".sh",
        kind=ArtifactKind.TOOLCHAIN,
    )

    FilesystemStager().stage(
        JOB, [result], installer_args=[str(install_dir / "bin")], cwd=tmp_path
    )

    assert (install_dir / "bin").is_dir()
    assert not result.path.exists()


@posix_only
def test_installer_failure_is_install_error(tmp_path):
    result = _fetched(
        tmp_path,
        INSTALLER_FAIL,
        name="toolchain",
        dest=tmp_path / "toolchains" / "t1",
        suffix=".sh",
        kind=ArtifactKind.TOOLCHAIN,
    )

    with pytest.raises(InstallError, match="exited with 3"):
        FilesystemStager().install_toolchain(JOB, result, installer_args=[], cwd=tmp_path)
