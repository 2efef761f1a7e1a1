"""
stager.py

Places fetched artifacts where the build expects them.

- Toolchain: run the self-installing executable with the configured flags.
- Native dependencies: triple-keyed destination, promote with os.replace
  (overwrites stale copies; re-running is a no-op in effect).
- Archives (zip, tar, 7z): unpack next to the destination, then swap in.

No rollback: a failed job simply does not reach the environment step.
"""

from __future__ import annotations

import errno
import os
import shutil
import stat
from pathlib import Path
from typing import Mapping, Optional, Sequence

import py7zr
from py7zr.exceptions import Bad7zFile

from buildmatrix.logger import get_logger
from buildmatrix.pipeline.errors import InstallError, StageError
from buildmatrix.pipeline.models import ArtifactKind, FetchResult, JobDescriptor
from buildmatrix.pipeline.runner import run_command

logger = get_logger(__name__)


def _unpack_7z(filename: str, extract_dir: str) -> None:
    try:
        with py7zr.SevenZipFile(filename, mode="r") as archive:
            archive.extractall(path=extract_dir)
    except Bad7zFile as e:
        raise shutil.ReadError(f"{filename} is not a 7z archive") from e


if "7zip" not in {name for name, *_ in shutil.get_unpack_formats()}:
    shutil.register_unpack_format("7zip", [".7z"], _unpack_7z, description="7-Zip archive")


def _remove(path: Path) -> None:
    """Remove a file, symlink or directory tree; missing is fine."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


def _promote(src: Path, dest: Path) -> None:
    """Atomically move `src` over `dest`, copying first when they sit on different devices."""
    try:
        os.replace(src, dest)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    staging = dest.with_name(dest.name + ".partial")
    shutil.copyfile(src, staging)
    os.replace(staging, dest)
    src.unlink(missing_ok=True)


class FilesystemStager:
    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.timeout = timeout
        self.base_env = base_env

    # --------------------------------------------------------
    # Public API
    # --------------------------------------------------------

    def stage(
        self,
        job: JobDescriptor,
        results: Sequence[FetchResult],
        *,
        installer_args: Sequence[str],
        cwd: Path,
    ) -> None:
        """
        Stage every fetched artifact for ``job``.

        Raises:
            InstallError: installer exits non-zero, times out or cannot launch
            StageError: any filesystem failure, or a non-ok FetchResult
        """
        for result in results:
            if not result.ok or result.path is None:
                raise StageError(
                    f"{result.spec.name}: refusing to stage a failed fetch ({result.status.value})"
                )

            if result.spec.kind == ArtifactKind.TOOLCHAIN:
                self.install_toolchain(job, result, installer_args=installer_args, cwd=cwd)
            elif result.spec.extract:
                self.unpack_dependency(result)
            else:
                self.place_dependency(result)

    def install_toolchain(
        self,
        job: JobDescriptor,
        result: FetchResult,
        *,
        installer_args: Sequence[str],
        cwd: Path,
    ) -> None:
        installer = result.path
        if installer is None:
            raise StageError("toolchain: fetch result carries no installer file")

        try:
            result.spec.destination.mkdir(parents=True, exist_ok=True)
            mode = installer.stat().st_mode
            installer.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            raise StageError(f"toolchain: cannot prepare installer: {e}") from e

        env = dict(os.environ if self.base_env is None else self.base_env)

        try:
            outcome = run_command(
                [str(installer), *installer_args],
                env=env,
                cwd=cwd,
                timeout=self.timeout,
                prefix=f"[{job.triple}] ",
                logger=logger,
            )
        finally:
            installer.unlink(missing_ok=True)

        if outcome.timed_out:
            raise InstallError(f"toolchain installer timed out after {self.timeout}s")
        if outcome.launch_error:
            raise InstallError(f"toolchain installer could not launch: {outcome.launch_error}")
        if not outcome.ok:
            raise InstallError(f"toolchain installer exited with {outcome.exit_code}")

        logger.info(f"[{job.triple}] toolchain installed into {result.spec.destination}")

    def place_dependency(self, result: FetchResult) -> Path:
        spec = result.spec
        if result.path is None:
            raise StageError(f"{spec.name}: fetch result carries no file")

        try:
            spec.destination.parent.mkdir(parents=True, exist_ok=True)
            _promote(result.path, spec.destination)
        except OSError as e:
            result.path.unlink(missing_ok=True)
            raise StageError(f"{spec.name}: cannot write {spec.destination}: {e}") from e

        logger.info(f"[{spec.triple}] staged {spec.name} -> {spec.destination}")
        return spec.destination

    def unpack_dependency(self, result: FetchResult) -> Path:
        spec = result.spec
        archive = result.path
        if archive is None:
            raise StageError(f"{spec.name}: fetch result carries no archive")

        dest = spec.destination
        partial = dest.with_name(dest.name + ".partial")
        stale = dest.with_name(dest.name + ".stale")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            _remove(partial)
            shutil.unpack_archive(str(archive), str(partial))

            if dest.exists() or dest.is_symlink():
                _remove(stale)
                os.replace(dest, stale)
                os.replace(partial, dest)
                _remove(stale)
            else:
                os.replace(partial, dest)
        except (OSError, shutil.ReadError, ValueError) as e:
            shutil.rmtree(partial, ignore_errors=True)
            raise StageError(f"{spec.name}: cannot unpack into {dest}: {e}") from e
        finally:
            archive.unlink(missing_ok=True)

        logger.info(f"[{spec.triple}] unpacked {spec.name} -> {dest}")
        return dest


__all__ = ["FilesystemStager"]
