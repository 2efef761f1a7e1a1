"""
fetcher.py

Artifact retrieval.

Responsibilities:
- One GET per artifact (no automatic retry)
- Stream the body to a temp file next to its final destination area
- Optional SHA-256 pinning
- HTTP / transport failures -> FetchResult status (never raises for those)

Does NOT:
- Place artifacts at their destination (see stager)
"""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional, Sequence
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from buildmatrix.logger import get_logger, job_context
from buildmatrix.logger.context import current_job
from buildmatrix.pipeline.models import ArtifactSpec, FetchResult, FetchStatus

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 256
DEFAULT_FETCH_TIMEOUT_SEC = 300.0
USER_AGENT = "buildmatrix/0.1"

_NOT_FOUND_CODES = {404, 410}


def _suffix_for(url: str) -> str:
    """Keep the remote extension so installers and archives stay recognizable."""
    name = Path(urlparse(url).path).name
    suffixes = Path(name).suffixes
    if len(suffixes) >= 2 and suffixes[-2] == ".tar":
        return "".join(suffixes[-2:])
    return suffixes[-1] if suffixes else ""


def _discard(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class ArtifactFetcher:
    def __init__(
        self,
        session: Optional[Any] = None,
        *,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SEC,
        max_parallel: int = 4,
    ):
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT

        self.session = session
        self.timeout = timeout
        self.max_parallel = max(1, max_parallel)

    # --------------------------------------------------------
    # Public API
    # --------------------------------------------------------

    def fetch(self, spec: ArtifactSpec, scratch_dir: Path) -> FetchResult:
        scratch_dir.mkdir(parents=True, exist_ok=True)

        fd, raw = tempfile.mkstemp(
            dir=scratch_dir,
            prefix=f"{spec.name}-",
            suffix=_suffix_for(spec.source_url) + ".part",
        )
        os.close(fd)
        tmp = Path(raw)

        logger.debug(f"[{spec.triple}] GET {spec.source_url}")

        try:
            if urlparse(spec.source_url).scheme == "file":
                result = self._fetch_local(spec, tmp)
            else:
                result = self._fetch_http(spec, tmp)
        except BaseException:
            _discard(tmp)
            raise

        if not result.ok:
            _discard(tmp)
            logger.error(f"[{spec.triple}] {spec.name}: {result.status.value} ({result.error})")
            return result

        # Strip the ".part" marker only after the payload is complete.
        final = tmp.with_name(tmp.name[: -len(".part")])
        os.replace(tmp, final)

        logger.info(f"[{spec.triple}] fetched {spec.name} ({result.size} bytes)")
        return FetchResult(spec=spec, status=FetchStatus.OK, path=final, size=result.size)

    def fetch_all(
        self,
        specs: Sequence[ArtifactSpec],
        scratch_dir: Path,
        *,
        parallel: bool = True,
    ) -> list[FetchResult]:
        """Fetch a job's artifacts; results are returned in ``specs`` order."""
        if not parallel or len(specs) <= 1:
            return [self.fetch(s, scratch_dir) for s in specs]

        job = current_job()

        def _one(spec: ArtifactSpec) -> FetchResult:
            with job_context(job):
                return self.fetch(spec, scratch_dir)

        workers = min(self.max_parallel, len(specs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            return list(pool.map(_one, specs))

    # --------------------------------------------------------
    # Transports
    # --------------------------------------------------------

    def _fetch_http(self, spec: ArtifactSpec, tmp: Path) -> FetchResult:
        try:
            with self.session.get(spec.source_url, stream=True, timeout=self.timeout) as resp:
                if resp.status_code in _NOT_FOUND_CODES:
                    return FetchResult(
                        spec=spec,
                        status=FetchStatus.NOT_FOUND,
                        error=f"HTTP {resp.status_code}",
                    )
                if not 200 <= resp.status_code < 300:
                    return FetchResult(
                        spec=spec,
                        status=FetchStatus.TRANSPORT_ERROR,
                        error=f"HTTP {resp.status_code}",
                    )

                digest = hashlib.sha256()
                size = 0
                with tmp.open("wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        digest.update(chunk)
                        size += len(chunk)

        except requests.RequestException as e:
            return FetchResult(spec=spec, status=FetchStatus.TRANSPORT_ERROR, error=str(e))

        return self._verify(spec, size, digest.hexdigest())

    def _fetch_local(self, spec: ArtifactSpec, tmp: Path) -> FetchResult:
        parsed = urlparse(spec.source_url)
        src = Path(url2pathname(parsed.netloc + parsed.path if parsed.netloc else parsed.path))

        if not src.is_file():
            return FetchResult(spec=spec, status=FetchStatus.NOT_FOUND, error=f"no such file: {src}")

        digest = hashlib.sha256()
        size = 0
        try:
            with src.open("rb") as fin, tmp.open("wb") as fout:
                for chunk in iter(lambda: fin.read(CHUNK_SIZE), b""):
                    fout.write(chunk)
                    digest.update(chunk)
                    size += len(chunk)
        except OSError as e:
            return FetchResult(spec=spec, status=FetchStatus.TRANSPORT_ERROR, error=str(e))

        return self._verify(spec, size, digest.hexdigest())

    @staticmethod
    def _verify(spec: ArtifactSpec, size: int, sha256: str) -> FetchResult:
        if size == 0:
            return FetchResult(spec=spec, status=FetchStatus.TRANSPORT_ERROR, error="empty response body")

        if spec.sha256 and sha256 != spec.sha256:
            return FetchResult(
                spec=spec,
                status=FetchStatus.CHECKSUM_MISMATCH,
                size=size,
                error=f"sha256 {sha256} != pinned {spec.sha256}",
            )

        return FetchResult(spec=spec, status=FetchStatus.OK, size=size)


def clear_scratch(scratch_dir: Path) -> None:
    """Remove a job's scratch area once staging is done."""
    shutil.rmtree(scratch_dir, ignore_errors=True)


__all__ = ["ArtifactFetcher", "clear_scratch", "DEFAULT_FETCH_TIMEOUT_SEC"]
