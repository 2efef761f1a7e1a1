"""
driver.py

Pipeline orchestration.

matrix -> (per job, in parallel) fetch -> stage -> compose -> build/test

Rules:
- Pre-flight ConfigurationError propagates (exit code 2); no job runs.
- Per-job errors are caught once, here, and become a RunOutcome.
- A failing job never aborts its siblings.
- Cancellation stops dispatch immediately; in-flight jobs finish their
  current step and then stop.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from buildmatrix.branding import BUILDMATRIX_HEADER, SYMBOLS
from buildmatrix.logger import get_logger, job_context
from buildmatrix.pipeline.composer import compose_environment
from buildmatrix.pipeline.config import BranchGate, PipelineConfig, render
from buildmatrix.pipeline.errors import InstallError, StageError, TransportError
from buildmatrix.pipeline.fetcher import ArtifactFetcher, clear_scratch
from buildmatrix.pipeline.matrix import check_disjoint, plan_artifacts, resolve_jobs
from buildmatrix.pipeline.models import (
    FetchResult,
    JobDescriptor,
    JobStatus,
    Phase,
    PipelineReport,
    PipelineResult,
    RunOutcome,
    StagedEnvironment,
)
from buildmatrix.pipeline.runner import BuildTestRunner, run_command
from buildmatrix.pipeline.stager import FilesystemStager

log = get_logger("buildmatrix.driver")

_POLL_SEC = 0.2


@dataclass
class JobContext:
    config: PipelineConfig
    fetcher: ArtifactFetcher
    stager: FilesystemStager
    cancel: threading.Event = field(default_factory=threading.Event)
    command_timeout: Optional[float] = None
    base_env: Optional[Mapping[str, str]] = None
    parallel_fetch: bool = True


def scratch_dir_for(config: PipelineConfig, job: JobDescriptor) -> Path:
    return config.workspace / ".buildmatrix" / "scratch" / f"{job.platform}-{job.triple}"


def _cancelled(job: JobDescriptor, phase: Phase) -> RunOutcome:
    log.warning(f"[{job.triple}] {SYMBOLS.SKIPPED} cancelled before {phase.value}")
    return RunOutcome(job=job, status=JobStatus.CANCELLED, phase=phase, error="cancelled")


def _discard_fetched(results: list[FetchResult]) -> None:
    for r in results:
        if r.path is not None:
            r.path.unlink(missing_ok=True)


# ------------------------------------------------------------
# Single job
# ------------------------------------------------------------


def _fetch(job: JobDescriptor, ctx: JobContext, scratch: Path) -> list[FetchResult]:
    specs = plan_artifacts(ctx.config, job)
    try:
        results = ctx.fetcher.fetch_all(specs, scratch, parallel=ctx.parallel_fetch)
    except OSError as e:
        raise TransportError(f"cannot prepare download area {scratch}: {e}") from e

    failed = [r for r in results if not r.ok]
    if failed:
        _discard_fetched(results)
        detail = "; ".join(f"{r.spec.name}: {r.status.value} ({r.error})" for r in failed)
        raise TransportError(detail)
    return results


def _verify_toolchain(job: JobDescriptor, ctx: JobContext, staged: StagedEnvironment) -> None:
    verify = ctx.config.toolchain.verify
    if not verify:
        return

    result = run_command(
        verify,
        env=staged.to_process_env(ctx.base_env),
        cwd=ctx.config.workspace,
        timeout=ctx.command_timeout,
        prefix=f"[{job.triple}] ",
    )
    if not result.ok:
        raise InstallError(f"toolchain check {' '.join(verify)} exited with {result.exit_code}")


def execute_job(job: JobDescriptor, ctx: JobContext) -> RunOutcome:
    """Run one job's strictly sequential steps and return its terminal record."""
    with job_context(job.job_id):
        return _execute(job, ctx)


def _execute(job: JobDescriptor, ctx: JobContext) -> RunOutcome:
    cfg = ctx.config
    scratch = scratch_dir_for(cfg, job)

    log.info(BUILDMATRIX_HEADER(f"Job {job.job_id}"))

    if ctx.cancel.is_set():
        return _cancelled(job, Phase.FETCH)

    try:
        try:
            results = _fetch(job, ctx, scratch)
        except TransportError as e:
            log.error(f"[{job.triple}] {SYMBOLS.FAIL} fetch failed: {e}")
            return RunOutcome.failed(job, Phase.FETCH, str(e))

        if ctx.cancel.is_set():
            _discard_fetched(results)
            return _cancelled(job, Phase.STAGE)

        values = cfg.template_values(job.platform, job.triple)
        installer_args = [render(a, values) for a in cfg.toolchain.installer_args]

        try:
            ctx.stager.stage(job, results, installer_args=installer_args, cwd=cfg.workspace)
            staged = compose_environment(cfg, job)
            _verify_toolchain(job, ctx, staged)
        except (InstallError, StageError) as e:
            log.error(f"[{job.triple}] {SYMBOLS.FAIL} staging failed: {e}")
            _discard_fetched(results)
            return RunOutcome.failed(job, Phase.STAGE, str(e))
    finally:
        clear_scratch(scratch)

    if ctx.cancel.is_set():
        return _cancelled(job, Phase.BUILD)

    runner = BuildTestRunner(
        job,
        staged,
        build=cfg.build,
        test=cfg.test,
        cwd=cfg.workspace,
        timeout=ctx.command_timeout,
        base_env=ctx.base_env,
    )
    return runner.run()


# ------------------------------------------------------------
# Whole pipeline
# ------------------------------------------------------------


def _overall(outcomes: list[RunOutcome], cancelled: bool) -> PipelineResult:
    if cancelled or any(o.status == JobStatus.CANCELLED for o in outcomes):
        return PipelineResult.CANCELLED
    if any(o.status == JobStatus.FAILED for o in outcomes):
        return PipelineResult.FAILED
    return PipelineResult.OK


def _log_summary(report: PipelineReport) -> None:
    log.info("")
    log.info("Run summary:")
    for o in report.outcomes:
        if o.status == JobStatus.SUCCEEDED:
            log.info(f"  {SYMBOLS.OK} {o.job.job_id}: succeeded")
        elif o.status == JobStatus.CANCELLED:
            log.info(f"  {SYMBOLS.SKIPPED} {o.job.job_id}: cancelled before {o.phase.value}")
        else:
            log.info(f"  {SYMBOLS.FAIL} {o.job.job_id}: failed in {o.phase.value} ({o.error})")
    for job in report.cancelled_jobs:
        log.info(f"  {SYMBOLS.SKIPPED} {job.job_id}: not dispatched")
    log.info("")
    log.info(f"RUN_STATUS={report.overall.value}")


def run_pipeline(
    config: PipelineConfig,
    *,
    branch: Optional[str] = None,
    ignore_branch_gate: bool = False,
    workers: Optional[int] = None,
    fetcher: Optional[ArtifactFetcher] = None,
    stager: Optional[FilesystemStager] = None,
    cancel: Optional[threading.Event] = None,
    fetch_timeout: Optional[float] = None,
    command_timeout: Optional[float] = None,
    base_env: Optional[Mapping[str, str]] = None,
) -> PipelineReport:
    """
    Run every job of the matrix and aggregate their outcomes.

    Raises:
        ConfigurationError: malformed matrix or overlapping destinations
    """
    if ignore_branch_gate:
        config = replace(config, branches=BranchGate())

    log.info(BUILDMATRIX_HEADER(f"Pipeline: {config.name}"))

    jobs = resolve_jobs(config, branch)
    if not jobs:
        reason = f"branch {branch!r} is not enabled" if branch else "branch unknown"
        log.info(f"{SYMBOLS.SKIPPED} Skipped by branch gate: {reason}")
        report = PipelineReport(overall=PipelineResult.SKIPPED, skipped_reason=reason)
        log.info(f"RUN_STATUS={report.overall.value}")
        return report

    check_disjoint(config, jobs)

    cancel = cancel or threading.Event()
    fetch_timeout = config.fetch_timeout or fetch_timeout
    command_timeout = config.command_timeout or command_timeout

    if fetcher is None:
        fetcher = ArtifactFetcher(**({"timeout": fetch_timeout} if fetch_timeout else {}))
    if stager is None:
        stager = FilesystemStager(timeout=command_timeout, base_env=base_env)

    ctx = JobContext(
        config=config,
        fetcher=fetcher,
        stager=stager,
        cancel=cancel,
        command_timeout=command_timeout,
        base_env=base_env,
    )

    max_workers = workers or config.workers or min(len(jobs), (os.cpu_count() or 1) + 4)
    log.info(f"Jobs: {len(jobs)} (workers={max_workers})")
    for job in jobs:
        log.info(f"  {SYMBOLS.RUNNING} {job.job_id}")

    futures: dict[JobDescriptor, Future] = {}
    queue = iter(jobs)
    pending: set[Future] = set()
    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job")
    try:
        while True:
            # Only hand a job to the pool when a worker is free, so a cancel
            # stops dispatch instead of racing queued futures.
            while not cancel.is_set() and len(pending) < max_workers:
                job = next(queue, None)
                if job is None:
                    break
                futures[job] = executor.submit(execute_job, job, ctx)
                pending.add(futures[job])

            if not pending:
                break
            _, pending = wait(pending, timeout=_POLL_SEC, return_when=FIRST_COMPLETED)
    except KeyboardInterrupt:
        log.warning("Interrupted: cancelling pending jobs")
        cancel.set()
        for fut in futures.values():
            fut.cancel()
    finally:
        executor.shutdown(wait=True)

    outcomes: list[RunOutcome] = []
    not_dispatched: list[JobDescriptor] = []
    for job in jobs:
        fut = futures.get(job)
        if fut is None or fut.cancelled():
            not_dispatched.append(job)
            continue
        outcomes.append(fut.result())

    report = PipelineReport(
        overall=_overall(outcomes, bool(not_dispatched)),
        outcomes=tuple(outcomes),
        cancelled_jobs=tuple(not_dispatched),
    )
    _log_summary(report)
    return report


__all__ = ["JobContext", "execute_job", "run_pipeline", "scratch_dir_for"]
