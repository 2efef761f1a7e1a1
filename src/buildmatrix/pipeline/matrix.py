from __future__ import annotations

import fnmatch
import itertools
from pathlib import Path
from typing import Iterable, Optional

from buildmatrix.pipeline.config import BranchGate, PipelineConfig
from buildmatrix.pipeline.errors import ConfigurationError
from buildmatrix.pipeline.models import ArtifactKind, ArtifactSpec, JobDescriptor


# ------------------------------------------------------------
# Branch gate
# ------------------------------------------------------------


def evaluate_branch_gate(gate: BranchGate, branch: Optional[str]) -> bool:
    """
    Decide whether this invocation may run at all.

    No gate configured: always open. A configured gate with an unknown
    branch is closed.
    """
    if not gate.configured:
        return True

    if not branch:
        return False

    if gate.only and not any(fnmatch.fnmatchcase(branch, pat) for pat in gate.only):
        return False

    if any(fnmatch.fnmatchcase(branch, pat) for pat in gate.exclude):
        return False

    return True


# ------------------------------------------------------------
# Jobs
# ------------------------------------------------------------


def resolve_jobs(config: PipelineConfig, branch: Optional[str] = None) -> list[JobDescriptor]:
    """
    Expand the matrix into job descriptors (platform outer, triple inner).

    Returns an empty list when the branch gate is closed. An empty axis is a
    ConfigurationError, never a silent empty run.
    """
    if not config.platforms or not config.triples:
        raise ConfigurationError("Matrix must declare at least one platform and one triple")

    gate = evaluate_branch_gate(config.branches, branch)
    if not gate:
        return []

    return [
        JobDescriptor(platform=platform, triple=triple, branch_gate=gate)
        for platform, triple in itertools.product(config.platforms, config.triples)
    ]


# ------------------------------------------------------------
# Artifact plan
# ------------------------------------------------------------


def plan_artifacts(config: PipelineConfig, job: JobDescriptor) -> list[ArtifactSpec]:
    """Toolchain first, then the dependencies that apply to this triple."""
    tc = config.toolchain
    url = config.render_text(tc.url, job.platform, job.triple)

    specs = [
        ArtifactSpec(
            name="toolchain",
            kind=ArtifactKind.TOOLCHAIN,
            source_url=url,
            destination=install_dir_for(config, job),
            triple=job.triple,
            sha256=tc.sha256,
        )
    ]

    for dep in config.dependencies:
        if not dep.applies_to(job.triple):
            continue
        specs.append(
            ArtifactSpec(
                name=dep.name,
                kind=ArtifactKind.NATIVE_DEPENDENCY,
                source_url=config.render_text(dep.url, job.platform, job.triple),
                destination=config.render_path(dep.dest, job.platform, job.triple),
                triple=job.triple,
                sha256=dep.sha256,
                extract=dep.extract,
            )
        )

    return specs


def install_dir_for(config: PipelineConfig, job: JobDescriptor) -> Path:
    return Path(config.template_values(job.platform, job.triple)["install_dir"])


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


def check_disjoint(config: PipelineConfig, jobs: Iterable[JobDescriptor]) -> None:
    """
    Raise ConfigurationError if two jobs would write to, or run from,
    overlapping paths.

    Jobs run on a shared filesystem without locking; disjoint destinations
    are what makes that safe.
    """
    owned: list[tuple[Path, JobDescriptor, str]] = []

    for job in jobs:
        for spec in plan_artifacts(config, job):
            owned.append((spec.destination, job, spec.name))

        aux = config.aux_paths.get(job.triple)
        if aux:
            owned.append((config.render_path(aux, job.platform, job.triple), job, "aux path"))

    for (pa, ja, na), (pb, jb, nb) in itertools.combinations(owned, 2):
        if ja == jb:
            continue
        if _overlaps(pa, pb):
            raise ConfigurationError(
                f"Jobs {ja.job_id} ({na}) and {jb.job_id} ({nb}) "
                f"resolve to overlapping paths: {pa} / {pb}"
            )
