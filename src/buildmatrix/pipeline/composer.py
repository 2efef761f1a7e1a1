from __future__ import annotations

from pathlib import Path

from buildmatrix.pipeline.config import PipelineConfig
from buildmatrix.pipeline.matrix import install_dir_for
from buildmatrix.pipeline.models import JobDescriptor, StagedEnvironment


def aux_path_for(config: PipelineConfig, job: JobDescriptor) -> Path | None:
    """Lookup-table entry for this triple; unknown triples get nothing."""
    template = config.aux_paths.get(job.triple)
    if not template:
        return None
    return config.render_path(template, job.platform, job.triple)


def compose_environment(config: PipelineConfig, job: JobDescriptor) -> StagedEnvironment:
    """
    Build the per-job environment value.

    Search-path additions are recorded in application order: the toolchain
    bin directory first, then the triple's auxiliary directory. Each is
    prepended in turn, so the auxiliary directory wins command resolution.
    The process-wide environment is left untouched.
    """
    install_dir = install_dir_for(config, job)

    additions: list[Path] = [config.render_path(config.toolchain.bin_dir, job.platform, job.triple)]

    aux = aux_path_for(config, job)
    if aux is not None:
        additions.append(aux)

    extra = {
        "BUILDMATRIX_TRIPLE": job.triple,
        "BUILDMATRIX_PLATFORM": job.platform,
        "BUILDMATRIX_INSTALL_DIR": str(install_dir),
    }
    for key, template in config.env.items():
        extra[key] = config.render_text(template, job.platform, job.triple)

    return StagedEnvironment(
        install_dir=install_dir,
        path_prefix_additions=tuple(additions),
        extra_vars=extra,
    )
