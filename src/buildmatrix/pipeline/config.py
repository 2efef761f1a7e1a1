"""
config.py

Pipeline file loading and validation.

Responsibilities:
- Parse a YAML or JSON pipeline description
- Validate shape and types up front (ConfigurationError, exit code 2)
- Render path / URL templates for a given job

Does NOT:
- Read process environment variables (see env)
- Touch the network or the filesystem beyond reading the pipeline file
"""

from __future__ import annotations

import json
import shlex
import string
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from buildmatrix.pipeline.errors import ConfigurationError

# Fields a template may reference.
TEMPLATE_FIELDS = frozenset({"triple", "platform", "install_dir", "workspace"})

# install_dir cannot reference itself.
_INSTALL_DIR_FIELDS = TEMPLATE_FIELDS - {"install_dir"}


# ============================================================
# Models
# ============================================================


@dataclass(frozen=True)
class BranchGate:
    only: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.only or self.exclude)


@dataclass(frozen=True)
class ToolchainConfig:
    url: str
    bin_dir: str
    installer_args: tuple[str, ...] = ()
    sha256: Optional[str] = None
    verify: tuple[str, ...] = ()


@dataclass(frozen=True)
class DependencyConfig:
    name: str
    url: str
    dest: str
    sha256: Optional[str] = None
    extract: bool = False
    triples: tuple[str, ...] = ()

    def applies_to(self, triple: str) -> bool:
        return not self.triples or triple in self.triples


@dataclass(frozen=True)
class PipelineConfig:
    name: str
    platforms: tuple[str, ...]
    triples: tuple[str, ...]
    workspace: Path
    install_dir: str
    toolchain: ToolchainConfig
    build: tuple[str, ...]
    test: tuple[str, ...]
    branches: BranchGate = field(default_factory=BranchGate)
    dependencies: tuple[DependencyConfig, ...] = ()
    aux_paths: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    fetch_timeout: Optional[float] = None
    command_timeout: Optional[float] = None
    workers: Optional[int] = None
    source: Optional[Path] = None

    # --------------------------------------------------------
    # Template rendering
    # --------------------------------------------------------

    def template_values(self, platform: str, triple: str) -> dict[str, str]:
        values = {
            "triple": triple,
            "platform": platform,
            "workspace": str(self.workspace),
        }
        values["install_dir"] = str(self.resolve_path(render(self.install_dir, values)))
        return values

    def resolve_path(self, raw: str) -> Path:
        p = Path(raw).expanduser()
        return p if p.is_absolute() else self.workspace / p

    def render_path(self, template: str, platform: str, triple: str) -> Path:
        return self.resolve_path(render(template, self.template_values(platform, triple)))

    def render_text(self, template: str, platform: str, triple: str) -> str:
        return render(template, self.template_values(platform, triple))

    def with_triples(self, selected: list[str]) -> "PipelineConfig":
        """Return a copy restricted to ``selected`` triples (CLI --triple)."""
        unknown = [t for t in selected if t not in self.triples]
        if unknown:
            raise ConfigurationError(
                f"Unknown triple(s) {', '.join(unknown)}; "
                f"matrix declares: {', '.join(self.triples)}"
            )
        kept = tuple(t for t in self.triples if t in selected)
        return replace(self, triples=kept)


# ============================================================
# Templates
# ============================================================

_FORMATTER = string.Formatter()


def template_fields(template: str) -> set[str]:
    try:
        return {name for _, name, _, _ in _FORMATTER.parse(template) if name is not None}
    except ValueError as e:
        raise ConfigurationError(f"Malformed template {template!r}: {e}") from e


def render(template: str, values: Mapping[str, str]) -> str:
    try:
        return template.format_map(values)
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown template field {e} in {template!r}; "
            f"allowed: {', '.join(sorted(TEMPLATE_FIELDS))}"
        ) from e
    except (ValueError, IndexError) as e:
        raise ConfigurationError(f"Malformed template {template!r}: {e}") from e


def _check_template(
    template: str,
    where: str,
    *,
    allowed: frozenset[str] = TEMPLATE_FIELDS,
    require_triple: bool = False,
) -> str:
    names = template_fields(template)

    bad = names - allowed
    if bad:
        raise ConfigurationError(
            f"{where}: unknown template field(s) {sorted(bad)} in {template!r}"
        )

    if require_triple and not names & {"triple", "install_dir"}:
        raise ConfigurationError(
            f"{where}: {template!r} must be keyed by {{triple}} "
            "so concurrent jobs never share a destination"
        )
    return template


# ============================================================
# Field coercion
# ============================================================


def _require(data: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] in (None, ""):
        raise ConfigurationError(f"{where}: missing required key '{key}'")
    return data[key]


def _as_str(v: Any, where: str) -> str:
    if not isinstance(v, (str, int, float)) or isinstance(v, bool):
        raise ConfigurationError(f"{where}: expected a string, got {type(v).__name__}")
    return str(v)


def _as_str_list(v: Any, where: str) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        return (v,)
    if not isinstance(v, list):
        raise ConfigurationError(f"{where}: expected a list of strings")
    return tuple(_as_str(x, where) for x in v)


def _as_command(v: Any, where: str) -> tuple[str, ...]:
    if isinstance(v, str):
        argv = tuple(shlex.split(v))
    else:
        argv = _as_str_list(v, where)
    if not argv:
        raise ConfigurationError(f"{where}: command is empty")
    return argv


def _as_timeout(v: Any, where: str) -> Optional[float]:
    if v is None:
        return None
    try:
        t = float(v)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{where}: expected seconds, got {v!r}") from e
    if t <= 0:
        raise ConfigurationError(f"{where}: timeout must be positive")
    return t


def _as_mapping(v: Any, where: str) -> dict[str, str]:
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ConfigurationError(f"{where}: expected a mapping")
    return {str(k): _as_str(val, f"{where}.{k}") for k, val in v.items()}


def _axis(matrix: Mapping[str, Any], key: str) -> tuple[str, ...]:
    values = _as_str_list(matrix.get(key), f"matrix.{key}")
    values = tuple(v.strip() for v in values)

    if not values or not all(values):
        raise ConfigurationError(f"matrix.{key}: axis must declare at least one value")

    dupes = sorted({v for v in values if values.count(v) > 1})
    if dupes:
        raise ConfigurationError(f"matrix.{key}: duplicate values {dupes}")
    return values


# ============================================================
# Parsing
# ============================================================


def _parse_toolchain(data: Any) -> ToolchainConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("toolchain: expected a mapping")

    where = "toolchain"
    url = _check_template(_as_str(_require(data, "url", where), f"{where}.url"), f"{where}.url")
    bin_dir = _check_template(
        _as_str(_require(data, "bin_dir", where), f"{where}.bin_dir"), f"{where}.bin_dir"
    )
    args = tuple(
        _check_template(a, f"{where}.installer_args")
        for a in _as_str_list(data.get("installer_args"), f"{where}.installer_args")
    )
    verify = _as_command(data["verify"], f"{where}.verify") if data.get("verify") else ()

    return ToolchainConfig(
        url=url,
        bin_dir=bin_dir,
        installer_args=args,
        sha256=_sha256(data.get("sha256"), where),
        verify=verify,
    )


def _parse_dependency(index: int, data: Any) -> DependencyConfig:
    where = f"dependencies[{index}]"
    if not isinstance(data, dict):
        raise ConfigurationError(f"{where}: expected a mapping")

    name = _as_str(_require(data, "name", where), f"{where}.name")
    where = f"dependencies[{name}]"

    return DependencyConfig(
        name=name,
        url=_check_template(_as_str(_require(data, "url", where), f"{where}.url"), f"{where}.url"),
        dest=_check_template(
            _as_str(_require(data, "dest", where), f"{where}.dest"),
            f"{where}.dest",
            require_triple=True,
        ),
        sha256=_sha256(data.get("sha256"), where),
        extract=bool(data.get("extract", False)),
        triples=_as_str_list(data.get("triples"), f"{where}.triples"),
    )


def _sha256(v: Any, where: str) -> Optional[str]:
    if v in (None, ""):
        return None
    digest = _as_str(v, f"{where}.sha256").strip().lower()
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        raise ConfigurationError(f"{where}.sha256: not a hex SHA-256 digest")
    return digest


def _parse_branches(data: Any) -> BranchGate:
    if data is None:
        return BranchGate()
    if isinstance(data, (str, list)):
        return BranchGate(only=_as_str_list(data, "branches"))
    if not isinstance(data, dict):
        raise ConfigurationError("branches: expected a mapping with only/except")
    return BranchGate(
        only=_as_str_list(data.get("only"), "branches.only"),
        exclude=_as_str_list(data.get("except"), "branches.except"),
    )


def parse_pipeline(data: Any, *, base_dir: Path, source: Optional[Path] = None) -> PipelineConfig:
    """Validate a decoded pipeline mapping and build a PipelineConfig."""
    if not isinstance(data, dict):
        raise ConfigurationError("Pipeline file must contain a mapping at top level")

    matrix = data.get("matrix")
    if not isinstance(matrix, dict):
        raise ConfigurationError("matrix: expected a mapping with 'platform' and 'triple' axes")

    unknown_axes = set(matrix) - {"platform", "triple"}
    if unknown_axes:
        raise ConfigurationError(f"matrix: unknown axes {sorted(unknown_axes)}")

    platforms = _axis(matrix, "platform")
    triples = _axis(matrix, "triple")

    workspace_raw = data.get("workspace")
    workspace = Path(_as_str(workspace_raw, "workspace")).expanduser() if workspace_raw else base_dir
    if not workspace.is_absolute():
        workspace = base_dir / workspace

    install_dir = _check_template(
        _as_str(_require(data, "install_dir", "pipeline"), "install_dir"),
        "install_dir",
        allowed=_INSTALL_DIR_FIELDS,
        require_triple=True,
    )

    deps_raw = data.get("dependencies") or []
    if not isinstance(deps_raw, list):
        raise ConfigurationError("dependencies: expected a list")
    dependencies = tuple(_parse_dependency(i, d) for i, d in enumerate(deps_raw))

    names = [d.name for d in dependencies]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError(f"dependencies: duplicate names {dupes}")

    aux_paths = _as_mapping(data.get("aux_paths"), "aux_paths")
    for triple, template in aux_paths.items():
        _check_template(template, f"aux_paths.{triple}")

    env = _as_mapping(data.get("env"), "env")
    for key, template in env.items():
        _check_template(template, f"env.{key}")

    timeouts = data.get("timeouts") or {}
    if not isinstance(timeouts, dict):
        raise ConfigurationError("timeouts: expected a mapping")

    workers = data.get("workers")
    if workers is not None:
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ConfigurationError("workers: expected a positive integer")

    return PipelineConfig(
        name=_as_str(data.get("name") or (source.stem if source else "pipeline"), "name"),
        platforms=platforms,
        triples=triples,
        workspace=workspace.resolve(),
        install_dir=install_dir,
        toolchain=_parse_toolchain(_require(data, "toolchain", "pipeline")),
        build=_as_command(_require(data, "build", "pipeline"), "build"),
        test=_as_command(_require(data, "test", "pipeline"), "test"),
        branches=_parse_branches(data.get("branches")),
        dependencies=dependencies,
        aux_paths=aux_paths,
        env=env,
        fetch_timeout=_as_timeout(timeouts.get("fetch"), "timeouts.fetch"),
        command_timeout=_as_timeout(timeouts.get("command"), "timeouts.command"),
        workers=workers,
        source=source,
    )


def load_pipeline(path: str | Path) -> PipelineConfig:
    """
    Load a pipeline file.

    ``.json`` files go through the json module; anything else is parsed as
    YAML (a superset of JSON).

    Raises:
        ConfigurationError: missing file, parse failure or invalid contents
    """
    p = Path(path).expanduser().resolve()
    if not p.is_file():
        raise ConfigurationError(f"Pipeline file not found: {p}")

    text = p.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not parse {p.name}: {e}") from e

    return parse_pipeline(data, base_dir=p.parent, source=p)


__all__ = [
    "BranchGate",
    "ToolchainConfig",
    "DependencyConfig",
    "PipelineConfig",
    "load_pipeline",
    "parse_pipeline",
    "render",
    "template_fields",
]
