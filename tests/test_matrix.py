import random
import string
from dataclasses import replace

import pytest

from buildmatrix.pipeline.config import BranchGate, parse_pipeline
from buildmatrix.pipeline.errors import ConfigurationError
from buildmatrix.pipeline.matrix import (
    check_disjoint,
    evaluate_branch_gate,
    plan_artifacts,
    resolve_jobs,
)
from buildmatrix.pipeline.models import ArtifactKind, JobDescriptor

from conftest import base_pipeline


@pytest.mark.parametrize(
    "platforms,triples",
    [
        (["x64"], ["t1"]),
        (["x64"], ["t1", "t2"]),
        (["x64", "x86"], ["t1", "t2", "t3"]),
    ],
)
def test_job_count_is_product_of_axes(tmp_path, platforms, triples):
    data = base_pipeline(
        triples=triples,
        install_dir="toolchains/{platform}/{triple}",
    )
    data["matrix"]["platform"] = platforms
    data["dependencies"][0]["dest"] = "bin/{platform}/{triple}/libsodium.a"
    cfg = parse_pipeline(data, base_dir=tmp_path)

    jobs = resolve_jobs(cfg, branch="main")

    assert len(jobs) == len(platforms) * len(triples)
    assert jobs[0] == JobDescriptor(platform=platforms[0], triple=triples[0], branch_gate=True)
    # platform outer, triple inner
    assert [j.triple for j in jobs[: len(triples)]] == triples


def test_empty_axis_never_yields_silent_empty_run(tmp_path):
    cfg = parse_pipeline(base_pipeline(), base_dir=tmp_path)
    emptied = replace(cfg, triples=())

    with pytest.raises(ConfigurationError):
        resolve_jobs(emptied, branch="main")


def test_job_id():
    assert JobDescriptor("x64", "t1").job_id == "x64/t1"


# ------------------------------------------------------------
# Branch gate
# ------------------------------------------------------------


def test_gate_open_when_not_configured():
    assert evaluate_branch_gate(BranchGate(), None) is True
    assert evaluate_branch_gate(BranchGate(), "anything") is True


def test_gate_only():
    gate = BranchGate(only=("bootstrap", "release/*"))
    assert evaluate_branch_gate(gate, "bootstrap")
    assert evaluate_branch_gate(gate, "release/1.0")
    assert not evaluate_branch_gate(gate, "main")


def test_gate_except():
    gate = BranchGate(exclude=("wip-*",))
    assert evaluate_branch_gate(gate, "main")
    assert not evaluate_branch_gate(gate, "wip-parser")


def test_gate_closed_for_unknown_branch():
    assert not evaluate_branch_gate(BranchGate(only=("main",)), None)
    assert not evaluate_branch_gate(BranchGate(only=("main",)), "")


def test_closed_gate_yields_zero_jobs(tmp_path):
    cfg = parse_pipeline(base_pipeline(branches={"only": ["bootstrap"]}), base_dir=tmp_path)
    assert resolve_jobs(cfg, branch="main") == []
    assert len(resolve_jobs(cfg, branch="bootstrap")) == 2


# ------------------------------------------------------------
# Artifact plan
# ------------------------------------------------------------


def test_plan_toolchain_first_then_applicable_dependencies(tmp_path):
    data = base_pipeline()
    data["dependencies"].append(
        {
            "name": "mingw",
            "url": "https://example.invalid/mingw.zip",
            "dest": "tools/{triple}/mingw",
            "extract": True,
            "triples": ["t1"],
        }
    )
    cfg = parse_pipeline(data, base_dir=tmp_path)

    t1 = plan_artifacts(cfg, JobDescriptor("x64", "t1"))
    t2 = plan_artifacts(cfg, JobDescriptor("x64", "t2"))

    assert [s.name for s in t1] == ["toolchain", "libsodium", "mingw"]
    assert [s.name for s in t2] == ["toolchain", "libsodium"]

    assert t1[0].kind == ArtifactKind.TOOLCHAIN
    assert t1[0].source_url == "https://dist.example.invalid/toolchain-t1.sh"
    assert t1[0].destination == tmp_path.resolve() / "toolchains" / "t1"
    assert t1[1].destination == tmp_path.resolve() / "bin" / "t1" / "libsodium.a"
    assert t1[2].extract is True
    assert all(s.triple == "t1" for s in t1)


def test_destinations_disjoint_for_random_triples(tmp_path):
    rng = random.Random(1234)
    alphabet = string.ascii_lowercase + string.digits + "_-"

    for _ in range(50):
        count = rng.randint(2, 6)
        triples = set()
        while len(triples) < count:
            triples.add("".join(rng.choice(alphabet) for _ in range(rng.randint(1, 12))))

        cfg = parse_pipeline(base_pipeline(triples=sorted(triples)), base_dir=tmp_path)
        jobs = resolve_jobs(cfg)

        dests = {}
        for job in jobs:
            dests[job.triple] = {s.destination for s in plan_artifacts(cfg, job)}

        seen = set()
        for paths in dests.values():
            assert not (paths & seen)
            seen |= paths

        check_disjoint(cfg, jobs)


def test_check_disjoint_flags_platform_collisions(tmp_path):
    data = base_pipeline(triples=["t1"])
    data["matrix"]["platform"] = ["x64", "x86"]
    cfg = parse_pipeline(data, base_dir=tmp_path)

    with pytest.raises(ConfigurationError, match="overlapping"):
        check_disjoint(cfg, resolve_jobs(cfg))


@pytest.mark.parametrize(
    "aux_paths",
    [
        {"t1": "aux/bin", "t2": "aux/bin"},
        {"t1": "aux/{triple}/bin", "t2": "toolchains/t1/bin"},
    ],
)
def test_check_disjoint_covers_aux_paths(tmp_path, aux_paths):
    cfg = parse_pipeline(base_pipeline(aux_paths=aux_paths), base_dir=tmp_path)

    with pytest.raises(ConfigurationError, match="aux path"):
        check_disjoint(cfg, resolve_jobs(cfg))


def test_check_disjoint_allows_aux_inside_own_install_dir(tmp_path):
    data = base_pipeline(aux_paths={"t1": "toolchains/t1/mingw/bin", "t2": "toolchains/t2/mingw/bin"})
    cfg = parse_pipeline(data, base_dir=tmp_path)

    check_disjoint(cfg, resolve_jobs(cfg))
