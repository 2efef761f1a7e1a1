import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

import buildmatrix.bootstrap as bootstrap
from buildmatrix.cli.cli_logs import job_lines
from buildmatrix.cli.common import infer_run_status, resolve_log_dir, summarize_run
from buildmatrix.main import main

from conftest import base_pipeline

SRC = Path(__file__).resolve().parents[1] / "src"


@pytest.fixture(autouse=True)
def fresh_bootstrap(monkeypatch, tmp_path):
    monkeypatch.setattr(bootstrap, "_BOOTSTRAPPED", False)
    monkeypatch.chdir(tmp_path)


def _run_logs():
    log_dir = resolve_log_dir(pipeline="pipeline", explicit=None, command="run")
    return sorted(log_dir.glob("*.log"))


def test_module_entrypoint_help():
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC), env.get("PYTHONPATH")]))

    proc = subprocess.run(
        [sys.executable, "-m", "buildmatrix", "run", "--help"],
        capture_output=True,
        text=True,
        env=env,
        timeout=60,
    )

    assert proc.returncode == 0
    assert "--ignore-branch-gate" in proc.stdout


def test_help_routes(capsys):
    assert main(["help"]) == 0
    assert "matrix" in capsys.readouterr().out


def test_missing_pipeline_exits_2(tmp_path):
    assert main(["run", str(tmp_path / "pipeline.yml")]) == 2

    (log,) = _run_logs()
    assert infer_run_status(log) == "config_error"


def test_unknown_triple_exits_2(write_pipeline):
    path = write_pipeline(base_pipeline())
    assert main(["run", str(path), "--triple", "t9"]) == 2


def test_bad_timeout_env_exits_2(write_pipeline, monkeypatch):
    monkeypatch.setenv("BUILDMATRIX_FETCH_TIMEOUT", "soon")
    path = write_pipeline(base_pipeline())

    assert main(["run", str(path), "--branch", "main"]) == 2
    assert main(["matrix", str(path)]) == 2

    (log,) = _run_logs()
    assert infer_run_status(log) == "config_error"


def test_bad_timeout_env_exits_2_for_env_commands(monkeypatch):
    monkeypatch.setenv("BUILDMATRIX_COMMAND_TIMEOUT", "-5")

    assert main(["env", "dump"]) == 2
    assert main(["env", "branch"]) == 2


def test_skipped_run_exits_0_and_is_listed(write_pipeline, tmp_path, capsys):
    path = write_pipeline(base_pipeline(branches=["bootstrap"]))
    report = tmp_path / "out" / "report.json"

    assert main(["run", str(path), "--branch", "main", "--report", str(report)]) == 0

    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["overall"] == "skipped"

    (log,) = _run_logs()
    assert infer_run_status(log) == "skipped"

    capsys.readouterr()
    assert main(["runs", "list", "--pipeline", "pipeline"]) == 0
    out = capsys.readouterr().out
    assert log.stem in out
    assert "skipped" in out


def test_matrix_shows_plan(write_pipeline, capsys):
    path = write_pipeline(base_pipeline())

    assert main(["matrix", str(path)]) == 0

    out = capsys.readouterr().out
    assert "x64/t1" in out
    assert "x64/t2" in out
    assert "PATH additions" in out


def test_env_dump(capsys):
    assert main(["env", "dump"]) == 0
    assert "fetch_timeout" in capsys.readouterr().out


def test_env_dump_json(capsys, monkeypatch):
    monkeypatch.setenv("APPVEYOR_REPO_BRANCH", "bootstrap")

    assert main(["env", "dump", "--json"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["Run"]["branch"] == "bootstrap"
    assert data["Run"]["branch_source"] == "APPVEYOR_REPO_BRANCH"


def test_env_branch(capsys, monkeypatch):
    monkeypatch.setenv("GITHUB_REF_NAME", "main")

    assert main(["env", "branch"]) == 0

    out = capsys.readouterr().out
    assert "→ GITHUB_REF_NAME" in out
    assert "Branch: main" in out


def test_infer_run_status(tmp_path):
    log = tmp_path / "run-1.log"

    log.write_text("starting\n", encoding="utf-8")
    assert infer_run_status(log) == "incomplete"

    log.write_text("x | RUN_STATUS=failed\n", encoding="utf-8")
    assert infer_run_status(log) == "failed"

    log.write_text("x | RUN_STATUS=ok\nlater | RUN_STATUS=cancelled\n", encoding="utf-8")
    assert infer_run_status(log) == "cancelled"

    assert infer_run_status(tmp_path / "missing.log") == "unknown"


RUN_LOG = """\
2026-01-01 10:00:00 | [INFO] | r1 | - | buildmatrix.driver | ══ Pipeline: route ══════
2026-01-01 10:00:01 | [INFO] | r1 | x64/t1 | buildmatrix.fetcher | [t1] fetched toolchain (10 bytes)
2026-01-01 10:00:01 | [ERROR] | r1 | x64/t2 | buildmatrix.fetcher | [t2] libsodium: not_found (HTTP 404)
2026-01-01 10:00:09 | [INFO] | r1 | - | buildmatrix.driver | Run summary:
2026-01-01 10:00:09 | [INFO] | r1 | - | buildmatrix.driver |   ✔ x64/t1: succeeded
2026-01-01 10:00:09 | [INFO] | r1 | - | buildmatrix.driver |   ✖ x64/t2: failed in fetch (libsodium: not_found)
2026-01-01 10:00:09 | [INFO] | r1 | - | buildmatrix.driver | RUN_STATUS=failed
"""


def test_summarize_run(tmp_path):
    log = tmp_path / "run-r1.log"
    log.write_text(RUN_LOG, encoding="utf-8")

    summary = summarize_run(log)

    assert summary.status == "failed"
    assert summary.jobs == {"x64/t1": "succeeded", "x64/t2": "failed"}
    assert summary.jobs_label == "1 ok, 1 failed"


def test_job_lines():
    lines = job_lines(RUN_LOG.splitlines(), "x64/t2")
    assert len(lines) == 1
    assert "HTTP 404" in lines[0]


def test_runs_show_and_logs_show(tmp_path, capsys):
    log_dir = tmp_path / "history"
    log_dir.mkdir()
    (log_dir / "run-r1.log").write_text(RUN_LOG, encoding="utf-8")

    assert main(["runs", "show", "run-r1", "--dir", str(log_dir), "--tail", "0"]) == 0
    out = capsys.readouterr().out
    assert "Status: failed" in out
    assert "x64/t2" in out

    assert main(["logs", "show", "run-r1", "--dir", str(log_dir), "--job", "x64/t1"]) == 0
    out = capsys.readouterr().out
    assert "fetched toolchain" in out
    assert "HTTP 404" not in out
