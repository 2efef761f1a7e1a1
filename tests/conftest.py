import json
import logging
import os
import sys
import threading

import pytest


@pytest.fixture(autouse=True)
def clean_env_and_modules(monkeypatch, tmp_path):
    """
    Ensure tests don't leak env, logger state, or cached environment views.
    """
    from buildmatrix.env import BRANCH_VARIABLES

    keys = [
        "BUILDMATRIX_HOME",
        "BUILDMATRIX_LOGS_DIR",
        "BUILDMATRIX_COMMAND",
        "BUILDMATRIX_PIPELINE",
        "BUILDMATRIX_RUN_ID",
        "BUILDMATRIX_VERBOSE",
        "BUILDMATRIX_QUIET",
        "BUILDMATRIX_WORKERS",
        "BUILDMATRIX_FETCH_TIMEOUT",
        "BUILDMATRIX_COMMAND_TIMEOUT",
        "BUILDMATRIX_ENV_FILE",
        "LOG_LEVEL",
        "LOG_RETENTION",
        *BRANCH_VARIABLES,
    ]
    for k in keys:
        monkeypatch.delenv(k, raising=False)

    # Keep state out of the repo checkout.
    monkeypatch.setenv("BUILDMATRIX_HOME", str(tmp_path / ".buildmatrix-home"))

    from buildmatrix.env import reset_env_caches
    from buildmatrix.logger.state import STATE

    reset_env_caches()
    STATE.reset()

    root = logging.getLogger()
    saved = list(root.handlers)
    for h in saved:
        root.removeHandler(h)

    yield

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in saved:
        root.addHandler(h)
    reset_env_caches()


# ------------------------------------------------------------
# Fake HTTP
# ------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code=200, body=b""):
        self.status_code = status_code
        self._body = body

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i : i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """
    Stands in for requests.Session.

    ``routes`` maps URL -> bytes | (status, bytes) | Exception.
    Unknown URLs answer 404. Every call is recorded.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, stream=False, timeout=None):
        with self._lock:
            self.calls.append(url)

        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, b"")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, tuple):
            return FakeResponse(*route)
        return FakeResponse(200, route)


@pytest.fixture
def fake_session():
    return FakeSession()


# ------------------------------------------------------------
# Pipelines
# ------------------------------------------------------------

posix_only = pytest.mark.skipif(os.name == "nt", reason="installer stubs are /bin/sh scripts")

INSTALLER_OK = b'#!/bin/sh\nmkdir -p "$1"\nexit 0\n'
INSTALLER_FAIL = b"#!/bin/sh\nexit 3\n"

TOOLCHAIN_URL = "https://dist.example.invalid/toolchain-{triple}.sh"
DEP_URL = "https://deps.example.invalid/bin/{triple}/libsodium.a"


def py_cmd(code):
    """Portable external command: run a Python snippet."""
    return [sys.executable, "-c", code]


def base_pipeline(triples=("t1", "t2"), **overrides):
    data = {
        "name": "demo",
        "matrix": {"platform": ["x64"], "triple": list(triples)},
        "install_dir": "toolchains/{triple}",
        "toolchain": {
            "url": TOOLCHAIN_URL,
            "installer_args": ["{install_dir}/bin"],
            "bin_dir": "{install_dir}/bin",
        },
        "dependencies": [
            {
                "name": "libsodium",
                "url": DEP_URL,
                "dest": "bin/{triple}/libsodium.a",
            }
        ],
        "aux_paths": {"t1": "aux/{triple}/bin"},
        "build": py_cmd("print('building')"),
        "test": py_cmd("print('testing')"),
    }
    data.update(overrides)
    return data


@pytest.fixture
def write_pipeline(tmp_path):
    def _write(data, name="pipeline.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


def routes_for(triples, dep_body=b"sodium"):
    routes = {}
    for t in triples:
        routes[TOOLCHAIN_URL.format(triple=t)] = INSTALLER_OK
        routes[DEP_URL.format(triple=t)] = dep_body + t.encode()
    return routes
