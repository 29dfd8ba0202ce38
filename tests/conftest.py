"""Shared pytest fixtures for the scaffold matrix test suite.

Provides reusable fixtures for:
- Matrix entries with sensible defaults
- Fake generator / installer executables (small Python scripts)
- A fully wired configuration pointing at a temporary work directory
"""

from __future__ import annotations

import os
import stat
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from scaffold_matrix.config import Config, ReadinessConfig, TimeoutConfig
from scaffold_matrix.matrix import MatrixEntry, annotate

# ---------------------------------------------------------------------------
# Matrix entries
# ---------------------------------------------------------------------------

DEFAULT_AXES: dict[str, Any] = {
    "frontend": "html",
    "database_engine": "sqlite",
    "orm": "none",
    "database_host": "none",
    "auth_provider": "none",
    "code_quality_tool": "none",
    "directory_config": "default",
    "use_tailwind": False,
}


@pytest.fixture
def make_entry() -> Callable[..., MatrixEntry]:
    """Factory for annotated matrix entries: ``make_entry(frontend="react")``."""

    def _make(**overrides: Any) -> MatrixEntry:
        return annotate(MatrixEntry(**{**DEFAULT_AXES, **overrides}))

    return _make


# ---------------------------------------------------------------------------
# Fake executables
# ---------------------------------------------------------------------------


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable Python script and return its path.

    The script runs under the current interpreter so tests never depend on
    ``bun`` or ``npm`` being installed.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def fake_generator(make_script: Callable[[str, str], Path]) -> Path:
    """Generator stand-in: ``<script> <name> --flags...`` creates ``<cwd>/<name>/package.json``.

    The manifest content does not depend on the project name, so two
    entries with the same dependency fingerprint share a cache entry.

    The flags it received are stored in ``args.txt`` inside the project.
    """
    return make_script(
        "fake-generator",
        """
        import json, os, sys
        name = sys.argv[1]
        os.makedirs(name, exist_ok=True)
        with open(os.path.join(name, "package.json"), "w") as fh:
            json.dump({"name": "generated-app", "scripts": {}}, fh)
        with open(os.path.join(name, "args.txt"), "w") as fh:
            fh.write(" ".join(sys.argv[2:]))
        """,
    )


@pytest.fixture
def install_log(tmp_path: Path) -> Path:
    """File the fake installer appends one line to per invocation."""
    return tmp_path / "install-calls.log"


@pytest.fixture
def fake_installer(make_script: Callable[[str, str], Path], install_log: Path) -> Path:
    """Installer stand-in: creates ``node_modules/left-pad/index.js`` in its cwd."""
    return make_script(
        "fake-installer",
        f"""
        import os
        with open({str(install_log)!r}, "a") as fh:
            fh.write(os.getcwd() + "\\n")
        os.makedirs(os.path.join("node_modules", "left-pad"), exist_ok=True)
        with open(os.path.join("node_modules", "left-pad", "index.js"), "w") as fh:
            fh.write("module.exports = () => {{}};\\n")
        """,
    )


@pytest.fixture
def install_calls(install_log: Path) -> Callable[[], int]:
    """Number of times the fake installer has run so far."""

    def _count() -> int:
        if not install_log.exists():
            return 0
        return len(install_log.read_text(encoding="utf-8").splitlines())

    return _count


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def harness_config(work_dir: Path, tmp_path: Path, fake_generator: Path, fake_installer: Path) -> Config:
    """Configuration wired to the fake generator and installer with short timeouts."""
    return Config(
        work_dir=work_dir,
        cache_dir=tmp_path / "cache",
        scaffold_command=[str(fake_generator)],
        install_command=[str(fake_installer)],
        timeouts=TimeoutConfig(scaffold=20, install=20, build=20, database=20, grace_delay=0.2),
        readiness=ReadinessConfig(max_attempts=2, interval=0.05, attempt_timeout=5),
        skip_build=True,
        skip_server=True,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every SCAFFOLD_MATRIX_* variable and CI from the environment."""
    for key in list(os.environ):
        if key.startswith("SCAFFOLD_MATRIX_") or key == "CI":
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
