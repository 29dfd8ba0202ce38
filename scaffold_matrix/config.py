"""Scaffold matrix configuration.

Centralised, typed configuration for the whole harness.  All settings use
Pydantic v2 models so they are validated at construction time and can be
serialised to/from JSON or read from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

# Prefix shared by every generated project directory; ``--clean`` relies on it.
PROJECT_PREFIX = "test-matrix-"
MANIFEST_FILENAME = "package.json"


class TimeoutConfig(BaseModel):
    """Per-stage wall-clock budgets, in seconds."""

    scaffold: float = Field(default=120.0, gt=0, description="Scaffolding generator budget")
    install: float = Field(default=300.0, gt=0, description="Dependency install budget")
    build: float = Field(default=60.0, gt=0, description="Typecheck / compile budget")
    database: float = Field(default=120.0, gt=0, description="Database container script budget")
    grace_delay: float = Field(
        default=1.0, ge=0, description="Delay between SIGTERM and SIGKILL on timeout"
    )


class ReadinessConfig(BaseModel):
    """Polling parameters for external services such as database containers."""

    max_attempts: int = Field(default=10, ge=1)
    interval: float = Field(default=1.0, ge=0, description="Seconds slept between failed probes")
    attempt_timeout: float = Field(default=10.0, gt=0, description="Budget for a single probe")


class Config(BaseModel):
    """Global harness configuration.

    Created once by the CLI (usually through :meth:`from_env`) and passed to
    the cache, the scaffolder, the validators and the scenario runner.
    """

    work_dir: Path = Field(default=Path("."), description="Where projects are generated")
    cache_dir: Path = Field(default=Path(".test-dependency-cache"))
    matrix_path: Path = Field(default=Path("test-matrix.json"))

    scaffold_command: list[str] = Field(default=["bun", "run", "src/index.ts"])
    install_command: list[str] = Field(default=["bun", "install"])
    package_manager: str = Field(default="bun")

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)

    skip_build: bool = Field(default=False, description="Skip the typecheck step")
    skip_server: bool = Field(default=False, description="Skip the server structure checks")
    server_boot: bool = Field(
        default=False, description="Also start the dev server and wait for an HTTP 200"
    )
    server_port: int = Field(default=3000, ge=1, le=65535)

    preview_lines: int = Field(default=20, ge=1, description="Output lines kept in failure messages")
    max_errors_displayed: int = Field(default=3, ge=1)
    ci_mode: bool = Field(default=False)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def cache_path(self) -> Path:
        """Dependency cache root, resolved against ``work_dir`` when relative."""
        if self.cache_dir.is_absolute():
            return self.cache_dir
        return self.work_dir / self.cache_dir

    def project_path(self, project_name: str) -> Path:
        """Directory a scaffolded project named *project_name* lands in."""
        return self.work_dir / project_name

    def child_env(self) -> dict[str, str]:
        """Environment overrides applied to every spawned child process."""
        if not self.ci_mode:
            return {}
        return {
            "CI": os.environ.get("CI") or "1",
            "SCAFFOLD_MATRIX_CI": "1",
        }

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return path

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            SCAFFOLD_MATRIX_WORK_DIR, SCAFFOLD_MATRIX_CACHE_DIR,
            SCAFFOLD_MATRIX_PACKAGE_MANAGER, SCAFFOLD_MATRIX_SCAFFOLD_TIMEOUT,
            SCAFFOLD_MATRIX_INSTALL_TIMEOUT, SCAFFOLD_MATRIX_READY_ATTEMPTS,
            SCAFFOLD_MATRIX_READY_INTERVAL, CI.
        """
        timeout_kwargs: dict[str, Any] = {}
        if os.environ.get("SCAFFOLD_MATRIX_SCAFFOLD_TIMEOUT"):
            timeout_kwargs["scaffold"] = float(os.environ["SCAFFOLD_MATRIX_SCAFFOLD_TIMEOUT"])
        if os.environ.get("SCAFFOLD_MATRIX_INSTALL_TIMEOUT"):
            timeout_kwargs["install"] = float(os.environ["SCAFFOLD_MATRIX_INSTALL_TIMEOUT"])

        readiness_kwargs: dict[str, Any] = {}
        if os.environ.get("SCAFFOLD_MATRIX_READY_ATTEMPTS"):
            readiness_kwargs["max_attempts"] = int(os.environ["SCAFFOLD_MATRIX_READY_ATTEMPTS"])
        if os.environ.get("SCAFFOLD_MATRIX_READY_INTERVAL"):
            readiness_kwargs["interval"] = float(os.environ["SCAFFOLD_MATRIX_READY_INTERVAL"])

        kwargs: dict[str, Any] = {
            "work_dir": Path(os.environ.get("SCAFFOLD_MATRIX_WORK_DIR", ".")),
            "timeouts": TimeoutConfig(**timeout_kwargs),
            "readiness": ReadinessConfig(**readiness_kwargs),
            "ci_mode": os.environ.get("CI", "").lower() in ("1", "true", "yes"),
        }
        if os.environ.get("SCAFFOLD_MATRIX_CACHE_DIR"):
            kwargs["cache_dir"] = Path(os.environ["SCAFFOLD_MATRIX_CACHE_DIR"])

        package_manager = os.environ.get("SCAFFOLD_MATRIX_PACKAGE_MANAGER")
        if package_manager:
            kwargs["package_manager"] = package_manager
            kwargs["install_command"] = [package_manager, "install"]

        return cls(**kwargs)
