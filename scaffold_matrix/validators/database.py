"""Database validators.

Local databases are exercised for real: SQLite through the ``sqlite3``
command-line shell, container engines through ``docker compose`` against the
project's ``db/docker-compose.db.yml``.  Remote hosts (neon, planetscale,
turso) need credentials and only produce a warning.

Every container engine follows the same sequence: check the compose file,
``up -d db``, wait for it through the shared
:class:`~scaffold_matrix.readiness.ReadinessPoller`, then look for the table
the generator is expected to create (``users`` with auth, otherwise
``count_history``).  Engines differ only in their :class:`EngineSpec`.  All
compose calls use the engine's compose project name, which matches the
``-p`` the generator writes into the project's own ``db:*`` scripts.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..matrix import MatrixEntry
from ..process import ProcessResult, run_process
from ..readiness import ReadinessPoller
from ..results import ValidationResult
from ..utils import preview_lines
from .base import DatabaseValidator

COMPOSE_FILE = Path("db") / "docker-compose.db.yml"
SQLITE_FILE = Path("db") / "database.sqlite"
COMPOSE_SERVICE = "db"


def expected_table(entry: MatrixEntry) -> str:
    """Table the generator creates for *entry*."""
    return "users" if entry.auth_provider != "none" else "count_history"


def compose_command(project_name: str, compose_path: Path) -> list[str]:
    return ["docker", "compose", "-p", project_name, "-f", str(compose_path)]


def docker_unavailable(result: ProcessResult) -> bool:
    """Heuristic for "Docker is missing or needs sudo" on a failed ``up``."""
    stderr = result.stderr.lower()
    return "docker" in stderr or "sudo" in stderr


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


class SQLiteValidator(DatabaseValidator):
    """Queries ``db/database.sqlite`` for the expected table."""

    name = "sqlite"

    def __init__(
        self,
        timeout: float = 30.0,
        grace_delay: float = 1.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.timeout = timeout
        self.grace_delay = grace_delay
        self.env = dict(env or {})

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        if entry.database_host == "turso":
            return ValidationResult(warnings=["Turso remote database - skipping local file and query checks"])

        database_file = Path(project_path) / SQLITE_FILE
        if not database_file.is_file():
            return ValidationResult.from_messages([f"SQLite database file not found: {database_file}"])

        table = expected_table(entry)
        query = f"SELECT name FROM sqlite_master WHERE type='table' AND name='{table}';"
        result = await run_process(
            ["sqlite3", str(database_file), query],
            env=self.env,
            timeout=self.timeout,
            grace_delay=self.grace_delay,
        )

        if result.timed_out:
            return ValidationResult.from_messages(["Database connection test timed out"])
        if result.spawn_failed:
            return ValidationResult.from_messages([f"sqlite3 command unavailable: {result.stderr}"])
        if not result.ok:
            return ValidationResult.from_messages(
                [f"Database connection test failed: {result.stderr or 'Unknown error'}"]
            )
        if table not in result.stdout:
            return ValidationResult.from_messages(
                [f"{table} table not found in database (runtime query returned no rows)"]
            )
        return ValidationResult()


# ---------------------------------------------------------------------------
# Container engines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSpec:
    """How to start, probe and query one containerised engine."""

    label: str
    compose_project: str
    ready_probe: tuple[str, ...]
    list_tables: tuple[str, ...]
    exec_options: tuple[str, ...] = field(default=())


ENGINE_SPECS: dict[str, EngineSpec] = {
    "postgresql": EngineSpec(
        label="PostgreSQL",
        compose_project="postgres",
        ready_probe=("pg_isready", "-U", "user", "-h", "localhost"),
        list_tables=(
            "psql", "-U", "user", "-d", "database", "-c",
            "SELECT tablename FROM pg_tables WHERE schemaname = 'public';",
        ),
    ),
    "mysql": EngineSpec(
        label="MySQL",
        compose_project="mysql",
        ready_probe=("bash", "-lc", "mysqladmin ping -h127.0.0.1 --silent"),
        list_tables=(
            "bash", "-lc",
            "mysql -h127.0.0.1 -uroot -e \"SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = 'database';\"",
        ),
        exec_options=("-e", "MYSQL_PWD=rootpassword"),
    ),
    "mariadb": EngineSpec(
        label="MariaDB",
        compose_project="mariadb",
        ready_probe=("bash", "-lc", "mariadb-admin ping -h127.0.0.1 --silent"),
        list_tables=(
            "bash", "-lc",
            "mariadb -h127.0.0.1 -uroot -e \"SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = 'database';\"",
        ),
        exec_options=("-e", "MYSQL_PWD=rootpassword"),
    ),
    "mongodb": EngineSpec(
        label="MongoDB",
        compose_project="mongodb",
        ready_probe=("mongosh", "--eval", 'db.adminCommand("ping")'),
        list_tables=(
            "mongosh", "-u", "user", "-p", "password", "--authenticationDatabase", "admin",
            "database", "--quiet", "--eval", "db.getCollectionNames()",
        ),
    ),
}


class DockerDatabaseValidator(DatabaseValidator):
    """Starts the project's database container and checks its schema.

    Args:
        engine: Key into :data:`ENGINE_SPECS`.
        poller: Readiness poller used after ``up -d db``.
        timeout: Budget for ``up``, ``down`` and the table query.
        grace_delay: SIGTERM -> SIGKILL delay on timeout.
        preview_lines: Output lines kept in failure messages.
        env: Extra environment for every command.
    """

    def __init__(
        self,
        engine: str,
        poller: ReadinessPoller | None = None,
        timeout: float = 120.0,
        grace_delay: float = 1.0,
        preview_lines: int = 20,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if engine not in ENGINE_SPECS:
            raise ValueError(f"No container validator for database engine {engine!r}")
        self.engine = engine
        self.spec = ENGINE_SPECS[engine]
        self.poller = poller or ReadinessPoller()
        self.timeout = timeout
        self.grace_delay = grace_delay
        self.preview_lines = preview_lines
        self.env = dict(env or {})
        self.name = engine
        self._started: list[Path] = []

    def compose(self, project: Path) -> list[str]:
        return compose_command(self.spec.compose_project, project / COMPOSE_FILE)

    async def _run(self, cmd: list[str], cwd: Path | None = None) -> ProcessResult:
        return await run_process(
            cmd, cwd=cwd, env=self.env, timeout=self.timeout, grace_delay=self.grace_delay
        )

    def _check_compose_file(self, compose_path: Path) -> str | None:
        """Return an error message, or ``None`` when the file declares the db service."""
        if not compose_path.is_file():
            return f"Docker compose file not found: {compose_path}"
        try:
            document = yaml.safe_load(compose_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            return f"Invalid docker compose file {compose_path}: {exc}"
        services = document.get("services") if isinstance(document, dict) else None
        if not isinstance(services, dict) or COMPOSE_SERVICE not in services:
            return f"Docker compose file {compose_path} does not define a '{COMPOSE_SERVICE}' service"
        return None

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        if entry.database_host != "none":
            return ValidationResult(
                warnings=[
                    f"{entry.database_host} remote database - skipping Docker checks (requires credentials)"
                ]
            )

        project = Path(project_path)
        compose_error = self._check_compose_file(project / COMPOSE_FILE)
        if compose_error:
            return ValidationResult.from_messages([compose_error])

        compose = self.compose(project)
        self._started.append(project)
        up = await self._run([*compose, "up", "-d", COMPOSE_SERVICE], cwd=project)
        if not up.ok:
            if not up.timed_out and not up.spawn_failed and docker_unavailable(up):
                return ValidationResult(
                    warnings=[
                        f"Docker not available or requires sudo - skipping local {self.spec.label} "
                        f"connection test: {up.stderr[:100]}"
                    ]
                )
            detail = preview_lines(up.stderr or up.stdout, self.preview_lines) or up.describe()
            return ValidationResult.from_messages([f"Failed to start database container: {detail}"])

        ready = await self.poller.wait_for_command(
            [*compose, "exec", "-T", COMPOSE_SERVICE, *self.spec.ready_probe],
            cwd=project,
            env=self.env,
        )
        if not ready:
            return ValidationResult.from_messages(
                [
                    f"{self.spec.label} container did not become ready after "
                    f"{self.poller.max_attempts} attempts"
                ]
            )

        query = await self._run(
            [*compose, "exec", *self.spec.exec_options, "-T", COMPOSE_SERVICE, *self.spec.list_tables],
            cwd=project,
        )
        if not query.ok:
            detail = preview_lines(query.stderr, self.preview_lines) or query.describe()
            return ValidationResult.from_messages([f"Database connection test failed: {detail}"])

        table = expected_table(entry)
        if table not in query.stdout:
            return ValidationResult.from_messages([f"{table} table not found in database"])
        return ValidationResult()

    async def teardown(self) -> list[str]:
        """Run ``docker compose down`` for every project this validator started."""
        warnings: list[str] = []
        while self._started:
            project = self._started.pop()
            if not project.exists():
                continue
            down = await self._run([*self.compose(project), "down"], cwd=project)
            if not down.ok:
                warnings.append(f"Failed to stop {self.spec.label} container for {project.name}: {down.describe()}")
        return warnings


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def database_validator_for(
    entry: MatrixEntry,
    poller: ReadinessPoller | None = None,
    timeout: float = 120.0,
    grace_delay: float = 1.0,
    preview_lines: int = 20,
    env: Mapping[str, str] | None = None,
) -> DatabaseValidator | None:
    """Validator for *entry*'s database engine, or ``None`` when there is none."""
    if entry.database_engine == "sqlite":
        return SQLiteValidator(timeout=timeout, grace_delay=grace_delay, env=env)
    if entry.database_engine in ENGINE_SPECS:
        return DockerDatabaseValidator(
            entry.database_engine,
            poller=poller,
            timeout=timeout,
            grace_delay=grace_delay,
            preview_lines=preview_lines,
            env=env,
        )
    return None
