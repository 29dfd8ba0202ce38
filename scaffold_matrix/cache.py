"""Content-addressed dependency cache.

Installing dependencies dominates the cost of a scenario, and many matrix
entries install exactly the same package set.  The cache stores one copy of
the installed tree per *cache key*, where the key is derived from the
:class:`DependencyFingerprint` (the configuration fields that decide which
packages get installed) plus a hash of the generated manifest and its lock
files.

On-disk layout::

    <root>/
      <16 hex chars>/
        node_modules/        installed dependency tree
        package.json         manifest copy
        bun.lock ...         copies of any recognised lock files
        manifest.sha256      single line: hash of the stored manifest and lock files

Entries are written once into a fresh directory (staged, then renamed) and
never updated in place.  A hash mismatch is always a miss.  Nothing is evicted
during a run; :meth:`DependencyCache.prune` removes entries by age when called
explicitly.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
import shutil
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .process import ProcessResult, format_command, run_process
from .utils import ensure_dir, preview_lines, print_warning

TREE_DIRNAME = "node_modules"
HASH_FILENAME = "manifest.sha256"
LOCK_FILES: tuple[str, ...] = (
    "bun.lock",
    "bun.lockb",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
)
KEY_LENGTH = 16

_KEY_PATTERN = re.compile(rf"^[0-9a-f]{{{KEY_LENGTH}}}$")
_STAGING_PREFIX = ".staging-"
_SECONDS_PER_DAY = 24 * 60 * 60


class DependencyFingerprint(BaseModel):
    """Configuration fields that influence the installed package set."""

    model_config = ConfigDict(frozen=True)

    frontend: str
    database_engine: str
    orm: str
    database_host: str
    auth_provider: str
    use_tailwind: bool
    code_quality_tool: str = "none"

    def canonical(self) -> str:
        """Stable JSON rendering used as hash input."""
        return json.dumps(self.model_dump(), sort_keys=True, separators=(",", ":"))


@dataclass
class CacheResolution:
    """Result of :meth:`DependencyCache.resolve`."""

    cached: bool
    elapsed: float
    key: str | None = None


class DependencyInstallError(Exception):
    """Raised when the install command times out or exits non-zero."""

    def __init__(self, message: str, result: ProcessResult | None = None) -> None:
        self.result = result
        super().__init__(message)

    @property
    def timed_out(self) -> bool:
        return self.result is not None and self.result.timed_out


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def compute_manifest_hash(manifest_path: str | Path) -> str:
    """SHA-256 over the manifest bytes plus every present lock file.

    Lock files are read from the manifest's directory in ``LOCK_FILES`` order
    and each is prefixed with its name, so adding, removing or editing one
    changes the hash.

    Raises:
        OSError: If the manifest (or a present lock file) cannot be read.
    """
    manifest = Path(manifest_path)
    digest = hashlib.sha256()
    digest.update(manifest.read_bytes())
    for name in LOCK_FILES:
        lock_path = manifest.parent / name
        if lock_path.is_file():
            digest.update(b"\0" + name.encode("utf-8") + b"\0")
            digest.update(lock_path.read_bytes())
    return digest.hexdigest()


def cache_key(fingerprint: DependencyFingerprint, manifest_hash: str) -> str:
    """Fixed-length lowercase hex key for a fingerprint and manifest hash."""
    material = fingerprint.canonical() + manifest_hash
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:KEY_LENGTH]


# ---------------------------------------------------------------------------
# Cache service
# ---------------------------------------------------------------------------


class DependencyCache:
    """Explicitly constructed cache service rooted at one directory.

    Args:
        root: Cache root directory (created lazily).
        install_command: Command run inside the project on a miss.
        install_timeout: Budget for the install command, in seconds.
        preview_lines: Output lines kept in :class:`DependencyInstallError`.
        grace_delay: SIGTERM -> SIGKILL delay when the install times out.
        env: Extra environment for the install command.
    """

    def __init__(
        self,
        root: str | Path,
        install_command: Sequence[str] = ("bun", "install"),
        install_timeout: float = 300.0,
        preview_lines: int = 20,
        grace_delay: float = 1.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.root = Path(root)
        self.install_command = list(install_command)
        self.install_timeout = install_timeout
        self.preview_lines = preview_lines
        self.grace_delay = grace_delay
        self.env = dict(env or {})

    def entry_path(self, key: str) -> Path:
        return self.root / key

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def has(
        self,
        fingerprint: DependencyFingerprint,
        manifest_path: str | Path,
        manifest_hash: str | None = None,
    ) -> bool:
        """Return ``True`` only for a complete entry whose stored hash matches.

        The manifest hash is computed unless supplied.  An unreadable manifest
        is reported as a miss.
        """
        if manifest_hash is None:
            try:
                manifest_hash = compute_manifest_hash(manifest_path)
            except OSError:
                return False
        return self._is_valid_entry(self.entry_path(cache_key(fingerprint, manifest_hash)), manifest_hash)

    def _is_valid_entry(self, entry: Path, manifest_hash: str) -> bool:
        tree = entry / TREE_DIRNAME
        if not tree.is_dir() or not any(tree.iterdir()):
            return False
        try:
            stored = (entry / HASH_FILENAME).read_text(encoding="utf-8").strip()
        except OSError:
            return False
        return stored == manifest_hash

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve(
        self,
        project_path: str | Path,
        fingerprint: DependencyFingerprint,
        manifest_path: str | Path,
        manifest_hash: str | None = None,
    ) -> CacheResolution:
        """Populate ``<project>/node_modules`` from the cache or by installing.

        On a hit the cached tree is copied into the project.  On a miss the
        install command runs in the project directory, the manifest hash is
        recomputed (the install may have written lock files) and the tree,
        manifest, lock files and that hash are persisted under the key derived
        from it.  A caller-supplied *manifest_hash* is used as given for both
        lookup and persistence.

        If the manifest cannot be hashed the cache is bypassed: the install
        still runs but nothing is read from or written to the cache.

        Raises:
            DependencyInstallError: If the install times out or fails.
        """
        start = time.monotonic()
        project = Path(project_path)

        try:
            lookup_hash = manifest_hash if manifest_hash is not None else compute_manifest_hash(manifest_path)
        except OSError as exc:
            print_warning(f"  Cannot hash {manifest_path} ({exc}); bypassing dependency cache")
            await self._install(project)
            return CacheResolution(cached=False, elapsed=time.monotonic() - start)

        key = cache_key(fingerprint, lookup_hash)
        entry = self.entry_path(key)

        if self._is_valid_entry(entry, lookup_hash):
            await _run_blocking(_copy_tree, entry / TREE_DIRNAME, project / TREE_DIRNAME)
            return CacheResolution(cached=True, elapsed=time.monotonic() - start, key=key)

        await self._install(project)

        installed_hash = lookup_hash
        if manifest_hash is None:
            try:
                installed_hash = compute_manifest_hash(manifest_path)
            except OSError as exc:
                print_warning(f"  Cannot re-hash {manifest_path} after install ({exc}); not caching")
                return CacheResolution(cached=False, elapsed=time.monotonic() - start)
            key = cache_key(fingerprint, installed_hash)

        await _run_blocking(self._persist, project, Path(manifest_path), key, installed_hash)
        return CacheResolution(cached=False, elapsed=time.monotonic() - start, key=key)

    async def _install(self, project: Path) -> ProcessResult:
        result = await run_process(
            self.install_command,
            cwd=project,
            env=self.env,
            timeout=self.install_timeout,
            grace_delay=self.grace_delay,
        )
        if result.ok:
            return result

        if result.timed_out:
            message = f"Dependency installation timed out after {self.install_timeout:g} seconds"
        elif result.spawn_failed:
            message = f"Could not run '{format_command(self.install_command)}'"
        else:
            message = f"Dependency installation failed with exit code {result.exit_code}"

        preview = preview_lines(result.combined_output, self.preview_lines)
        if preview:
            message = f"{message}\n{preview}"
        raise DependencyInstallError(message, result)

    def _persist(self, project: Path, manifest: Path, key: str, manifest_hash: str) -> None:
        """Write a complete entry into a staging directory, then move it into place."""
        tree = project / TREE_DIRNAME
        if not tree.is_dir():
            print_warning(f"  Install produced no {TREE_DIRNAME}/ directory; not caching")
            return

        final = self.entry_path(key)
        if self._is_valid_entry(final, manifest_hash):
            # Another project already installed to the same post-install key.
            return

        ensure_dir(self.root)
        staging = self.root / f"{_STAGING_PREFIX}{key}-{uuid.uuid4().hex[:8]}"
        try:
            staging.mkdir()
            _copy_tree(tree, staging / TREE_DIRNAME)
            if manifest.is_file():
                shutil.copy2(manifest, staging / manifest.name)
            for name in LOCK_FILES:
                lock_path = manifest.parent / name
                if lock_path.is_file():
                    shutil.copy2(lock_path, staging / name)
            (staging / HASH_FILENAME).write_text(manifest_hash + "\n", encoding="utf-8")

            if final.exists():
                shutil.rmtree(final)
            staging.rename(final)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def entries(self) -> list[str]:
        """Keys of every entry directory currently on disk, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            child.name
            for child in self.root.iterdir()
            if child.is_dir() and _KEY_PATTERN.match(child.name)
        )

    def prune(self, max_age_days: float = 7.0, now: float | None = None) -> list[str]:
        """Delete entries (and leftover staging dirs) older than *max_age_days*.

        Age is taken from the entry's hash file, falling back to the
        directory itself.

        Returns:
            The removed keys.
        """
        if not self.root.is_dir():
            return []

        cutoff = (now if now is not None else time.time()) - max_age_days * _SECONDS_PER_DAY
        removed: list[str] = []
        for child in sorted(self.root.iterdir()):
            if not child.is_dir():
                continue
            is_entry = bool(_KEY_PATTERN.match(child.name))
            if not is_entry and not child.name.startswith(_STAGING_PREFIX):
                continue
            stamp = child / HASH_FILENAME
            mtime = (stamp if stamp.exists() else child).stat().st_mtime
            if mtime < cutoff:
                shutil.rmtree(child)
                if is_entry:
                    removed.append(child.name)
        return removed

    def clear(self) -> bool:
        """Remove the whole cache root.  Returns ``True`` if it existed."""
        if not self.root.exists():
            return False
        shutil.rmtree(self.root)
        return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _copy_tree(source: Path, destination: Path) -> None:
    shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)


async def _run_blocking(func, *args) -> None:  # type: ignore[no-untyped-def]
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, func, *args)
