"""External process orchestration.

Every child process the harness starts (scaffolding generator, package
installer, typecheck, ``docker compose``, readiness probes) goes through
:func:`run_process`.  It captures stdout/stderr, enforces a wall-clock budget
and escalates termination on timeout:

1. ``SIGTERM`` to the child's process group,
2. wait up to ``grace_delay`` seconds,
3. ``SIGKILL`` to the process group,
4. await the exit before returning.

Spawn failures (missing executable, permission denied, bad working
directory) are reported as a :class:`ProcessResult` with
``SPAWN_FAILURE_EXIT_CODE`` instead of an exception, so callers handle
"could not start" and "ran and failed" through the same value.  There are no
retries here; retry policy lives in :mod:`scaffold_matrix.readiness`.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

_POSIX = os.name == "posix"

SPAWN_FAILURE_EXIT_CODE = -127
TIMEOUT_EXIT_CODE = -1


@dataclass
class ProcessResult:
    """Outcome of a single child process invocation."""

    command: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0
    cwd: str | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        """True when the process exited with status 0 within its budget."""
        return self.exit_code == 0 and not self.timed_out

    @property
    def spawn_failed(self) -> bool:
        return self.exit_code == SPAWN_FAILURE_EXIT_CODE

    @property
    def combined_output(self) -> str:
        """Stdout followed by stderr, skipping empty streams."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def describe(self) -> str:
        """One-line description used in error messages."""
        if self.timed_out:
            return f"timed out after {self.duration_seconds:.1f}s"
        if self.spawn_failed:
            return f"could not be started ({self.stderr})"
        return f"exited with code {self.exit_code}"


def format_command(cmd: Sequence[str]) -> str:
    """Render a command list as a single printable string."""
    return " ".join(str(part) for part in cmd)


# ---------------------------------------------------------------------------
# Termination helpers
# ---------------------------------------------------------------------------


def _signal_group(process: asyncio.subprocess.Process, forceful: bool) -> None:
    """Signal the child's whole process group (or just the child off POSIX)."""
    try:
        if _POSIX:
            os.killpg(process.pid, signal.SIGKILL if forceful else signal.SIGTERM)
        elif forceful:
            process.kill()
        else:
            process.terminate()
    except (ProcessLookupError, PermissionError):
        # Already gone.
        pass


async def _terminate(process: asyncio.subprocess.Process, grace_delay: float) -> None:
    """Terminate gracefully, then forcefully, and wait for the exit."""
    _signal_group(process, forceful=False)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_delay)
    except asyncio.TimeoutError:
        pass
    # Grandchildren that ignored SIGTERM may still hold the pipes open.
    _signal_group(process, forceful=True)
    await process.wait()


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace").strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_process(
    cmd: Sequence[str],
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float = 120.0,
    grace_delay: float = 1.0,
) -> ProcessResult:
    """Run *cmd* to completion or until *timeout* elapses.

    Args:
        cmd: Executable followed by its arguments.  No shell is involved.
        cwd: Working directory for the child process.
        env: Extra environment variables merged on top of ``os.environ``.
        timeout: Maximum wall-clock seconds before termination starts.
        grace_delay: Seconds between the graceful and the forceful signal.

    Returns:
        A :class:`ProcessResult`.  ``timed_out`` is set (and ``exit_code`` is
        ``TIMEOUT_EXIT_CODE``) when the budget was exceeded; the process has
        exited by the time this returns.
    """
    command = [str(part) for part in cmd]
    merged_env = {**os.environ, **env} if env else None
    cwd_str = str(cwd) if cwd is not None else None
    start = time.monotonic()

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd_str,
            env=merged_env,
            start_new_session=_POSIX,
        )
    except OSError as exc:
        # FileNotFoundError, PermissionError, NotADirectoryError, ...
        return ProcessResult(
            command=command,
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            stderr=f"Failed to start '{command[0] if command else ''}': {exc}",
            duration_seconds=time.monotonic() - start,
            cwd=cwd_str,
        )

    # Drain both pipes concurrently with the child; shielded so a timeout
    # does not throw away what was already captured.
    communicate = asyncio.ensure_future(process.communicate())
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            asyncio.shield(communicate), timeout=timeout
        )
    except asyncio.TimeoutError:
        await _terminate(process, grace_delay)
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                communicate, timeout=max(grace_delay, 0.1)
            )
        except asyncio.TimeoutError:
            stdout_bytes, stderr_bytes = b"", b""

        stderr_text = _decode(stderr_bytes)
        note = f"Process timed out after {timeout}s: {format_command(command)}"
        return ProcessResult(
            command=command,
            exit_code=TIMEOUT_EXIT_CODE,
            stdout=_decode(stdout_bytes),
            stderr=f"{stderr_text}\n{note}" if stderr_text else note,
            timed_out=True,
            duration_seconds=time.monotonic() - start,
            cwd=cwd_str,
        )

    exit_code = process.returncode if process.returncode is not None else TIMEOUT_EXIT_CODE
    return ProcessResult(
        command=command,
        exit_code=exit_code,
        stdout=_decode(stdout_bytes),
        stderr=_decode(stderr_bytes),
        duration_seconds=time.monotonic() - start,
        cwd=cwd_str,
    )


class BackgroundProcess:
    """A long-running child, such as a dev server, owned by an ``async with`` block.

    Output is discarded so a chatty server can never fill a pipe and stall.
    On exit the process group is stopped with the same SIGTERM -> grace ->
    SIGKILL escalation used for timeouts.

    Usage::

        async with BackgroundProcess(["bun", "run", "dev"], cwd=project) as server:
            if server.start_error is None:
                ready = await poller.wait_for_http("http://localhost:3000/")
    """

    def __init__(
        self,
        cmd: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        grace_delay: float = 1.0,
    ) -> None:
        self.command = [str(part) for part in cmd]
        self.cwd = str(cwd) if cwd is not None else None
        self.env = {**os.environ, **env} if env else None
        self.grace_delay = grace_delay
        self.start_error: str | None = None
        self._process: asyncio.subprocess.Process | None = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the process.  Failures are stored in :attr:`start_error`."""
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=self.cwd,
                env=self.env,
                start_new_session=_POSIX,
            )
        except OSError as exc:
            self.start_error = f"Failed to start '{self.command[0]}': {exc}"

    async def stop(self) -> None:
        """Stop the process if it is still running and wait for it to exit."""
        if self._process is None:
            return
        if self._process.returncode is None:
            await _terminate(self._process, self.grace_delay)
        else:
            await self._process.wait()

    async def __aenter__(self) -> "BackgroundProcess":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
