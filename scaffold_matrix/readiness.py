"""Readiness polling for external services.

A single poller replaces the per-database retry loops: validators only supply
the probe (usually a command whose exit code says "ready"), the poller owns
the attempt budget and the interval.

Each attempt is one bounded :func:`~scaffold_matrix.process.run_process`
call.  A probe that times out counts as a failed attempt; it never aborts the
poll early.  The poller sleeps ``interval`` seconds between attempts (not
after the last one), so an always-failing probe gives up after
``(max_attempts - 1) * interval`` seconds plus the time spent probing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path

import httpx

from .process import run_process

Probe = Callable[[], Awaitable[bool]]


class ReadinessPoller:
    """Retry a probe at a fixed interval up to a bounded attempt count."""

    def __init__(
        self,
        max_attempts: int = 10,
        interval: float = 1.0,
        attempt_timeout: float = 10.0,
        grace_delay: float = 1.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.interval = interval
        self.attempt_timeout = attempt_timeout
        self.grace_delay = grace_delay

    async def wait(self, probe: Probe) -> bool:
        """Invoke *probe* until it returns ``True`` or the budget runs out.

        Returns:
            ``True`` if the service became ready, ``False`` otherwise.
        """
        for attempt in range(1, self.max_attempts + 1):
            if await probe():
                return True
            if attempt < self.max_attempts:
                await asyncio.sleep(self.interval)
        return False

    def command_probe(
        self,
        cmd: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Probe:
        """Build a probe that succeeds when *cmd* exits with status 0."""

        async def _probe() -> bool:
            result = await run_process(
                cmd,
                cwd=cwd,
                env=env,
                timeout=self.attempt_timeout,
                grace_delay=self.grace_delay,
            )
            return result.ok

        return _probe

    async def wait_for_command(
        self,
        cmd: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> bool:
        """Poll until *cmd* exits 0.  See :meth:`wait`."""
        return await self.wait(self.command_probe(cmd, cwd=cwd, env=env))

    def http_probe(self, url: str) -> Probe:
        """Build a probe that succeeds when *url* answers with HTTP 200."""

        async def _probe() -> bool:
            timeout = httpx.Timeout(self.attempt_timeout, connect=min(3.0, self.attempt_timeout))
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url)
            except httpx.HTTPError:
                return False
            return response.status_code == 200

        return _probe

    async def wait_for_http(self, url: str) -> bool:
        """Poll until *url* answers with HTTP 200.  See :meth:`wait`."""
        return await self.wait(self.http_probe(url))
