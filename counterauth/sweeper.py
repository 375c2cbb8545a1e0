"""Background removal of expired session rows."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

import anyio

from .sessions import SessionStore

logger = logging.getLogger("counterauth.sweeper")

DEFAULT_INTERVAL_SECONDS = 60.0


class ExpirySweeper:
    """Periodically call :meth:`SessionStore.sweep_expired` on a fixed interval.

    A failing sweep is logged and the next one is still scheduled.
    """

    def __init__(self, store: SessionStore, *, interval: float = DEFAULT_INTERVAL_SECONDS) -> None:
        if interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self._store = store
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[int]:
        """Sweep once; returns the number of removed rows, or ``None`` on failure."""

        try:
            removed = await anyio.to_thread.run_sync(self._store.sweep_expired)
        except Exception:
            logger.exception("Expired session sweep failed")
            return None
        if removed:
            logger.info("Removed %d expired session(s)", removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Session sweeper started (every %gs)", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Session sweeper stopped")


__all__ = ["DEFAULT_INTERVAL_SECONDS", "ExpirySweeper"]
