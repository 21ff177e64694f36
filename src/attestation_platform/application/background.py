"""Detached background tasks.

Work scheduled here outlives the request that scheduled it. The runner keeps
a strong reference to every task until it finishes (the event loop only keeps
weak ones) and logs exceptions that escape a task.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from attestation_platform.infrastructure.logging import get_logger
from attestation_platform.infrastructure.metrics import MetricsRegistry

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Fire-and-forget task scheduler with graceful drain."""

    def __init__(self, metrics: MetricsRegistry | None = None) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._metrics = metrics
        self._started = 0
        self._failed = 0

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any]:
        """Schedule ``factory()`` on the running loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(self._run(name, factory), name=name)
        self._tasks.add(task)
        self._started += 1
        self._publish()
        task.add_done_callback(self._on_done)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every scheduled task, including ones scheduled meanwhile."""
        while self._tasks:
            done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            self._tasks.difference_update(done)
            if pending:
                logger.warning("background_drain_timeout", pending=len(pending))
                return

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def stats(self) -> dict[str, int]:
        return {"started": self._started, "failed": self._failed, "pending": len(self._tasks)}

    async def _run(self, name: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            self._failed += 1
            logger.exception("background_task_failed", task=name)
            return None

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        self._publish()

    def _publish(self) -> None:
        if self._metrics is not None:
            self._metrics.background_tasks.set(len(self._tasks))
