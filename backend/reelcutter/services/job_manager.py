"""
Job manager for background stage workers.

Holds handles of running asyncio tasks (used only for cancellation and
concurrency limits). All durable state lives in the ProjectStore.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine

from reelcutter.config import get_settings

logger = logging.getLogger(__name__)


class JobManager:
    """
    Manager for detached background jobs.

    Jobs are keyed ("<project>:<stage>" or "<project>:caption:<segment>").
    Spawning a job under a key that is still running cancels the old one.
    Caption workers share a bounded number of slots.

    Example:
        manager = JobManager(caption_concurrency=2)
        manager.spawn(f"{project_id}:split", worker())

        async with manager.caption_slot():
            await caption_segment()

        await manager.cancel_prefix(f"{project_id}:")
    """

    def __init__(self, caption_concurrency: int = 2):
        """
        Initialize job manager.

        Args:
            caption_concurrency: Max segments captioned at the same time
        """
        self.caption_concurrency = max(1, caption_concurrency)
        self._tasks: dict[str, asyncio.Task] = {}
        self._caption_slots: asyncio.Semaphore | None = None

    def spawn(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Start a detached job, superseding any running job with the same key.

        Args:
            key: Job key
            coro: Worker coroutine

        Returns:
            Created task
        """
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            logger.info(f"Superseding running job {key}")
            previous.cancel()

        task = asyncio.create_task(coro, name=key)
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._on_done(key, t))
        logger.debug(f"Spawned job {key}")
        return task

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.debug(f"Job {key} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Job {key} crashed: {error!r}")

    def get(self, key: str) -> asyncio.Task | None:
        return self._tasks.get(key)

    def running_keys(self, prefix: str = "") -> list[str]:
        """Keys of unfinished jobs starting with prefix."""
        return [
            key for key, task in self._tasks.items()
            if key.startswith(prefix) and not task.done()
        ]

    async def cancel_prefix(self, prefix: str, wait: float | None = 10.0) -> list[str]:
        """
        Cancel all running jobs whose key starts with prefix.

        Args:
            prefix: Key prefix ("<project>:" or "<project>:caption")
            wait: Seconds to wait for the workers to unwind (None = don't wait)

        Returns:
            Keys of cancelled jobs
        """
        keys = self.running_keys(prefix)
        tasks = [self._tasks[key] for key in keys]
        for task in tasks:
            task.cancel()

        if tasks and wait:
            done, pending = await asyncio.wait(tasks, timeout=wait)
            if pending:
                logger.warning(f"{len(pending)} job(s) under {prefix} still unwinding")

        if keys:
            logger.info(f"Cancelled jobs: {', '.join(keys)}")
        return keys

    @asynccontextmanager
    async def caption_slot(self) -> AsyncIterator[None]:
        """Hold one of the bounded caption worker slots."""
        if self._caption_slots is None:
            self._caption_slots = asyncio.Semaphore(self.caption_concurrency)
        async with self._caption_slots:
            yield

    async def join(self, prefix: str = "", timeout: float | None = None) -> None:
        """Wait until jobs under prefix finish (including ones they spawn)."""
        while True:
            tasks = [self._tasks[key] for key in self.running_keys(prefix)]
            if not tasks:
                return
            await asyncio.wait(tasks, timeout=timeout)
            if timeout is not None:
                return

    async def shutdown(self) -> None:
        """Cancel every running job."""
        await self.cancel_prefix("", wait=15.0)


# Global job manager instance
_job_manager: JobManager | None = None


def get_job_manager() -> JobManager:
    """Get global job manager instance."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager(get_settings().caption_concurrency)
    return _job_manager
