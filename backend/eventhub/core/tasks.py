"""
Fire-and-forget dispatch for cascades and notifications.

Work submitted here runs as an asyncio task decoupled from the request that
scheduled it. Each task gets a timeout; failures are logged and kept in a bounded
history so they can be inspected or reconciled, but never reach the caller.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from eventhub.core.exceptions import CascadeFailure

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """Runs background coroutines with a timeout and a failure log."""

    def __init__(self, timeout_seconds: float = 10.0, failure_history: int = 200):
        self.timeout_seconds = timeout_seconds
        self.failures: deque[CascadeFailure] = deque(maxlen=failure_history)
        self._active_tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._active_tasks)

    def submit(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        event_id: str = "",
    ) -> asyncio.Task:
        """Schedule `func()` on the running loop and return immediately."""
        task = asyncio.create_task(self._run(name, func, event_id), name=name)
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)
        return task

    def record_failure(self, operation: str, event_id: str, error: Exception | str) -> CascadeFailure:
        failure = CascadeFailure(
            operation=operation,
            event_id=event_id,
            error=str(error),
            occurred_at=datetime.now(timezone.utc),
        )
        self.failures.append(failure)
        return failure

    async def _run(self, name: str, func: Callable[[], Awaitable[object]], event_id: str):
        try:
            return await asyncio.wait_for(func(), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.error(f"❌ Background task '{name}' timed out after {self.timeout_seconds}s")
            self.record_failure(name, event_id, "timeout")
        except Exception as e:
            logger.error(f"❌ Background task '{name}' failed: {e}", exc_info=True)
            self.record_failure(name, event_id, e)
        return None

    async def drain(self) -> None:
        """Wait for every task submitted so far (and any they submit) to finish."""
        while self._active_tasks:
            await asyncio.gather(*list(self._active_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks. Called from the app lifespan on shutdown."""
        for task in list(self._active_tasks):
            task.cancel()
        await asyncio.gather(*list(self._active_tasks), return_exceptions=True)
        logger.info("🧹 Task dispatcher shut down.")
