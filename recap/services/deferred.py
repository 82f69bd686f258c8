from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

_logger = logging.getLogger("recap.deferred")


class DeferredTaskQueue:
    """Runs state-mutating actions after the current callback returns.

    Code that must not re-enter the object it is running inside (the
    recording tick, for example) enqueues the action here; it starts on the
    next loop iteration as its own task. ``key`` de-duplicates pending work:
    a key that is already queued or running is not scheduled again.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._keys: dict[str, asyncio.Task] = {}

    def schedule(
        self,
        action: Callable[[], Awaitable[object]],
        *,
        key: Optional[str] = None,
    ) -> bool:
        if key is not None and key in self._keys:
            _logger.debug("Deferred action already pending: %s", key)
            return False
        task = asyncio.get_running_loop().create_task(self._run(action, key))
        self._tasks.add(task)
        if key is not None:
            self._keys[key] = task
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, action: Callable[[], Awaitable[object]], key: Optional[str]) -> None:
        try:
            await action()
        except Exception as exc:
            _logger.exception("Deferred action failed key=%s: %s", key, exc)
        finally:
            if key is not None:
                self._keys.pop(key, None)

    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled action (including ones they schedule) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
