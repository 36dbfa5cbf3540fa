"""Keyed, cancellable event-loop timers."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


class TimerGroup:
    """Named ``loop.call_later`` timers with at most one timer per key.

    Scheduling a key that already has a pending timer replaces it. Callbacks
    returning a coroutine are run as tasks owned by the group, so
    ``cancel_all`` stops both pending timers and work they started.
    """

    def __init__(self, name: str = "timers"):
        self.name = name
        self._handles: Dict[Hashable, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, key: Hashable, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        """Schedule ``callback(*args)`` after ``delay`` seconds.

        Args:
            key: Timer identity; an existing timer with this key is cancelled
            delay: Delay in seconds
            callback: Plain function or coroutine function
            *args: Arguments for the callback

        Returns:
            The scheduled timer handle
        """
        self.cancel(key)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay, self._fire, key, callback, args)
        self._handles[key] = handle
        return handle

    def _fire(self, key: Hashable, callback: Callable[..., Any], args: tuple) -> None:
        self._handles.pop(key, None)
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"[{self.name}] Timer {key!r} callback failed: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[{self.name}] Timer task failed: {exc}")

    def cancel(self, key: Hashable) -> bool:
        """Cancel the timer for ``key``.

        Returns:
            True if a pending timer was cancelled
        """
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        """Cancel every pending timer whose key matches ``predicate``."""
        keys = [key for key in self._handles if predicate(key)]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def is_active(self, key: Hashable) -> bool:
        return key in self._handles

    def when(self, key: Hashable) -> Optional[float]:
        handle = self._handles.get(key)
        return handle.when() if handle else None

    def __len__(self) -> int:
        return len(self._handles)
