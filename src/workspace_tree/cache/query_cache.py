"""In-memory query cache with cancellable reads."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from loguru import logger

T = TypeVar("T")

ChangeListener = Callable[[str], None]


class QueryCache:
    """Client-side cache shared by readers and the mutation coordinator.

    Reads go through :meth:`fetch`, which runs the loader as a task tracked per
    key. :meth:`cancel` cancels those tasks; a cancelled read never writes its
    result, so it cannot clobber an optimistic value written after it started.
    Values are expected to be immutable (entities and tuples of entities).
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._stale: set[str] = set()
        self._inflight: dict[str, set[asyncio.Task[Any]]] = {}
        self._cancelled: set[asyncio.Task[Any]] = set()
        self._listeners: list[ChangeListener] = []

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value
        self._stale.discard(key)
        self._notify(key)

    def remove(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._notify(key)
        self._stale.discard(key)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._entries if k.startswith(prefix))

    def snapshot(self) -> dict[str, Any]:
        """Copy of every entry, for comparison or inspection."""
        return dict(self._entries)

    def invalidate(self, key: str) -> None:
        if key in self._entries:
            self._stale.add(key)
            logger.debug("Invalidated {}", key)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in self.keys(prefix):
            self.invalidate(key)

    def is_stale(self, key: str) -> bool:
        return key in self._stale

    def stale_keys(self) -> list[str]:
        return sorted(self._stale)

    def is_fetching(self, key: str) -> bool:
        return bool(self._inflight.get(key))

    async def fetch(self, key: str, loader: Callable[[], Awaitable[T]]) -> T | None:
        """Run ``loader`` for ``key`` and cache its value.

        Returns the cached value instead when the read was cancelled. Loader
        exceptions propagate and leave the cache untouched.
        """
        task: asyncio.Task[T] = asyncio.ensure_future(loader())
        self._inflight.setdefault(key, set()).add(task)
        try:
            await asyncio.wait({task})
        finally:
            inflight = self._inflight.get(key)
            if inflight is not None:
                inflight.discard(task)
                if not inflight:
                    del self._inflight[key]
            if not task.done():
                task.cancel()

        if task.cancelled() or task in self._cancelled:
            self._cancelled.discard(task)
            logger.debug("Read of {} was cancelled, keeping cached value", key)
            return self._entries.get(key)  # type: ignore[no-any-return]

        value = task.result()
        self.set(key, value)
        return value

    async def cancel(self, key: str) -> None:
        tasks = self._inflight.pop(key, set())
        if not tasks:
            return
        logger.debug("Cancelling {} in-flight read(s) of {}", len(tasks), key)
        for task in tasks:
            self._cancelled.add(task)
            task.cancel()
        await asyncio.wait(tasks)

    async def cancel_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            await self.cancel(key)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener(key)`` after every write or removal. Returns an unsubscriber."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            listener(key)
