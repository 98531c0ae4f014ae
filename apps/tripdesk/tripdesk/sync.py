"""Reload-on-signal synchronisation between backend tables and page lists.

A change notification never carries data into a list. It only marks the
list stale; the reconciler then refetches the whole table and replaces the
list in one step. A failed refetch keeps the last good items.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from tripdesk.backend import ALL_EVENTS, ChangeEvent, Subscription
from tripdesk.services import FetchResult

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")

Loader = Callable[[], Awaitable[FetchResult]]
RefreshListener = Callable[[List[str]], Awaitable[None]]


class LiveList(Generic[ItemT]):
    def __init__(self, name: str, loader: Loader):
        self.name = name
        self.loader = loader
        self.items: List[ItemT] = []
        self.error: Optional[str] = None
        self.stale = False
        self.loaded = False

    def apply(self, result: FetchResult) -> None:
        if result.ok:
            self.items = list(result.items)
            self.error = None
        else:
            self.error = result.error
        self.loaded = True

    async def load(self) -> None:
        self.stale = False
        self.apply(await self.loader())


class Reconciler:
    def __init__(self, lists: Iterable[LiveList], on_refresh: Optional[RefreshListener] = None):
        self.lists: Dict[str, LiveList] = {live.name: live for live in lists}
        self.on_refresh = on_refresh
        self.stopped = False
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._wakeup = asyncio.Event()
        if any(live.stale for live in self.lists.values()):
            self._wakeup.set()
        self._task = asyncio.create_task(self._run())

    def mark_stale(self, name: str) -> None:
        live = self.lists.get(name)
        if live is None:
            return
        live.stale = True
        if self._wakeup is not None:
            self._wakeup.set()

    async def reconcile(self) -> List[str]:
        stale = [live for live in self.lists.values() if live.stale]
        if not stale or self.stopped:
            return []
        for live in stale:
            live.stale = False
        results = await asyncio.gather(*(live.loader() for live in stale))
        if self.stopped:
            return []
        for live, result in zip(stale, results):
            if not result.ok:
                logger.error("Error refreshing %s: %s", live.name, result.error)
            live.apply(result)
        names = [live.name for live in stale]
        if self.on_refresh is not None:
            await self.on_refresh(names)
        return names

    async def _run(self) -> None:
        while not self.stopped:
            await self._wakeup.wait()
            self._wakeup.clear()
            try:
                await self.reconcile()
            except Exception:
                logger.exception("Reconcile failed")

    async def stop(self) -> None:
        self.stopped = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


class SubscriptionBridge:
    """One change-feed subscription per watched table, for one page."""

    def __init__(self, rows, reconciler: Reconciler, tables: Sequence[str]):
        self.rows = rows
        self.reconciler = reconciler
        self.tables = tuple(tables)
        self.subscriptions: List[Subscription] = []

    @property
    def is_open(self) -> bool:
        return bool(self.subscriptions)

    def open(self) -> None:
        if self.subscriptions:
            return
        for table in self.tables:
            self.subscriptions.append(self.rows.subscribe(table, ALL_EVENTS, self._on_change))
        self.reconciler.start()

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("%s on %s, marking list stale", event.type, event.table)
        self.reconciler.mark_stale(event.table)

    async def close(self) -> None:
        subscriptions, self.subscriptions = self.subscriptions, []
        for sub in subscriptions:
            sub.unsubscribe()
        await self.reconciler.stop()
