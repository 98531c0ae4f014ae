"""Bundled backend: row store, object storage and change feed.

The rest of the package talks to these three pieces only through the
methods below, so a hosted backend with the same surface can replace them.
Rows live in SQLite and are read and written with ``sqlstratum``
statements; files live under a directory served by the web app.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

from sqlstratum.runner import Runner

from tripdesk import queries
from tripdesk.db import get_runner, init_db

logger = logging.getLogger(__name__)

STORAGE_PUBLIC_PREFIX = "/storage/v1/object/public"

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_EVENTS = frozenset({INSERT, UPDATE, DELETE})


class BackendError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str
    record: Dict[str, object] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, events, callback: ChangeCallback, loop):
        self.feed = feed
        self.table = table
        self.events = frozenset(events)
        self.callback = callback
        self.loop = loop
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        return self.active and event.table == self.table and event.type in self.events

    def deliver(self, event: ChangeEvent) -> None:
        if self.loop is None:
            self._run(event)
            return
        try:
            self.loop.call_soon_threadsafe(self._run, event)
        except RuntimeError:
            logger.warning("Dropping subscription on %s: event loop is closed", self.table)
            self.unsubscribe()

    def _run(self, event: ChangeEvent) -> None:
        if self.active:
            self.callback(event)

    def unsubscribe(self) -> None:
        self.active = False
        self.feed._remove(self)


class ChangeFeed:
    """Per-table change notification.

    Callbacks run on the event loop that was running when they subscribed,
    whichever thread publishes the change.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, events=ALL_EVENTS, callback: Optional[ChangeCallback] = None) -> Subscription:
        if callback is None:
            raise ValueError("callback is required")
        unknown = set(events) - ALL_EVENTS
        if unknown:
            raise ValueError(f"unknown event types: {sorted(unknown)}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        sub = Subscription(self, table, events, callback, loop)
        with self._lock:
            self._subscriptions.append(sub)
        logger.debug("Subscribed to %s changes", table)
        return sub

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(event)]
        for sub in targets:
            sub.deliver(event)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for sub in self._subscriptions if table is None or sub.table == table)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)


class RowStore:
    def __init__(self, runner: Runner, feed: ChangeFeed):
        self.runner = runner
        self.feed = feed
        self._lock = threading.Lock()
        self._last_created: Optional[datetime] = None

    def _next_created_at(self) -> str:
        # created_at orders the lists, so keep it strictly increasing.
        now = datetime.now(timezone.utc)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now.isoformat(timespec="microseconds")

    def _fetch_by_id(self, table: str, row_id: str) -> Optional[Dict[str, object]]:
        row = self.runner.fetch_one(queries.select_row_by_id(table, row_id))
        return dict(row) if row is not None else None

    def insert(self, table: str, rows: Sequence[Mapping[str, object]]) -> List[Dict[str, object]]:
        created: List[Dict[str, object]] = []
        try:
            with self._lock:
                with self.runner.transaction():
                    for row in rows:
                        values = dict(row)
                        values["id"] = uuid.uuid4().hex
                        values["created_at"] = self._next_created_at()
                        self.runner.execute(queries.insert_row(table, values))
                        created.append(values)
                created = [self._fetch_by_id(table, str(values["id"])) or values for values in created]
        except (sqlite3.Error, queries.UnknownColumn) as exc:
            raise BackendError(_message(exc)) from exc
        for record in created:
            self.feed.publish(ChangeEvent(table, INSERT, record))
        return created

    def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, object]]:
        try:
            with self._lock:
                rows = self.runner.fetch_all(queries.select_rows(table, columns, order_by, descending))
        except (sqlite3.Error, queries.UnknownColumn) as exc:
            raise BackendError(_message(exc)) from exc
        return [dict(row) for row in rows]

    def update(self, table: str, patch: Mapping[str, object], match_id: str) -> List[Dict[str, object]]:
        try:
            with self._lock:
                with self.runner.transaction():
                    self.runner.execute(queries.update_row(table, match_id, patch))
                record = self._fetch_by_id(table, match_id)
        except (sqlite3.Error, queries.UnknownColumn) as exc:
            raise BackendError(_message(exc)) from exc
        if record is None:
            return []
        self.feed.publish(ChangeEvent(table, UPDATE, record))
        return [record]

    def subscribe(self, table: str, events=ALL_EVENTS, callback: Optional[ChangeCallback] = None) -> Subscription:
        if table not in queries.TABLES:
            raise BackendError(f'relation "{table}" does not exist')
        return self.feed.subscribe(table, events, callback)


class ObjectStorage:
    def __init__(self, root_dir: str, public_base_url: str):
        self.root = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        if not target.is_relative_to((self.root / bucket).resolve()):
            raise BackendError("Invalid key")
        return target

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        # content_type and cache_control mirror the hosted storage API; the
        # static file mount picks both headers when serving.
        target = self._resolve(bucket, path)
        if target.exists() and not upsert:
            raise BackendError("The resource already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise BackendError(f"Upload failed: {exc.strerror or exc}") from exc
        logger.info("Stored %s/%s (%s, %d bytes)", bucket, path, content_type, len(data))
        return f"{bucket}/{path}"

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}{STORAGE_PUBLIC_PREFIX}/{quote(bucket)}/{quote(path)}"


class Backend:
    """Handle bundling the row store, object storage and change feed.

    Built once at startup by :func:`connect_backend` and closed on shutdown.
    """

    def __init__(self, url: str, api_key: str, runner: Runner, storage_dir: str):
        if not url or not api_key:
            raise BackendError("Backend URL and API key are required")
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.feed = ChangeFeed()
        self.rows = RowStore(runner, self.feed)
        self.storage = ObjectStorage(storage_dir, self.url)

    def __repr__(self) -> str:
        return f"<Backend url={self.url!r} key={self.api_key[:4]}…>"

    def close(self) -> None:
        self.rows.runner.connection.close()


def connect_backend(config) -> Backend:
    init_db(config.DB_PATH)
    runner = get_runner(config.DB_PATH)
    backend = Backend(config.BACKEND_URL, config.BACKEND_KEY, runner, config.STORAGE_DIR)
    logger.info("Connected %r", backend)
    return backend


def _message(exc: Exception) -> str:
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)
