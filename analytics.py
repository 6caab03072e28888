"""MongoDB analytics mirror for classification attempts.

The mirror is a coarse behavioral signal, not a ledger: events are handed to a
background thread and written best-effort. A failed write is logged and the
event dropped; nothing is retried and nothing is reported back to the caller.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from models import AnalyticsEvent

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "logpartidas"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MongoRepository:
    def __init__(self, uri: str, database: str, timeout_ms: int = 5000):
        self.client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        self.db: Database = self.client[database]
        self.events: Collection = self.db[EVENTS_COLLECTION]

    def ping(self) -> bool:
        self.client.admin.command("ping")
        return True

    def insert_event(self, event: AnalyticsEvent) -> None:
        self.events.insert_one(event.to_document())

    def close(self) -> None:
        self.client.close()


# ---------------------------------------------------------------------------
# Background mirror
# ---------------------------------------------------------------------------


_STOP = object()


class MirrorWorker:
    """One-way channel from request handlers to the analytics store.

    ``sink`` is anything with an ``insert_event(event)`` method, normally a
    :class:`MongoRepository`.
    """

    def __init__(self, sink: Any, name: str = "analytics-mirror"):
        self.sink = sink
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def submit(self, event: AnalyticsEvent) -> None:
        with self._lock:
            if not self._closed.is_set():
                self._queue.put_nowait(event)
                return
        logger.warning("mirror closed, dropping event for usuario %s", event.usuario_id)

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._write(event)
            finally:
                self._queue.task_done()

    def _write(self, event: AnalyticsEvent) -> None:
        try:
            self.sink.insert_event(event)
        except Exception:
            logger.exception(
                "analytics mirror write failed, dropping event (usuario=%s residuo=%s)",
                event.usuario_id,
                event.residuo_id,
            )

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop accepting events, drain what is queued and join the thread."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            # nothing can be queued behind the sentinel
            self._queue.put_nowait(_STOP)
        self._thread.join(timeout)
