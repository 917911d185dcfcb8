"""Projection runner — one consumer thread per contract stream.

Streams do not share tasks or disputes, so they can be projected in
parallel; within a stream a single FIFO queue keeps chain order. Shared
users are protected by the store and the router's per-entity locks.

A StoreIOError, or any other unexpected error, stops the failing
stream's worker (later events of that stream stay unapplied and its
checkpoint stays put); the error is re-raised from ``drain`` or ``stop``
so the caller can retry or exit. A stopped runner can be started again.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Iterable, Optional

from taskgraph.errors import StoreIOError
from taskgraph.identity import normalize_address
from taskgraph.models.events import ChainEvent
from taskgraph.router import EventRouter, ReplayStats

logger = logging.getLogger(__name__)

_STOP = object()


class _StreamWorker:
    def __init__(self, stream: str, router: EventRouter, stats: ReplayStats,
                 stats_lock: threading.Lock) -> None:
        self.stream = stream
        self.queue: queue.Queue = queue.Queue()
        self.error: Optional[Exception] = None
        self._router = router
        self._stats = stats
        self._stats_lock = stats_lock
        self.thread = self._new_thread()

    def _new_thread(self) -> threading.Thread:
        return threading.Thread(
            target=self._run, name=f"taskgraph-{self.stream[:10]}", daemon=True
        )

    def start(self) -> None:
        """Start the consumer, replacing a thread that has already exited."""
        if self.thread.is_alive():
            return
        if self.thread.ident is not None:
            self.thread = self._new_thread()
            self.error = None
        self.thread.start()

    def _run(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is _STOP:
                    return
                if self.error is not None:
                    continue
                outcome = self._router.ingest(item)
                with self._stats_lock:
                    self._stats.record(outcome)
            except StoreIOError as exc:
                logger.error("Stream %s halted: %s", self.stream, exc)
                self.error = exc
            except Exception as exc:
                logger.exception("Stream %s halted on %s", self.stream, item.event_id)
                self.error = exc
            finally:
                self.queue.task_done()


class ProjectionRunner:
    """Feeds events to the router on one worker thread per stream.

    Usage:
        runner = ProjectionRunner(router)
        runner.start()
        runner.submit_all(events)
        runner.drain()      # wait, flush the snapshot
        runner.stop()
    """

    def __init__(self, router: EventRouter) -> None:
        self._router = router
        self._workers: dict[str, _StreamWorker] = {}
        self._guard = threading.Lock()
        self._stats = ReplayStats()
        self._stats_lock = threading.Lock()
        self._started = False

    @property
    def stats(self) -> ReplayStats:
        with self._stats_lock:
            return ReplayStats(**vars(self._stats))

    @property
    def streams(self) -> list[str]:
        with self._guard:
            return sorted(self._workers)

    def start(self) -> None:
        with self._guard:
            self._started = True
            for worker in self._workers.values():
                worker.start()

    def submit(self, event: ChainEvent) -> None:
        """Queue an event on its stream. Order of submission is preserved."""
        self._worker_for(normalize_address(event.contract_address)).queue.put(event)

    def submit_all(self, events: Iterable[ChainEvent]) -> None:
        for event in events:
            self.submit(event)

    def drain(self) -> None:
        """Block until every queued event is processed, then flush the store."""
        with self._guard:
            if not self._started:
                raise RuntimeError("ProjectionRunner.drain() called before start()")
            workers = list(self._workers.values())
        for worker in workers:
            worker.queue.join()
        self._raise_first_error(workers)
        self._router.store.flush()

    def stop(self) -> None:
        """Stop all workers after their queues empty."""
        with self._guard:
            workers = list(self._workers.values())
            self._started = False
        for worker in workers:
            if worker.thread.is_alive():
                worker.queue.put(_STOP)
        for worker in workers:
            if worker.thread.is_alive():
                worker.thread.join()
        self._raise_first_error(workers)

    def _worker_for(self, stream: str) -> _StreamWorker:
        with self._guard:
            worker = self._workers.get(stream)
            if worker is None:
                worker = _StreamWorker(stream, self._router, self._stats, self._stats_lock)
                self._workers[stream] = worker
                if self._started:
                    worker.start()
            return worker

    @staticmethod
    def _raise_first_error(workers: list[_StreamWorker]) -> None:
        for worker in workers:
            if worker.error is not None:
                raise worker.error
