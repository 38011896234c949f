from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger("planledger.worker")

_STOP = object()


class BackgroundWorker:
    """Fixed pool of threads draining a bounded task queue.

    ``submit`` never blocks the caller: when the queue is full or the worker is
    stopping, the task is dropped and ``False`` is returned.
    """

    def __init__(self, max_queue: int = 256, workers: int = 2, name: str = "reconcile") -> None:
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_queue)
        self._workers = workers
        self._name = name
        self._threads: list[threading.Thread] = []
        self._accepting = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._accepting

    def start(self) -> None:
        with self._lock:
            if self._accepting:
                return
            self._threads = [
                threading.Thread(target=self._run, name=f"{self._name}-{i}", daemon=True)
                for i in range(self._workers)
            ]
            for thread in self._threads:
                thread.start()
            self._accepting = True

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
        if not self._accepting:
            logger.warning("Worker %s is not running; dropped %s.", self._name, fn.__name__)
            return False
        try:
            self._queue.put_nowait((fn, args, kwargs))
        except queue.Full:
            logger.warning("Worker %s queue is full; dropped %s.", self._name, fn.__name__)
            return False
        return True

    def join(self) -> None:
        """Block until every task submitted so far has run."""
        self._queue.join()

    def stop(self, drain: bool = True, timeout: float | None = 10.0) -> None:
        with self._lock:
            if not self._accepting:
                return
            self._accepting = False
        if not drain:
            self._discard_pending()
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return
            self._queue.task_done()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args, kwargs = item
                try:
                    fn(*args, **kwargs)
                except Exception:
                    logger.exception("Background task %s failed.", getattr(fn, "__name__", fn))
            finally:
                self._queue.task_done()
