"""CommandQueue: the single writer all tree mutations run on."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandQueue:
    """Serializes work on one worker thread, in submission order.

    Work submitted from the worker thread itself runs inline, so a command
    may call back into the engine without deadlocking.
    """

    def __init__(self, name: str = "tabforest-writer") -> None:
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._worker_ident: int | None = None
        self._submit_lock = threading.Lock()
        self._closed = False

    def _run(self, fn: Callable[..., T], args: tuple, kwargs: dict) -> T:
        self._worker_ident = threading.get_ident()
        return fn(*args, **kwargs)

    def on_worker(self) -> bool:
        return self._worker_ident == threading.get_ident()

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future:
        """Queue fn and return a Future for its result."""
        if self.on_worker():
            future: Future = Future()
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)
            return future
        with self._submit_lock:
            if self._closed:
                raise RuntimeError("CommandQueue is shut down")
            return self._pool.submit(self._run, fn, args, kwargs)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run fn on the writer and block for its result; errors propagate."""
        return self.submit(fn, *args, **kwargs).result()

    def drain(self) -> None:
        """Block until everything submitted so far has run."""
        if self.on_worker() or self._closed:
            return
        self.call(lambda: None)

    def shutdown(self, wait: bool = True) -> None:
        with self._submit_lock:
            self._closed = True
        self._pool.shutdown(wait=wait)
