from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


def _thread_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


class DebouncedSearch:
    """Debounced, rate-limited search-as-you-type.

    `handle` restarts the debounce timer on every keystroke. When it fires,
    queries shorter than `min_query_length` or equal to the last executed
    query are skipped, and a query arriving within `rate_limit` seconds of the
    previous search is deferred until the window has passed. `cancel` drops
    whatever is pending; call it on teardown.
    """

    def __init__(
        self,
        search_fn: Callable[[str], Any],
        debounce: float = 0.5,
        min_query_length: int = 2,
        rate_limit: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = _thread_timer,
    ) -> None:
        self.search_fn = search_fn
        self.debounce = debounce
        self.min_query_length = min_query_length
        self.rate_limit = rate_limit
        self._clock = clock
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None
        self._pending: Optional[str] = None
        self._latest: Optional[str] = None
        self._last_search_time: Optional[float] = None
        self.last_query = ""
        self.is_loading = False

    def handle(self, query: str) -> None:
        if len(query.strip()) < self.min_query_length:
            return
        with self._lock:
            self._latest = query
            self._cancel_timer()
            self._timer = self._timer_factory(self.debounce, lambda: self.execute(query))

    def execute(self, query: str) -> None:
        if len(query.strip()) < self.min_query_length:
            return
        if query == self.last_query:
            self.is_loading = False
            return

        with self._lock:
            if self._last_search_time is not None:
                elapsed = self._clock() - self._last_search_time
                if elapsed < self.rate_limit:
                    self._pending = query
                    self._cancel_timer()
                    self._timer = self._timer_factory(self.rate_limit - elapsed, self._run_pending)
                    return

        self._run(query)

    def _run(self, query: str) -> None:
        self.is_loading = True
        try:
            self.search_fn(query)
            self._last_search_time = self._clock()
            self.last_query = query
        finally:
            self.is_loading = False

    def _run_pending(self) -> None:
        with self._lock:
            query, self._pending = self._pending, None
        if query:
            self.execute(query)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> None:
        """Run the newest query now, skipping the debounce and rate-limit waits."""
        with self._lock:
            self._cancel_timer()
            query = self._latest or self._pending
            self._pending = self._latest = None
        if query and query != self.last_query:
            self._run(query)

    def cancel(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._pending = self._latest = None
