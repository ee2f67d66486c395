from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

STATISTICS_CHANGED = "statistics-changed"

Listener = Callable[[], None]


class EventBus:
    """Coalescing notifier for the single "statistics changed" signal.

    At most one dispatch happens per `coalesce_seconds`; notifications that
    arrive inside that interval collapse into one trailing dispatch.
    """

    def __init__(self, log, coalesce_seconds: float = 0.5, clock: Callable[[], float] = time.monotonic):
        self._logger = log
        self._coalesce_seconds = coalesce_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._last_dispatch: Optional[float] = None
        self._trailing: Optional[threading.Timer] = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        with self._lock:
            now = self._clock()
            if self._last_dispatch is None or now - self._last_dispatch >= self._coalesce_seconds:
                self._last_dispatch = now
                dispatch_now = True
            else:
                dispatch_now = False
                if self._trailing is None:
                    delay = self._coalesce_seconds - (now - self._last_dispatch)
                    self._trailing = threading.Timer(delay, self._flush)
                    self._trailing.daemon = True
                    self._trailing.start()
        if dispatch_now:
            self._dispatch()

    def close(self) -> None:
        with self._lock:
            if self._trailing is not None:
                self._trailing.cancel()
                self._trailing = None

    def _flush(self) -> None:
        with self._lock:
            self._trailing = None
            self._last_dispatch = self._clock()
        self._dispatch()

    def _dispatch(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception as exc:
                self._logger.warning("Listener for %s failed: %s", STATISTICS_CHANGED, exc)
