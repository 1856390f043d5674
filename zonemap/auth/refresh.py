from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from zonemap.common.logging import log_event

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Periodic background refresh on a daemon thread.

    - Waits on an Event, so `cancel()` takes effect immediately (no sleeping through it).
    - Stops on its own once `should_continue()` returns False.
    - `tick` failures are logged; the loop re-checks `should_continue()` afterwards.
    """

    def __init__(
        self,
        *,
        period_s: float,
        tick: Callable[[], None],
        should_continue: Callable[[], bool],
        name: str = "token-refresh",
    ) -> None:
        if period_s <= 0:
            raise ValueError(f"period_s must be positive, got {period_s}")
        self._period_s = float(period_s)
        self._tick = tick
        self._should_continue = should_continue
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> "RefreshScheduler":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        log_event(logger, "token.refresh.scheduled", period_s=self._period_s)
        return self

    def cancel(self, *, timeout_s: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        # A tick may sign out (and so cancel) from the timer thread itself.
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout_s)

    def _run(self) -> None:
        while not self._stop.wait(timeout=self._period_s):
            if not self._should_continue():
                break
            try:
                self._tick()
            except Exception:
                log_event(logger, "token.refresh.tick_failed", severity="WARNING", exc_info=True)
        self._stop.set()
        log_event(logger, "token.refresh.stopped")

    def __enter__(self) -> "RefreshScheduler":
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.cancel()
