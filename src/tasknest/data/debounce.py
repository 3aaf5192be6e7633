import threading
from typing import Any, Callable, Dict, Optional

from tasknest.logs import get_logger

log = get_logger("data.debounce")

class Debouncer:
    """
    Coalesce rapid calls into one deferred action.

    Each call merges its partial into the pending one (later keys win), then
    cancels the scheduled timer and starts a new one. The action runs once,
    with the merged partial, after `delay` seconds without calls.
    """

    def __init__(self, delay: float, action: Callable[[Dict[str, Any]], Any],
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.delay = delay
        self._action = action
        self._on_error = on_error
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._pending: Dict[str, Any] = {}

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def call(self, partial: Dict[str, Any]):
        with self._lock:
            self._pending.update(partial)
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(self.delay, self._fire, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()

    def _take(self) -> Dict[str, Any]:
        # caller holds the lock
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        pending, self._pending = self._pending, {}
        return pending

    def _fire(self, generation: int):
        with self._lock:
            # a newer call rescheduled us
            if generation != self._generation or self._timer is None:
                return
            pending = self._take()

        try:
            self._action(pending)
        except Exception as e:
            if self._on_error is None:
                raise
            self._on_error(e)

    def flush(self) -> bool:
        """Run the pending action now. Errors propagate to the caller."""
        with self._lock:
            if self._timer is None:
                return False
            pending = self._take()
        self._action(pending)
        return True

    def cancel(self) -> bool:
        """Drop the pending action without running it."""
        with self._lock:
            had_pending = self._timer is not None
            self._take()
            return had_pending
