"""Liveness-gated background polling.

Two pieces:

- :class:`LivenessGate` records keep-alive signals from the host and
  answers whether anyone is still consuming inventory.  The paused
  state is always derived from the last keep-alive, never stored.
- :class:`PollingScheduler` runs one daemon thread that, every tick,
  polls the inventory when the gate is open and the cooldown deadline
  has passed, then waits out the cooldown.

All waiting goes through ``threading.Event.wait`` on the stop event,
so :meth:`PollingScheduler.stop` is observed within one tick even in
the middle of a cooldown.  Deadlines are compared against the
injected clock; waits are never summed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from bsnbridge._clock import ClockPort

logger = logging.getLogger(__name__)

DEFAULT_KEEP_ALIVE_WINDOW = 180.0
DEFAULT_COOLDOWN = 30.0
DEFAULT_TICK = 0.5
DEFAULT_COOLDOWN_STEP = 1.0


class LivenessGate:
    """Pause background work when no keep-alive arrived recently.

    Paused until the first :meth:`notify_alive`; open for *window*
    seconds after each call.
    """

    def __init__(
        self,
        clock: ClockPort,
        window: float = DEFAULT_KEEP_ALIVE_WINDOW,
    ) -> None:
        self._clock = clock
        self._window = window
        self._last_keep_alive_at: float | None = None
        self._lock = threading.Lock()

    @property
    def last_keep_alive_at(self) -> float | None:
        with self._lock:
            return self._last_keep_alive_at

    def notify_alive(self) -> None:
        with self._lock:
            self._last_keep_alive_at = self._clock.now()

    def is_paused(self) -> bool:
        with self._lock:
            last = self._last_keep_alive_at
        return last is None or self._clock.now() > last + self._window

    def reset(self) -> None:
        with self._lock:
            self._last_keep_alive_at = None


class PollingScheduler:
    """Run *poll* on a daemon thread, gated by liveness and a cooldown.

    Loop, per tick:

    1. wait ``tick`` seconds (returns early on stop);
    2. skip the tick while the gate is paused;
    3. if the cooldown deadline has passed, run *poll* and set the
       next deadline to ``now + cooldown``;
    4. wait until the deadline in ``cooldown_step`` slices.

    Exceptions escaping *poll* are logged; the loop keeps running.
    """

    def __init__(
        self,
        poll: Callable[[], object],
        gate: LivenessGate,
        clock: ClockPort,
        *,
        cooldown: float = DEFAULT_COOLDOWN,
        tick: float = DEFAULT_TICK,
        cooldown_step: float = DEFAULT_COOLDOWN_STEP,
        name: str = "bsnbridge-poller",
    ) -> None:
        self._poll = poll
        self._gate = gate
        self._clock = clock
        self._cooldown = cooldown
        self._tick = tick
        self._cooldown_step = cooldown_step
        self._name = name

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._next_poll_at: float | None = None
        self._in_flight = False
        self._poll_count = 0

    # -- State --------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def next_poll_at(self) -> float | None:
        with self._lock:
            return self._next_poll_at

    @property
    def poll_count(self) -> int:
        with self._lock:
            return self._poll_count

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Start the loop thread.  No-op while already running."""
        if self.is_running:
            logger.debug("PollingScheduler.start() called while already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit, join it and reset the cooldown.

        Idempotent.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        with self._lock:
            self._next_poll_at = None

    # -- Loop ---------------------------------------------------------------

    def run_once(self) -> bool:
        """Run one loop iteration without waiting.

        Returns:
            Whether a poll ran.
        """
        if self._gate.is_paused():
            return False
        with self._lock:
            due = self._next_poll_at is None or self._clock.now() >= self._next_poll_at
            if not due or self._in_flight:
                return False
            self._in_flight = True
        try:
            self._poll()
        except Exception:
            logger.exception("Inventory poll raised; continuing")
        finally:
            with self._lock:
                self._in_flight = False
                self._poll_count += 1
                self._next_poll_at = self._clock.now() + self._cooldown
        return True

    def _run(self) -> None:
        logger.info("Polling loop started")
        while not self._stop_event.wait(self._tick):
            self.run_once()
            self._wait_for_cooldown()
        logger.info("Polling loop stopped")

    def _wait_for_cooldown(self) -> None:
        while not self._stop_event.is_set():
            with self._lock:
                deadline = self._next_poll_at
            if deadline is None:
                return
            remaining = deadline - self._clock.now()
            if remaining <= 0:
                return
            self._stop_event.wait(min(self._cooldown_step, remaining))
