from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


TickCallback = Callable[[int], None]
ExpireCallback = Callable[[], None]


class PhaseClock:
    """One-second countdown for a single phase, pumped from the event loop.

    - ``update()`` is polled every frame; it never sleeps.
    - ``on_tick(remaining)`` fires once per elapsed whole second (including 0).
    - ``on_expire()`` fires exactly once when the count reaches zero.
    - Every start/cancel bumps ``generation``; callbacks only fire while the
      generation they were started under is still current.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._generation = 0
        self._active = False
        self._duration_s = 0
        self._started_at_s = 0.0
        self._ticks = 0
        self._on_tick: TickCallback | None = None
        self._on_expire: ExpireCallback | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active(self) -> bool:
        return self._active

    @property
    def duration_s(self) -> int:
        return self._duration_s

    @property
    def started_at_s(self) -> float:
        return self._started_at_s

    @property
    def deadline_s(self) -> float:
        return self._started_at_s + float(self._duration_s)

    def seconds_remaining(self) -> int:
        if not self._active:
            return 0
        return self._duration_s - self._ticks

    def seconds_consumed(self) -> int:
        return self._ticks

    def start(
        self,
        duration_s: int,
        on_tick: TickCallback | None,
        on_expire: ExpireCallback,
        *,
        started_at_s: float | None = None,
    ) -> int:
        if isinstance(duration_s, bool) or int(duration_s) != duration_s or duration_s <= 0:
            raise ValueError("duration_s must be a positive whole number of seconds")

        self.cancel()
        self._generation += 1
        self._active = True
        self._duration_s = int(duration_s)
        self._started_at_s = self._clock.now() if started_at_s is None else float(started_at_s)
        self._ticks = 0
        self._on_tick = on_tick
        self._on_expire = on_expire
        return self._generation

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._generation += 1
        self._on_tick = None
        self._on_expire = None

    def update(self) -> None:
        delivered = 0
        while self._active:
            gen = self._generation
            due_at = self._started_at_s + float(self._ticks + 1)
            if self._clock.now() < due_at:
                break

            self._ticks += 1
            delivered += 1
            remaining = self._duration_s - self._ticks

            on_tick = self._on_tick
            if on_tick is not None:
                on_tick(remaining)
            if gen != self._generation:
                # Cancelled or restarted from inside the tick callback.
                continue

            if remaining > 0:
                continue

            on_expire = self._on_expire
            self._active = False
            self._on_tick = None
            self._on_expire = None
            if on_expire is not None:
                on_expire()

        if delivered > 1:
            logger.warning("ClockDriftRisk: %d ticks delivered in one update", delivered)
