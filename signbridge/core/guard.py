"""
Per-card concurrency guard.

Webhook retries, double clicks and slow upstream calls all produce repeated
deliveries for the same card. The guard lets exactly one run per card hold a
lock, releases that lock automatically after a timeout (so a crashed run
cannot wedge a card forever) and remembers recent successes for the cooldown
window used by the fallback trigger path.

State is process-local. Running several instances needs a guard backed by a
shared store that implements the same :class:`ConcurrencyGuard` protocol.
"""

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Protocol

from signbridge.shared.logging import get_logger

logger = get_logger("signbridge.guard")

DEFAULT_LOCK_TIMEOUT = 30.0
DEFAULT_COOLDOWN = 180.0


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock plus delayed callbacks; swapped for virtual time in tests."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class _NullHandle:
    def cancel(self) -> None:
        pass


class LoopScheduler:
    """Monotonic clock and the running asyncio loop's timers."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: expiry is still enforced lazily through the deadline.
            return _NullHandle()
        return loop.call_later(delay, callback)


class ConcurrencyGuard(Protocol):
    """
    ``try_acquire`` returns an opaque lock token, or None when the card is
    busy. Passing that token to ``release`` frees only the lock it names, so a
    run whose lock already expired cannot free a newer run's lock.
    """

    def try_acquire(self, card_id: str) -> object | None: ...

    def release(self, card_id: str, token: object | None = None) -> None: ...

    def record_success(self, card_id: str) -> None: ...

    def cooldown_active(self, card_id: str) -> bool: ...


@dataclass
class _Lock:
    deadline: float
    handle: TimerHandle


class InMemoryConcurrencyGuard:
    """Single-instance guard keeping locks and success timestamps in dicts."""

    def __init__(
        self,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        cooldown: float = DEFAULT_COOLDOWN,
        scheduler: Scheduler | None = None,
    ):
        self.lock_timeout = lock_timeout
        self.cooldown = cooldown
        self._scheduler = scheduler or LoopScheduler()
        self._locks: dict[str, _Lock] = {}
        self._successes: dict[str, float] = {}

    def try_acquire(self, card_id: str) -> _Lock | None:
        now = self._scheduler.now()
        held = self._locks.get(card_id)
        if held is not None:
            if held.deadline > now:
                return None
            held.handle.cancel()

        lock = _Lock(deadline=now + self.lock_timeout, handle=_NullHandle())
        self._locks[card_id] = lock
        lock.handle = self._scheduler.call_later(
            self.lock_timeout, partial(self._expire, card_id, lock)
        )
        return lock

    def release(self, card_id: str, token: object | None = None) -> None:
        lock = self._locks.get(card_id)
        if lock is None or (token is not None and lock is not token):
            return
        del self._locks[card_id]
        lock.handle.cancel()

    def is_locked(self, card_id: str) -> bool:
        lock = self._locks.get(card_id)
        return lock is not None and lock.deadline > self._scheduler.now()

    def record_success(self, card_id: str) -> None:
        now = self._scheduler.now()
        self._successes[card_id] = now
        self._prune(now)

    def cooldown_active(self, card_id: str) -> bool:
        recorded = self._successes.get(card_id)
        if recorded is None:
            return False
        if self._scheduler.now() - recorded < self.cooldown:
            return True
        del self._successes[card_id]
        return False

    def _expire(self, card_id: str, lock: _Lock) -> None:
        # Only drop the lock this timer was created for.
        if self._locks.get(card_id) is lock:
            del self._locks[card_id]
            logger.warning(
                f"Lock for card {card_id} expired after {self.lock_timeout:.0f}s",
                extra={"card_id": card_id, "action": "lock_expired"},
            )

    def _prune(self, now: float) -> None:
        expired = [cid for cid, ts in self._successes.items() if now - ts >= self.cooldown]
        for cid in expired:
            del self._successes[cid]
