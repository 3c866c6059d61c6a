"""Fixed-window attempt counters for login, registration and token refresh.

Counters are keyed by ``(action, key)`` where ``key`` is a user identity or a
client network address. A key is blocked once ``limit`` attempts have been
recorded inside the current window, and opens again when the window ends,
whatever happened in between.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import math
import threading
import time

from app.config import Settings

logger = logging.getLogger(__name__)

LOGIN = "login"
REFRESH = "refresh"
CHANGE_PASSWORD = "change_password"
REGISTER = "register"


@dataclass(frozen=True)
class CounterState:
    count: int
    expires_at: float


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int = 0


class CounterStore(ABC):
    """Storage for windowed counters. Implementations must make ``increment`` atomic."""

    @abstractmethod
    def increment(self, key: str, window_seconds: int, now: float) -> CounterState:
        """Add one attempt, opening a new window if the old one has ended."""

    @abstractmethod
    def get(self, key: str, now: float) -> CounterState | None:
        """Return the live counter for ``key``, or None if there is none."""

    @abstractmethod
    def decrement(self, key: str, now: float) -> CounterState | None:
        """Take back one attempt from a live window; never goes below zero."""

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget ``key``."""


class InMemoryCounterStore(CounterStore):
    """Process-local store for single-instance deployments."""

    def __init__(self):
        self._counters: dict[str, CounterState] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, window_seconds: int, now: float) -> CounterState:
        with self._lock:
            state = self._counters.get(key)
            if state is None or state.expires_at <= now:
                state = CounterState(count=1, expires_at=now + window_seconds)
            else:
                state = CounterState(count=state.count + 1, expires_at=state.expires_at)
            self._counters[key] = state
            self._prune(now)
            return state

    def get(self, key: str, now: float) -> CounterState | None:
        with self._lock:
            state = self._counters.get(key)
            if state is None:
                return None
            if state.expires_at <= now:
                del self._counters[key]
                return None
            return state

    def decrement(self, key: str, now: float) -> CounterState | None:
        with self._lock:
            state = self._counters.get(key)
            if state is None or state.expires_at <= now:
                return None
            state = CounterState(count=max(0, state.count - 1), expires_at=state.expires_at)
            self._counters[key] = state
            return state

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def _prune(self, now: float) -> None:
        # Caller holds the lock.
        if len(self._counters) < 10_000:
            return
        expired = [key for key, state in self._counters.items() if state.expires_at <= now]
        for key in expired:
            del self._counters[key]


def rate_limit_key(subject_id: str | None = None, address: str | None = None) -> str:
    """Key by subject when known, otherwise by network address."""
    if subject_id:
        return f"user:{subject_id}"
    return f"ip:{address or 'unknown'}"


def default_policies(settings: Settings) -> dict[str, RateLimitPolicy]:
    login_family = RateLimitPolicy(
        limit=settings.login_rate_limit_attempts,
        window_seconds=settings.login_rate_limit_window_seconds,
    )
    return {
        LOGIN: login_family,
        REFRESH: login_family,
        CHANGE_PASSWORD: login_family,
        REGISTER: RateLimitPolicy(
            limit=settings.register_rate_limit_attempts,
            window_seconds=settings.register_rate_limit_window_seconds,
        ),
    }


class RateLimiter:
    """Applies per-action policies on top of a counter store."""

    def __init__(self, store: CounterStore, policies: dict[str, RateLimitPolicy], clock=time.time):
        self.store = store
        self.policies = policies
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, store: CounterStore | None = None) -> "RateLimiter":
        return cls(store or InMemoryCounterStore(), default_policies(settings))

    def _policy(self, action: str) -> RateLimitPolicy:
        try:
            return self.policies[action]
        except KeyError:
            raise ValueError(f"No rate limit policy for action '{action}'") from None

    @staticmethod
    def _counter_key(action: str, key: str) -> str:
        return f"{action}:{key}"

    @staticmethod
    def _retry_after(state: CounterState, now: float) -> int:
        return max(1, math.ceil(state.expires_at - now))

    def check(self, action: str, key: str) -> RateLimitDecision:
        """Report whether ``key`` may attempt ``action`` without recording anything."""
        policy = self._policy(action)
        now = self.clock()
        state = self.store.get(self._counter_key(action, key), now)
        if state is None:
            return RateLimitDecision(allowed=True, count=0)
        if state.count >= policy.limit:
            return RateLimitDecision(allowed=False, count=state.count, retry_after=self._retry_after(state, now))
        return RateLimitDecision(allowed=True, count=state.count)

    def hit(self, action: str, key: str) -> RateLimitDecision:
        """Record one attempt; the decision says whether that attempt was within the limit."""
        policy = self._policy(action)
        now = self.clock()
        state = self.store.increment(self._counter_key(action, key), policy.window_seconds, now)
        if state.count > policy.limit:
            logger.warning(f"Rate limit exceeded for {action} ({state.count} attempts in window)")
            return RateLimitDecision(allowed=False, count=state.count, retry_after=self._retry_after(state, now))
        return RateLimitDecision(allowed=True, count=state.count)

    def release(self, action: str, key: str) -> None:
        """Undo one attempt recorded by :meth:`hit` that turned out not to count."""
        self._policy(action)
        self.store.decrement(self._counter_key(action, key), self.clock())

    def reset(self, action: str, key: str) -> None:
        self.store.reset(self._counter_key(action, key))
