"""
Single-flight cache for slow, side-effecting background work.

Repeated or concurrent clicks on the same link must not send the same mail
twice, and repeated reputation page loads must not probe the same host over
and over. Callers ask for a key; the first caller starts the producer, every
other caller observes the same Running/Done/Failed outcome, and a human
facing flow consumes the terminal outcome once it has been shown.

State transitions per key:
    (absent) -> RUNNING -> DONE | FAILED -> (absent, after consume)

All access to the backing map goes through get_or_start/observe/wait/consume.
Producers run as asyncio tasks, bounded by a semaphore and a hard timeout so
no key can stay RUNNING forever.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Producer = Callable[[], Awaitable[T]]


class OutcomeState(str, Enum):
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Observation(Generic[T]):
    """Immutable snapshot of the outcome for a key."""

    key: str
    state: OutcomeState
    value: T | None = None
    error: BaseException | None = None
    started_at: float = 0.0
    finished_at: float | None = None

    @property
    def terminal(self) -> bool:
        return self.state is not OutcomeState.RUNNING

    @property
    def succeeded(self) -> bool:
        return self.state is OutcomeState.DONE


@dataclass
class _PendingOutcome(Generic[T]):
    key: str
    state: OutcomeState = OutcomeState.RUNNING
    value: T | None = None
    error: BaseException | None = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None

    def complete(self, value: T) -> None:
        if self.state is not OutcomeState.RUNNING:
            return
        self.value = value
        self.state = OutcomeState.DONE
        self.finished_at = time.monotonic()
        self.finished.set()

    def fail(self, error: BaseException) -> None:
        if self.state is not OutcomeState.RUNNING:
            return
        self.error = error
        self.state = OutcomeState.FAILED
        self.finished_at = time.monotonic()
        self.finished.set()

    def snapshot(self) -> Observation[T]:
        return Observation(
            key=self.key,
            state=self.state,
            value=self.value,
            error=self.error,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class SingleFlightAsyncCache(Generic[T]):
    """
    Keyed cache that runs at most one producer per key.

    Guarantees:
    - At most one producer runs per key at any time
    - Every caller for a key sees the same outcome
    - Outcomes only move forward (RUNNING -> DONE | FAILED)

    Does NOT:
    - Keep outcomes forever (consume, or TTL purge, removes them)
    - Retry failed producers (a new get_or_start after consume does)
    """

    def __init__(
        self,
        name: str,
        max_concurrency: int = 16,
        timeout_seconds: float = 60.0,
        result_ttl_seconds: float = 3600.0,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self.name = name
        self._timeout = timeout_seconds
        self._result_ttl = result_ttl_seconds
        self._entries: dict[str, _PendingOutcome[T]] = {}
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def get_or_start(self, key: str, producer: Producer[T]) -> Observation[T]:
        """
        Return the outcome for key, starting producer if no entry exists.

        Args:
            key: Deduplication key (ticket string, IP address, ...)
            producer: Zero-argument coroutine factory, invoked at most once

        Returns:
            Observation: RUNNING for a fresh or in-flight entry, otherwise the
            terminal outcome (producer is not re-run)
        """
        async with self._lock:
            self._purge_expired_locked()

            entry = self._entries.get(key)
            if entry is not None:
                return entry.snapshot()

            entry = _PendingOutcome(key=key)
            self._entries[key] = entry
            entry.task = asyncio.create_task(
                self._run(entry, producer), name=f"{self.name}:{key[:32]}"
            )

        logger.debug("Single-flight producer started", cache=self.name, key=key[:32])
        return entry.snapshot()

    async def observe(self, key: str) -> Observation[T] | None:
        """Return the current outcome for key without side effects."""
        async with self._lock:
            entry = self._entries.get(key)
            return entry.snapshot() if entry is not None else None

    async def wait(self, key: str, timeout: float) -> Observation[T] | None:
        """
        Wait up to timeout seconds for key to reach a terminal state.

        Returns:
            Observation: The outcome at the end of the wait (RUNNING if the
            producer is still busy), or None if no entry exists
        """
        async with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.state is OutcomeState.RUNNING and timeout > 0:
            try:
                await asyncio.wait_for(entry.finished.wait(), timeout=timeout)
            except TimeoutError:
                pass

        return entry.snapshot()

    async def consume(self, key: str) -> Observation[T] | None:
        """
        Remove and return a terminal outcome.

        Running entries are left in place and None is returned, as it is for
        absent keys. After a successful consume the key behaves as if it was
        never seen, so the next get_or_start runs a fresh producer.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.state is OutcomeState.RUNNING:
                return None
            del self._entries[key]
            return entry.snapshot()

    async def purge_expired(self) -> int:
        async with self._lock:
            return self._purge_expired_locked()

    def _purge_expired_locked(self) -> int:
        cutoff = time.monotonic() - self._result_ttl
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.finished_at is not None and entry.finished_at < cutoff
        ]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info("Purged unconsumed outcomes", cache=self.name, count=len(expired))
        return len(expired)

    async def snapshot(self) -> dict[str, Any]:
        """Counts per state, for health reporting."""
        async with self._lock:
            counts = {state.value: 0 for state in OutcomeState}
            for entry in self._entries.values():
                counts[entry.state.value] += 1
            return {"cache": self.name, "entries": len(self._entries), **counts}

    async def close(self) -> None:
        """Cancel running producers (application shutdown)."""
        async with self._lock:
            tasks = [
                entry.task
                for entry in self._entries.values()
                if entry.task is not None and not entry.task.done()
            ]
            self._entries.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled running producers", cache=self.name, count=len(tasks))

    async def _run(self, entry: _PendingOutcome[T], producer: Producer[T]) -> None:
        try:
            async with self._semaphore:
                value = await asyncio.wait_for(producer(), timeout=self._timeout)
        except asyncio.CancelledError as e:
            entry.fail(e)
            raise
        except TimeoutError as e:
            logger.warning(
                "Single-flight producer timed out",
                cache=self.name,
                key=entry.key[:32],
                timeout_seconds=self._timeout,
            )
            entry.fail(e)
        except Exception as e:
            logger.warning(
                "Single-flight producer failed",
                cache=self.name,
                key=entry.key[:32],
                error=str(e),
                error_type=type(e).__name__,
            )
            entry.fail(e)
        else:
            entry.complete(value)
            logger.debug("Single-flight producer finished", cache=self.name, key=entry.key[:32])


def build_cache(name: str) -> SingleFlightAsyncCache:
    return SingleFlightAsyncCache(name, **settings.get_action_pool_config())


# Global instances
mail_outcomes: SingleFlightAsyncCache = build_cache("mail")
probe_outcomes: SingleFlightAsyncCache = build_cache("smtp_probe")
