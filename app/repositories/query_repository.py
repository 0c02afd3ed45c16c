"""
Access to the filtering history (queries) and the deferred delivery queue.

Both are owned by other services. The protocols below are what the action
layer needs from them; the in-memory implementations are process-local
reference versions used for local runs and tests.
"""

import asyncio
from datetime import datetime
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.models.domain.query_domain import DeferredMessage, Query
from app.models.domain.ticket_domain import to_epoch_ms

logger = get_logger(__name__)


class RecordNotFoundError(Exception):
    """Raised when a query or deferred message no longer exists."""

    def __init__(self, message: str, record_type: str = "unknown"):
        super().__init__(message)
        self.record_type = record_type


class QueryStore(Protocol):
    async def get(self, user_email: str, issued_at: datetime) -> Query | None: ...

    async def save(self, query: Query) -> None: ...


class DeferStore(Protocol):
    async def get(self, issued_at: datetime, message_id: str) -> DeferredMessage | None: ...

    async def release(self, record: DeferredMessage, when: datetime) -> bool:
        """Hand the message back to delivery; False if it was already released."""
        ...


class InMemoryQueryStore:
    """
    In-memory reference implementation.

    NOT for production: records vanish with the process.
    """

    def __init__(self):
        self._data: dict[tuple[str, int], Query] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(user_email: str, issued_at: datetime) -> tuple[str, int]:
        return user_email.lower(), to_epoch_ms(issued_at)

    async def get(self, user_email: str, issued_at: datetime) -> Query | None:
        async with self._lock:
            query = self._data.get(self._key(user_email, issued_at))
            return query.model_copy() if query is not None else None

    async def save(self, query: Query) -> None:
        async with self._lock:
            self._data[self._key(query.user_email, query.issued_at)] = query.model_copy()


class InMemoryDeferStore:
    """
    In-memory reference implementation.

    NOT for production: releasing only flags the record.
    """

    def __init__(self):
        self._data: dict[tuple[int, str], DeferredMessage] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: DeferredMessage) -> None:
        async with self._lock:
            self._data[(to_epoch_ms(record.issued_at), record.message_id)] = record.model_copy()

    async def get(self, issued_at: datetime, message_id: str) -> DeferredMessage | None:
        async with self._lock:
            record = self._data.get((to_epoch_ms(issued_at), message_id))
            return record.model_copy() if record is not None else None

    async def release(self, record: DeferredMessage, when: datetime) -> bool:
        async with self._lock:
            stored = self._data.get((to_epoch_ms(record.issued_at), record.message_id))
            if stored is None:
                raise RecordNotFoundError(
                    f"Deferred message {record.message_id} no longer exists",
                    record_type="defer",
                )
            if stored.is_released():
                return False
            stored.released_at = when

        logger.info("Deferred message released", message_id=record.message_id)
        return True


# Global instances
query_store = InMemoryQueryStore()
defer_store = InMemoryDeferStore()
