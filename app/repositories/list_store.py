"""
Redis-backed stores for the block list, the allow list, the do-not-contact
registry and spam complaints.

Each list is a Redis set of permanent entries. Temporary entries (e.g. the
allow entry added when a deferred message is released) live as standalone
keys with a TTL so Redis expires them on its own.
"""

import hashlib
from typing import Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.ticket_domain import Ticket
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

# Complaints can only be filed while their ticket is valid; keep them a while longer
COMPLAINT_TTL_SECONDS = (settings.TICKET_VALIDITY_DAYS + 2) * 86_400


class ListStore(Protocol):
    """Membership store for one named list."""

    async def contains(self, entry: str) -> bool: ...

    async def add(self, entry: str, ttl_seconds: int | None = None) -> bool:
        """Add entry; True if it was not already present."""
        ...

    async def remove(self, entry: str) -> bool:
        """Remove entry; True if it was present."""
        ...


class RedisListStore:
    """ListStore on a Redis set, with TTL keys for temporary entries."""

    def __init__(self, name: str, client=fast_redis, prefix: str | None = None):
        self.name = name
        self._client = client
        self._key = f"{prefix or settings.REDIS_KEY_PREFIX}:list:{name}"

    def _temporary_key(self, entry: str) -> str:
        return f"{self._key}:tmp:{entry}"

    async def contains(self, entry: str) -> bool:
        entry = entry.lower()
        if await self._client.sismember(self._key, entry):
            return True
        return await self._client.exists(self._temporary_key(entry))

    async def add(self, entry: str, ttl_seconds: int | None = None) -> bool:
        entry = entry.lower()

        if ttl_seconds:
            if await self._client.sismember(self._key, entry):
                return False
            added = await self._client.set_if_absent(self._temporary_key(entry), "1", ttl_seconds)
        else:
            added = await self._client.sadd(self._key, entry)
            if added:
                # A permanent entry supersedes a temporary one
                await self._client.delete(self._temporary_key(entry))

        if added:
            logger.info(
                "List entry added",
                list_name=self.name,
                entry=entry,
                ttl_seconds=ttl_seconds,
            )
        return added

    async def remove(self, entry: str) -> bool:
        entry = entry.lower()
        removed_permanent = await self._client.srem(self._key, entry)
        removed_temporary = await self._client.delete(self._temporary_key(entry))
        removed = removed_permanent or removed_temporary

        if removed:
            logger.info("List entry removed", list_name=self.name, entry=entry)
        return removed


def complaint_key(ticket: Ticket) -> str:
    """Stable identity of a complaint: the command line and its issue time."""
    digest = hashlib.sha256(f"{ticket.issued_at_ms}:{ticket.command_line()}".encode()).hexdigest()
    return digest[:32]


class RedisComplaintStore:
    """Spam complaints, one key per reported message."""

    def __init__(self, client=fast_redis, prefix: str | None = None):
        self._client = client
        self._prefix = f"{prefix or settings.REDIS_KEY_PREFIX}:complaint"

    def _key(self, ticket: Ticket) -> str:
        return f"{self._prefix}:{complaint_key(ticket)}"

    async def add(self, ticket: Ticket, tokens: tuple[str, ...]) -> bool:
        """Record a complaint; False if this message was already reported."""
        added = await self._client.set_if_absent(
            self._key(ticket), " ".join(tokens), COMPLAINT_TTL_SECONDS
        )
        if added:
            logger.info("Spam complaint recorded", tokens=list(tokens))
        return added

    async def remove(self, ticket: Ticket) -> bool:
        """Withdraw a complaint; False if there was none."""
        removed = await self._client.delete(self._key(ticket))
        if removed:
            logger.info("Spam complaint withdrawn", ticket_key=complaint_key(ticket))
        return removed


# Global instances
block_list = RedisListStore("block")
white_list = RedisListStore("white")
unsubscribe_registry = RedisListStore("unsubscribe")
greylist = RedisListStore("grey")
complaint_store = RedisComplaintStore()
