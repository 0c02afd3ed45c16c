"""
Tests for Redis-backed list and complaint stores.
"""

from datetime import UTC, datetime

import pytest

from app.models.domain.ticket_domain import Operator, Ticket
from app.repositories.list_store import RedisComplaintStore, RedisListStore, complaint_key


@pytest.mark.asyncio
async def test_entries_are_case_insensitive(fake_redis):
    store = RedisListStore("white", client=fake_redis, prefix="test")

    assert await store.add("Bob@Example.org>alice@example.com") is True
    assert await store.add("bob@example.org>ALICE@example.com") is False
    assert await store.contains("BOB@EXAMPLE.ORG>alice@example.com") is True
    assert fake_redis.sets["test:list:white"] == {"bob@example.org>alice@example.com"}


@pytest.mark.asyncio
async def test_temporary_entry_uses_ttl_key(fake_redis):
    store = RedisListStore("white", client=fake_redis, prefix="test")

    assert await store.add("a>b", ttl_seconds=60) is True
    assert await store.add("a>b", ttl_seconds=60) is False
    assert await store.contains("a>b") is True
    assert fake_redis.ttls["test:list:white:tmp:a>b"] == 60


@pytest.mark.asyncio
async def test_permanent_entry_supersedes_temporary(fake_redis):
    store = RedisListStore("white", client=fake_redis, prefix="test")
    await store.add("a>b", ttl_seconds=60)

    assert await store.add("a>b") is True
    assert "test:list:white:tmp:a>b" not in fake_redis.store
    assert await store.add("a>b", ttl_seconds=60) is False


@pytest.mark.asyncio
async def test_remove_clears_both_forms(fake_redis):
    store = RedisListStore("block", client=fake_redis, prefix="test")
    await store.add("203.0.113.9")

    assert await store.remove("203.0.113.9") is True
    assert await store.remove("203.0.113.9") is False
    assert await store.contains("203.0.113.9") is False


@pytest.mark.asyncio
async def test_complaints_are_recorded_once(fake_redis):
    store = RedisComplaintStore(client=fake_redis, prefix="test")
    ticket = Ticket(
        operator=Operator.SPAM,
        arguments=("-", "example.org"),
        issued_at=datetime(2024, 3, 1, tzinfo=UTC),
    )

    assert await store.add(ticket, ("example.org",)) is True
    assert await store.add(ticket, ("example.org",)) is False
    assert await store.remove(ticket) is True
    assert await store.remove(ticket) is False
    assert await store.add(ticket, ("example.org",)) is True


def test_complaint_key_depends_on_issue_time():
    args = ("-", "example.org")
    first = Ticket(operator=Operator.SPAM, arguments=args, issued_at=datetime(2024, 3, 1, tzinfo=UTC))
    second = Ticket(operator=Operator.SPAM, arguments=args, issued_at=datetime(2024, 3, 2, tzinfo=UTC))

    assert complaint_key(first) != complaint_key(second)
    assert len(complaint_key(first)) == 32
