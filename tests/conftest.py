import asyncio
import os
from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet

# Tickets need a key before app.config builds its settings
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

from app.repositories.list_store import RedisComplaintStore, RedisListStore  # noqa: E402
from app.repositories.query_repository import (  # noqa: E402
    InMemoryDeferStore,
    InMemoryQueryStore,
)
from app.services.action_dispatcher import ActionDispatcher  # noqa: E402
from app.services.reputation_service import (  # noqa: E402
    AuthenticationResult,
    ListingStatus,
    ReputationListing,
)
from app.services.single_flight_cache import SingleFlightAsyncCache  # noqa: E402
from app.services.ticket_codec import TicketCodec  # noqa: E402


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.sets: dict[str, set[str]] = {}

    async def ping(self) -> bool:
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if key in self.store:
            return False
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.store.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self.store

    async def sadd(self, key: str, member: str) -> bool:
        members = self.sets.setdefault(key, set())
        if member in members:
            return False
        members.add(member)
        return True

    async def srem(self, key: str, member: str) -> bool:
        members = self.sets.get(key, set())
        if member not in members:
            return False
        members.remove(member)
        return True

    async def sismember(self, key: str, member: str) -> bool:
        return member in self.sets.get(key, set())


class FakeNotifier:
    """Records outgoing mail instead of sending it."""

    def __init__(self):
        self.available = True
        self.error: Exception | None = None
        self.delay = 0.0
        self.requests = []
        self.confirmations = []

    async def send_unblock_request(self, command, language="en"):
        self.requests.append((command, language))
        return await self._finish(command.recipient)

    async def send_unblock_confirmation(self, command, language="en"):
        self.confirmations.append((command, language))
        return await self._finish(command.sender)

    async def _finish(self, recipient):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return recipient


class FakeCaptcha:
    def __init__(self):
        self.enabled = False
        self.error: Exception | None = None
        self.calls = []

    async def verify(self, response_token, remote_ip=None):
        self.calls.append((response_token, remote_ip))
        if self.error:
            raise self.error
        if not self.enabled:
            return True
        return response_token == "human"


class FakeReputation:
    def __init__(self):
        self.authentication = AuthenticationResult.PASS
        self.listings: dict[str, ListingStatus] = {}

    async def check_authentication(self, ip, sender, helo):
        return self.authentication

    async def get_listing(self, target):
        status = self.listings.get(target, ListingStatus.UNLISTED)
        return ReputationListing(target=target, status=status)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def codec():
    return TicketCodec()


def build_harness(fake_redis, codec, inline_wait_seconds=1.0):
    harness = SimpleNamespace(
        redis=fake_redis,
        codec=codec,
        block_list=RedisListStore("block", client=fake_redis, prefix="test"),
        white_list=RedisListStore("white", client=fake_redis, prefix="test"),
        unsubscribe_registry=RedisListStore("unsubscribe", client=fake_redis, prefix="test"),
        complaints=RedisComplaintStore(client=fake_redis, prefix="test"),
        queries=InMemoryQueryStore(),
        defers=InMemoryDeferStore(),
        reputation=FakeReputation(),
        captcha=FakeCaptcha(),
        notifier=FakeNotifier(),
        mail_outcomes=SingleFlightAsyncCache("test-mail", max_concurrency=4, timeout_seconds=5),
    )
    harness.dispatcher = ActionDispatcher(
        codec=codec,
        block_list=harness.block_list,
        white_list=harness.white_list,
        unsubscribe_registry=harness.unsubscribe_registry,
        complaints=harness.complaints,
        queries=harness.queries,
        defers=harness.defers,
        reputation=harness.reputation,
        captcha=harness.captcha,
        notifier=harness.notifier,
        mail_outcomes=harness.mail_outcomes,
        inline_wait_seconds=inline_wait_seconds,
        poll_interval_seconds=3,
        temporary_white_seconds=600,
    )
    return harness


@pytest.fixture
def harness(fake_redis, codec):
    return build_harness(fake_redis, codec)


@pytest.fixture
def harness_factory(fake_redis, codec):
    def _build(**kwargs):
        return build_harness(fake_redis, codec, **kwargs)

    return _build
