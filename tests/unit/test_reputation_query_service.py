"""
Tests for reputation pages and the SMTP probe cache.
"""

import pytest

from app.models.domain.action_domain import ResultCategory
from app.services.mail_transport import ProbeResult
from app.services.redis_client import RedisClientError
from app.services.reputation_query_service import ReputationQueryService, is_reputation_target
from app.services.reputation_service import (
    ListingStatus,
    ListReputationService,
    ReputationServiceError,
)
from app.services.single_flight_cache import SingleFlightAsyncCache


class CountingProbe:
    def __init__(self, banner="220 mx.example.org ESMTP"):
        self.banner = banner
        self.calls = []

    async def probe(self, ip):
        self.calls.append(ip)
        reachable = self.banner is not None
        return ProbeResult(ip=ip, reachable=reachable, banner=self.banner)


def build_service(harness, probe, inline_wait_seconds=1.0):
    return ReputationQueryService(
        reputation=harness.reputation,
        probe=probe,
        probe_outcomes=SingleFlightAsyncCache("test-probe"),
        inline_wait_seconds=inline_wait_seconds,
        poll_interval_seconds=3,
    )


@pytest.mark.parametrize(
    "value,expected",
    [
        ("203.0.113.9", True),
        ("2001:db8::1", True),
        ("mx.example.org", True),
        ("localhost", False),
        ("gAAAAABlxyz_-abc=", False),
        ("favicon.ico", True),
    ],
)
def test_reputation_targets(value, expected):
    assert is_reputation_target(value) is expected


@pytest.mark.asyncio
async def test_invalid_target_is_forbidden(harness):
    service = build_service(harness, CountingProbe())

    result = await service.query("not a host")

    assert result.http_status == 403


@pytest.mark.asyncio
async def test_listed_target(harness):
    harness.reputation.listings["203.0.113.9"] = ListingStatus.LISTED
    service = build_service(harness, CountingProbe())

    result = await service.query("203.0.113.9")

    assert result.message_key == "reputation_listed"
    assert result.params["target"] == "203.0.113.9"


@pytest.mark.asyncio
async def test_greylisted_ip_is_probed_once(harness):
    harness.reputation.listings["203.0.113.9"] = ListingStatus.GREYLISTED
    probe = CountingProbe()
    service = build_service(harness, probe)

    first = await service.query("203.0.113.9")
    second = await service.query("203.0.113.9")

    assert first.message_key == "reputation_probe_reachable"
    assert first.params["banner"] == "220 mx.example.org ESMTP"
    assert second.message_key == "reputation_probe_reachable"
    assert probe.calls == ["203.0.113.9"]


@pytest.mark.asyncio
async def test_unreachable_greylisted_ip(harness):
    harness.reputation.listings["203.0.113.9"] = ListingStatus.GREYLISTED
    service = build_service(harness, CountingProbe(banner=None))

    result = await service.query("203.0.113.9")

    assert result.message_key == "reputation_probe_unreachable"


@pytest.mark.asyncio
async def test_slow_probe_asks_browser_to_refresh(harness):
    harness.reputation.listings["203.0.113.9"] = ListingStatus.GREYLISTED
    service = build_service(harness, CountingProbe(), inline_wait_seconds=0)

    result = await service.query("203.0.113.9")

    assert result.category is ResultCategory.PENDING
    assert result.refresh_seconds == 3


@pytest.mark.asyncio
async def test_list_reputation_service_order(harness):
    greylist = harness.unsubscribe_registry  # any list store works here
    service = ListReputationService(harness.block_list, harness.white_list, greylist)
    await harness.block_list.add("bad.example.org")
    await harness.white_list.add("good.example.org")
    await greylist.add("203.0.113.9")

    assert (await service.get_listing("Bad.Example.org")).status is ListingStatus.LISTED
    assert (await service.get_listing("good.example.org")).status is ListingStatus.ALLOWED
    assert (await service.get_listing("203.0.113.9")).status is ListingStatus.GREYLISTED
    assert (await service.get_listing("198.51.100.1")).status is ListingStatus.UNLISTED


@pytest.mark.asyncio
async def test_list_store_outage_is_reported_as_reputation_error(harness):
    async def broken(entry):
        raise RedisClientError("connection lost", operation="sismember")

    harness.block_list.contains = broken
    reputation = ListReputationService(harness.block_list, harness.white_list, harness.white_list)
    service = ReputationQueryService(
        reputation=reputation,
        probe=CountingProbe(),
        probe_outcomes=SingleFlightAsyncCache("test-probe"),
    )

    with pytest.raises(ReputationServiceError) as exc_info:
        await reputation.get_listing("203.0.113.9")
    assert exc_info.value.target == "203.0.113.9"

    result = await service.query("203.0.113.9")

    assert result.http_status == 500
    assert result.category is ResultCategory.ERROR
    assert result.message_key == "reputation_unavailable"
