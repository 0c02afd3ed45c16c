"""
Reputation engine interface.

Sender authentication (SPF) and reputation scoring belong to the
classification engine; this module only defines what the action layer asks
of it, plus an adapter that answers listing questions from the local lists.
"""

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.repositories.list_store import ListStore
from app.services.redis_client import RedisClientError

logger = get_logger(__name__)


class AuthenticationResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SOFTFAIL = "SOFTFAIL"
    NEUTRAL = "NEUTRAL"
    NONE = "NONE"
    TEMPERROR = "TEMPERROR"
    PERMERROR = "PERMERROR"


class ListingStatus(str, Enum):
    LISTED = "listed"
    GREYLISTED = "greylisted"
    ALLOWED = "allowed"
    UNLISTED = "unlisted"


@dataclass(frozen=True)
class ReputationListing:
    target: str
    status: ListingStatus


class ReputationServiceError(Exception):
    """Raised when the reputation engine cannot answer."""

    def __init__(self, message: str, target: str | None = None):
        super().__init__(message)
        self.target = target


class ReputationService(Protocol):
    async def check_authentication(
        self, ip: str, sender: str, helo: str | None
    ) -> AuthenticationResult: ...

    async def get_listing(self, target: str) -> ReputationListing: ...


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class ListReputationService:
    """
    Answers listing questions from the block, allow and grey lists.

    Sender authentication needs the SPF engine, which is not part of this
    service; without one every check answers NONE, so actions that require a
    passing result are refused.
    """

    def __init__(self, block_list: ListStore, white_list: ListStore, greylist: ListStore):
        self._block_list = block_list
        self._white_list = white_list
        self._greylist = greylist

    async def check_authentication(
        self, ip: str, sender: str, helo: str | None
    ) -> AuthenticationResult:
        logger.debug(
            "No authentication engine configured", ip=ip, sender=sender, helo=helo
        )
        return AuthenticationResult.NONE

    async def get_listing(self, target: str) -> ReputationListing:
        target = target.lower()
        try:
            return await self._lookup(target)
        except RedisClientError as e:
            logger.error("Listing lookup failed", target=target, operation=e.operation)
            raise ReputationServiceError(f"Listing lookup failed: {e}", target=target) from e

    async def _lookup(self, target: str) -> ReputationListing:
        if await self._block_list.contains(target):
            return ReputationListing(target=target, status=ListingStatus.LISTED)

        if await self._white_list.contains(target):
            return ReputationListing(target=target, status=ListingStatus.ALLOWED)

        if is_ip_address(target) and await self._greylist.contains(target):
            return ReputationListing(target=target, status=ListingStatus.GREYLISTED)

        return ReputationListing(target=target, status=ListingStatus.UNLISTED)
