"""
Reputation page for an IP address or hostname.

Suspicious (greylisted) IPs get an SMTP reachability probe; probe outcomes
are shared through the probe cache and kept until they age out, so reloading
the page does not connect to the same host again.
"""

import re

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.action_domain import ActionResult, ResultCategory
from app.services.mail_transport import ProbeResult, SmtpProbe
from app.services.reputation_service import (
    ListingStatus,
    ReputationService,
    ReputationServiceError,
    is_ip_address,
)
from app.services.single_flight_cache import OutcomeState, SingleFlightAsyncCache

logger = get_logger(__name__)

HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}\.?$",
    re.IGNORECASE,
)


def is_reputation_target(value: str) -> bool:
    """True for an IP address or a fully qualified hostname."""
    return is_ip_address(value) or bool(HOSTNAME_PATTERN.match(value))


class ReputationQueryService:
    def __init__(
        self,
        reputation: ReputationService,
        probe: SmtpProbe,
        probe_outcomes: SingleFlightAsyncCache,
        inline_wait_seconds: float | None = None,
        poll_interval_seconds: int | None = None,
    ):
        self._reputation = reputation
        self._probe = probe
        self._probe_outcomes = probe_outcomes
        self._inline_wait = (
            inline_wait_seconds
            if inline_wait_seconds is not None
            else settings.ACTION_INLINE_WAIT_SECONDS
        )
        self._poll_interval = poll_interval_seconds or settings.POLL_INTERVAL_SECONDS

    async def query(self, target: str) -> ActionResult:
        """
        Describe the listing status of target.

        Args:
            target: IP address or hostname taken from the URL path

        Returns:
            ActionResult: 403 for anything that is neither, otherwise 200
        """
        if not is_reputation_target(target):
            return ActionResult(
                http_status=403,
                category=ResultCategory.FORBIDDEN,
                message_key="reputation_invalid",
            )

        try:
            listing = await self._reputation.get_listing(target)
        except ReputationServiceError as e:
            logger.error("Reputation lookup unavailable", target=target, error=str(e))
            return ActionResult(
                http_status=500,
                category=ResultCategory.ERROR,
                message_key="reputation_unavailable",
            )

        params = {"target": listing.target}

        if listing.status is ListingStatus.LISTED:
            return self._page("reputation_listed", params)
        if listing.status is ListingStatus.ALLOWED:
            return self._page("reputation_allowed", params)
        if listing.status is not ListingStatus.GREYLISTED:
            return self._page("reputation_unlisted", params)

        ip = listing.target
        await self._probe_outcomes.get_or_start(ip, lambda: self._probe.probe(ip))
        observation = await self._probe_outcomes.wait(ip, self._inline_wait)

        if observation is None or observation.state is OutcomeState.RUNNING:
            return ActionResult(
                http_status=200,
                category=ResultCategory.PENDING,
                message_key="please_wait",
                params={"seconds": self._poll_interval},
                refresh_seconds=self._poll_interval,
            )

        result: ProbeResult | None = observation.value
        if observation.succeeded and result is not None and result.reachable:
            return self._page(
                "reputation_probe_reachable", {**params, "banner": result.banner or ""}
            )

        logger.info("Greylisted host did not answer SMTP probe", ip=ip)
        return self._page("reputation_probe_unreachable", params)

    @staticmethod
    def _page(message_key: str, params: dict) -> ActionResult:
        return ActionResult(
            http_status=200,
            category=ResultCategory.SUCCESS,
            message_key=message_key,
            params=params,
        )
