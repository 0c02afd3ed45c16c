"""
CAPTCHA verification against the provider's siteverify endpoint.
The gate is only active when both the site key and the secret key are configured.
"""

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Form fields used by hCaptcha and reCAPTCHA widgets
RESPONSE_FIELDS = ("h-captcha-response", "g-recaptcha-response")


class CaptchaServiceError(Exception):
    """Raised when the CAPTCHA provider cannot be consulted."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CaptchaService:
    """Verifies CAPTCHA responses posted by action pages."""

    def __init__(
        self,
        site_key: str | None = None,
        secret_key: str | None = None,
        verify_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.site_key = site_key
        self.secret_key = secret_key
        self.verify_url = verify_url or settings.CAPTCHA_VERIFY_URL
        self.timeout = timeout or settings.CAPTCHA_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.site_key and self.secret_key)

    async def verify(self, response_token: str | None, remote_ip: str | None = None) -> bool:
        """
        Check a CAPTCHA response.

        Args:
            response_token: Value posted by the widget
            remote_ip: Client address, forwarded to the provider

        Returns:
            bool: True when the gate is disabled or the provider accepts the
            response; False when the response is missing or rejected

        Raises:
            CaptchaServiceError: If the provider is unreachable or answers
                with an unexpected status
        """
        if not self.enabled:
            return True

        if not response_token:
            return False

        data = {"secret": self.secret_key, "response": response_token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.verify_url, data=data)
        except httpx.RequestError as e:
            logger.error(
                "CAPTCHA provider request failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CaptchaServiceError(f"CAPTCHA provider unreachable: {e}") from e

        if response.status_code != 200:
            logger.error("CAPTCHA provider returned error", status_code=response.status_code)
            raise CaptchaServiceError(
                f"CAPTCHA provider returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise CaptchaServiceError("CAPTCHA provider returned invalid JSON") from e

        success = bool(payload.get("success"))
        if not success:
            logger.info(
                "CAPTCHA response rejected",
                error_codes=payload.get("error-codes", []),
                remote_ip=remote_ip,
            )
        return success


captcha_service = CaptchaService(
    site_key=settings.CAPTCHA_SITE_KEY,
    secret_key=settings.CAPTCHA_SECRET_KEY,
)
