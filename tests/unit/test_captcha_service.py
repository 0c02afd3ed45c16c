"""
Tests for CAPTCHA verification.
"""

import httpx
import pytest

from app.services.captcha_service import CaptchaService, CaptchaServiceError


def service_with(handler) -> CaptchaService:
    return CaptchaService(
        site_key="site",
        secret_key="secret",
        verify_url="https://captcha.test/siteverify",
        timeout=2,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_disabled_gate_always_passes():
    service = CaptchaService(site_key=None, secret_key=None)

    assert service.enabled is False
    assert await service.verify(None) is True


@pytest.mark.asyncio
async def test_missing_response_fails_without_calling_provider():
    def handler(request):
        raise AssertionError("provider must not be called")

    assert await service_with(handler).verify("") is False


@pytest.mark.asyncio
async def test_provider_accepts_response():
    seen = {}

    def handler(request):
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"success": True})

    assert await service_with(handler).verify("token-1", remote_ip="198.51.100.7") is True
    assert "response=token-1" in seen["body"]
    assert "secret=secret" in seen["body"]
    assert "remoteip=198.51.100.7" in seen["body"]


@pytest.mark.asyncio
async def test_provider_rejects_response():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error-codes": ["invalid-input"]})

    assert await service_with(handler).verify("token-1") is False


@pytest.mark.asyncio
async def test_provider_error_status_raises():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(CaptchaServiceError) as exc_info:
        await service_with(handler).verify("token-1")
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_unreachable_provider_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CaptchaServiceError):
        await service_with(handler).verify("token-1")
