"""
Tests for request context extraction.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app.middleware.request_context import RequestContextMiddleware
from app.middleware.request_context import settings as middleware_settings


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/context")
    async def context(request: Request):
        return {
            "ip_address": request.state.ip_address,
            "language": request.state.language,
            "request_id": request.state.request_id,
        }

    return TestClient(app)


def test_direct_peer_is_used_without_proxy_trust(client, monkeypatch):
    monkeypatch.setattr(middleware_settings, "TRUST_X_FORWARDED_FOR", False)

    response = client.get("/context", headers={"X-Forwarded-For": "203.0.113.9"})

    assert response.json()["ip_address"] == "testclient"
    assert response.headers["X-Request-ID"] == response.json()["request_id"]


def test_forwarded_address_from_trusted_proxy(client, monkeypatch):
    monkeypatch.setattr(middleware_settings, "TRUST_X_FORWARDED_FOR", True)
    monkeypatch.setattr(middleware_settings, "TRUSTED_PROXY_IPS", ["testclient", "10.0.0.2"])

    response = client.get(
        "/context", headers={"X-Forwarded-For": "198.51.100.1, 203.0.113.9, 10.0.0.2"}
    )

    # Right-most untrusted hop wins; the left-most value is client supplied
    assert response.json()["ip_address"] == "203.0.113.9"


def test_unparseable_forwarded_address_falls_back_to_peer(client, monkeypatch):
    monkeypatch.setattr(middleware_settings, "TRUST_X_FORWARDED_FOR", True)
    monkeypatch.setattr(middleware_settings, "TRUSTED_PROXY_IPS", ["testclient"])

    response = client.get("/context", headers={"X-Forwarded-For": "not-an-ip"})

    assert response.json()["ip_address"] == "testclient"


def test_language_is_negotiated(client):
    response = client.get("/context", headers={"Accept-Language": "pt-PT"})

    assert response.json()["language"] == "pt"
