"""
Integration tests for ticket links over HTTP.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_action_dispatcher, get_reputation_query_service
from app.main import app
from app.models.domain.ticket_domain import (
    SpamCommand,
    UnsubscribeCommand,
    WhiteCommand,
    allow_entry,
)
from app.services.infrastructure.encryption_service import encrypt_bytes
from app.services.mail_transport import ProbeResult
from app.services.reputation_query_service import ReputationQueryService
from app.services.single_flight_cache import SingleFlightAsyncCache


class StaticProbe:
    async def probe(self, ip):
        return ProbeResult(ip=ip, reachable=True, banner="220 ready")


@pytest.fixture
def client(harness):
    reputation = ReputationQueryService(
        reputation=harness.reputation,
        probe=StaticProbe(),
        probe_outcomes=SingleFlightAsyncCache("test-probe"),
        inline_wait_seconds=1,
    )
    app.dependency_overrides[get_action_dispatcher] = lambda: harness.dispatcher
    app.dependency_overrides[get_reputation_query_service] = lambda: reputation

    with (
        patch("app.main.fast_redis.initialize", new=AsyncMock()),
        patch("app.main.fast_redis.close", new=AsyncMock()),
    ):
        with TestClient(app) as test_client:
            yield test_client

    app.dependency_overrides.clear()


def test_short_plaintext_is_forbidden(client):
    response = client.get("/" + encrypt_bytes(b"12345678"))

    assert response.status_code == 403
    assert "Forbidden" in response.text


def test_garbage_is_forbidden(client):
    response = client.get("/definitely-not-a-ticket")

    assert response.status_code == 403


def test_expired_ticket_is_server_error(client, harness):
    issued = datetime.now(UTC) - timedelta(days=6)
    token = harness.codec.encode_command(UnsubscribeCommand(email="a@example.com"), issued_at=issued)

    response = client.get(f"/{token}")

    assert response.status_code == 500
    assert "expired" in response.text


def test_unsubscribe_page_in_portuguese(client, harness):
    token = harness.codec.encode_command(UnsubscribeCommand(email="a@example.com"))

    response = client.get(f"/{token}", headers={"Accept-Language": "pt-BR,pt;q=0.9"})

    assert response.status_code == 200
    assert "não receberá mais alertas" in response.text
    assert 'lang="pt"' in response.text


def test_spam_page_lists_identifiers_and_blocks_selection(client, harness):
    token = harness.codec.encode_command(SpamCommand(tokens=("example.org", "203.0.113.9")))

    page = client.get(f"/{token}")
    assert page.status_code == 200
    assert 'value="example.org"' in page.text
    assert f'action="/{token}"' in page.text

    response = client.post(f"/{token}", data={"identifier": ["example.org"]})

    assert response.status_code == 200
    assert "example.org" in response.text


def test_white_link_with_captcha(client, harness):
    harness.captcha.enabled = True
    command = WhiteCommand(sender="bob@example.org", recipient="alice@example.com")
    token = harness.codec.encode_command(command)

    shown = client.get(f"/{token}")
    assert shown.status_code == 200
    assert "<form" in shown.text

    accepted = client.post(f"/{token}", data={"h-captcha-response": "human"})

    assert accepted.status_code == 200
    assert harness.captcha.calls[-1][0] == "human"
    assert len(harness.notifier.confirmations) == 1


def test_machine_spam_complaint(client, harness):
    token = harness.codec.encode_command(
        SpamCommand(recipient="alice@example.com", tokens=("example.org",))
    )

    first = client.put(f"/{token}")
    second = client.put(f"/{token}")

    assert first.status_code == 200
    assert first.text.strip() == "OK example.org >alice@example.com"
    assert second.status_code == 404
    assert second.text.strip() == "DUPLICATE COMPLAIN"


def test_spam_and_ham_routes(client, harness):
    token = harness.codec.encode_command(SpamCommand(tokens=("example.org",)))

    assert client.put(f"/spam/{token}").status_code == 200
    assert client.put(f"/spam/{token}").status_code == 404
    assert client.put(f"/ham/{token}").status_code == 200
    assert client.put(f"/ham/{token}").status_code == 404


def test_machine_interface_refuses_other_operators(client, harness):
    token = harness.codec.encode_command(UnsubscribeCommand(email="a@example.com"))

    response = client.put(f"/{token}")

    assert response.status_code == 403


def test_unsupported_method_is_forbidden(client, harness):
    token = harness.codec.encode_command(UnsubscribeCommand(email="a@example.com"))

    assert client.delete(f"/{token}").status_code == 403


def test_reputation_page(client, harness):
    response = client.get("/203.0.113.9")

    assert response.status_code == 200
    assert "203.0.113.9 is not listed." in response.text


@pytest.mark.parametrize("path", ["/favicon.ico", "/robots.txt"])
def test_static_paths_are_not_tickets(client, path):
    assert client.get(path).status_code == 404


def test_pages_carry_security_headers(client, harness):
    token = harness.codec.encode_command(UnsubscribeCommand(email="a@example.com"))

    response = client.get(f"/{token}")

    assert "form-action 'self'" in response.headers["Content-Security-Policy"]
    assert response.headers["Referrer-Policy"] == "no-referrer"
    assert response.headers["X-Request-ID"]


def test_white_entry_survives_http_round_trip(client, harness):
    command = WhiteCommand(sender="bob@example.org", recipient="alice@example.com")
    token = harness.codec.encode_command(command)

    first = client.get(f"/{token}")
    second = client.get(f"/{token}")

    assert first.status_code == 200
    assert "already unblocked" in second.text
    assert allow_entry("bob@example.org", "alice@example.com") in harness.redis.sets[
        "test:list:white"
    ]
