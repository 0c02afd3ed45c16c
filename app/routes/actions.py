"""
Ticket action endpoints.

Every action is triggered by a link of the form /<ticket>. GET renders the
action page (or performs the action when no confirmation is needed), POST
submits the confirmation form and PUT is the plain-text machine interface.
A path that is an IP address or hostname renders its reputation page instead.
"""

from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from app.dependencies import get_action_dispatcher, get_reputation_query_service
from app.infrastructure.observability.logging import get_logger
from app.models.domain.action_domain import ActionRequest
from app.services.action_dispatcher import ActionDispatcher
from app.services.captcha_service import RESPONSE_FIELDS
from app.services.reputation_query_service import (
    ReputationQueryService,
    is_reputation_target,
)
from app.utils.pages import render_action_page, render_error_page, render_machine_result

logger = get_logger(__name__)

router = APIRouter(tags=["actions"])

# Browsers and crawlers ask for these on any host; they are never tickets
STATIC_PATHS = {"favicon.ico", "robots.txt", "apple-touch-icon.png"}

# Form bodies are tiny: a handful of identifiers plus a CAPTCHA response
MAX_FORM_BYTES = 16 * 1024


def _language(request: Request) -> str:
    return getattr(request.state, "language", "en")


def _client_ip(request: Request) -> str | None:
    ip_address = getattr(request.state, "ip_address", None)
    if ip_address is None and request.client:
        return request.client.host
    return ip_address


async def _read_form(request: Request) -> dict[str, list[str]]:
    body = await request.body()
    if len(body) > MAX_FORM_BYTES:
        logger.warning("Oversized action form ignored", size=len(body))
        return {}
    return parse_qs(body.decode("utf-8", errors="replace"))


def _action_request(
    request: Request, form: dict[str, list[str]] | None = None
) -> ActionRequest:
    form = form or {}

    captcha_response = None
    for field in RESPONSE_FIELDS:
        values = form.get(field)
        if values and values[0]:
            captcha_response = values[0]
            break

    return ActionRequest(
        method=request.method,
        client_ip=_client_ip(request),
        language=_language(request),
        captcha_response=captcha_response,
        selected=tuple(form.get("identifier", [])),
        request_id=getattr(request.state, "request_id", None),
    )


@router.put("/spam/{token}")
async def report_spam(
    token: str,
    dispatcher: ActionDispatcher = Depends(get_action_dispatcher),
):
    """Record a spam complaint for the ticket (machine interface)."""
    return render_machine_result(await dispatcher.complain(token, spam=True))


@router.put("/ham/{token}")
async def withdraw_spam(
    token: str,
    dispatcher: ActionDispatcher = Depends(get_action_dispatcher),
):
    """Withdraw a spam complaint for the ticket (machine interface)."""
    return render_machine_result(await dispatcher.complain(token, spam=False))


@router.get("/{target}")
async def open_link(
    target: str,
    request: Request,
    dispatcher: ActionDispatcher = Depends(get_action_dispatcher),
    reputation: ReputationQueryService = Depends(get_reputation_query_service),
):
    """Render the page for a ticket link or a reputation target."""
    if target in STATIC_PATHS:
        return Response(status_code=404)

    language = _language(request)

    if is_reputation_target(target):
        result = await reputation.query(target)
        return render_action_page(result, language)

    result = await dispatcher.handle(target, _action_request(request))
    return render_action_page(result, language, form_action=f"/{target}")


@router.post("/{token}")
async def submit_link(
    token: str,
    request: Request,
    dispatcher: ActionDispatcher = Depends(get_action_dispatcher),
):
    """Handle the confirmation form posted from an action page."""
    form = await _read_form(request)
    result = await dispatcher.handle(token, _action_request(request, form))
    return render_action_page(result, _language(request), form_action=f"/{token}")


@router.put("/{token}")
async def machine_link(
    token: str,
    dispatcher: ActionDispatcher = Depends(get_action_dispatcher),
):
    """Machine interface for a ticket; only spam tickets accept it."""
    return render_machine_result(await dispatcher.handle_machine(token))


@router.api_route("/{token}", methods=["DELETE", "PATCH"], include_in_schema=False)
async def unsupported_method(token: str, request: Request):
    return render_error_page(403, "method_not_allowed", _language(request))
