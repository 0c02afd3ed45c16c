# app/models/domain/action_domain.py
"""
Request context and outcome of a ticket action.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.models.domain.ticket_domain import Operator


class ResultCategory(str, Enum):
    """Outcome classification; drives logging, not behaviour."""

    SUCCESS = "success"
    ALREADY_DONE = "already_done"
    PARTIAL = "partial"
    PENDING = "pending"
    CHALLENGE = "challenge"
    FORBIDDEN = "forbidden"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class ActionRequest:
    """What the dispatcher needs to know about the HTTP request."""

    method: str = "GET"
    client_ip: str | None = None
    language: str = "en"
    captcha_response: str | None = None
    selected: tuple[str, ...] = ()
    request_id: str | None = None

    @property
    def is_submission(self) -> bool:
        return self.method.upper() == "POST"


@dataclass(frozen=True)
class ActionResult:
    """
    Outcome of a ticket action.

    The page itself is assembled at the HTTP boundary from message_key and
    params; refresh_seconds, choices, confirm and show_captcha tell the page
    which controls to show.
    """

    http_status: int
    category: ResultCategory
    message_key: str
    operator: Operator | None = None
    params: dict[str, Any] = field(default_factory=dict)
    refresh_seconds: int | None = None
    choices: tuple[str, ...] = ()
    confirm: bool = False
    show_captcha: bool = False


@dataclass(frozen=True)
class MachineResult:
    """Plain-text outcome of a machine (PUT) request."""

    http_status: int
    body: str
    category: ResultCategory = ResultCategory.SUCCESS
    message_key: str = ""
    operator: Operator | None = None
