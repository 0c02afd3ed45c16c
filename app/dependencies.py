"""
FastAPI dependencies wiring the action services to their global collaborators.

Tests replace these through app.dependency_overrides.
"""

from app.repositories.list_store import (
    block_list,
    complaint_store,
    greylist,
    unsubscribe_registry,
    white_list,
)
from app.repositories.query_repository import defer_store, query_store
from app.services.action_dispatcher import ActionDispatcher
from app.services.captcha_service import captcha_service
from app.services.mail_transport import smtp_probe
from app.services.notification_service import notification_service
from app.services.reputation_query_service import ReputationQueryService
from app.services.reputation_service import ListReputationService
from app.services.single_flight_cache import mail_outcomes, probe_outcomes
from app.services.ticket_codec import ticket_codec

reputation_service = ListReputationService(block_list, white_list, greylist)

_action_dispatcher: ActionDispatcher | None = None
_reputation_query_service: ReputationQueryService | None = None


def get_action_dispatcher() -> ActionDispatcher:
    global _action_dispatcher
    if _action_dispatcher is None:
        _action_dispatcher = ActionDispatcher(
            codec=ticket_codec,
            block_list=block_list,
            white_list=white_list,
            unsubscribe_registry=unsubscribe_registry,
            complaints=complaint_store,
            queries=query_store,
            defers=defer_store,
            reputation=reputation_service,
            captcha=captcha_service,
            notifier=notification_service,
            mail_outcomes=mail_outcomes,
        )
    return _action_dispatcher


def get_reputation_query_service() -> ReputationQueryService:
    global _reputation_query_service
    if _reputation_query_service is None:
        _reputation_query_service = ReputationQueryService(
            reputation=reputation_service,
            probe=smtp_probe,
            probe_outcomes=probe_outcomes,
        )
    return _reputation_query_service
