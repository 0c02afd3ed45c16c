"""
Action dispatcher for ticket links.

Decodes the ticket carried by a link, selects the handler for its operator
and applies the state transition against the external stores. Every handler
finishes in one call: there is no state between requests other than the
stores themselves and the single-flight mail cache.

Failures never escape: they are classified, logged and turned into an
ActionResult at this boundary.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_action_result
from app.models.domain.action_domain import (
    ActionRequest,
    ActionResult,
    MachineResult,
    ResultCategory,
)
from app.models.domain.query_domain import Query
from app.models.domain.ticket_domain import (
    BlockCommand,
    HoldingCommand,
    Operator,
    QueryCommand,
    ReleaseCommand,
    SpamCommand,
    Ticket,
    TicketCommand,
    UnblockCommand,
    UnholdCommand,
    UnsubscribeCommand,
    WhiteCommand,
    allow_entry,
)
from app.repositories.list_store import ListStore, RedisComplaintStore
from app.repositories.query_repository import DeferStore, QueryStore, RecordNotFoundError
from app.services.captcha_service import CaptchaService, CaptchaServiceError
from app.services.infrastructure.encryption_service import EncryptionError
from app.services.mail_transport import MailTransportError, classify_transport_error
from app.services.notification_service import NotificationService
from app.services.reputation_service import (
    AuthenticationResult,
    ReputationService,
    ReputationServiceError,
)
from app.services.single_flight_cache import (
    Observation,
    OutcomeState,
    SingleFlightAsyncCache,
)
from app.services.ticket_codec import (
    ExpiredTicketError,
    MalformedTicketError,
    TicketCodec,
    UnknownOperatorError,
)
from app.utils.messages import translate

logger = get_logger(__name__)

Handler = Callable[[str, Ticket, TicketCommand, ActionRequest], Awaitable[ActionResult]]


class ActionDispatcher:
    """
    Interprets decoded tickets.

    One handler per operator; handlers check their preconditions in order and
    report "already in the target state" as its own result instead of
    applying a transition twice.
    """

    def __init__(
        self,
        *,
        codec: TicketCodec,
        block_list: ListStore,
        white_list: ListStore,
        unsubscribe_registry: ListStore,
        complaints: RedisComplaintStore,
        queries: QueryStore,
        defers: DeferStore,
        reputation: ReputationService,
        captcha: CaptchaService,
        notifier: NotificationService,
        mail_outcomes: SingleFlightAsyncCache,
        inline_wait_seconds: float | None = None,
        poll_interval_seconds: int | None = None,
        temporary_white_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._codec = codec
        self._block_list = block_list
        self._white_list = white_list
        self._unsubscribe = unsubscribe_registry
        self._complaints = complaints
        self._queries = queries
        self._defers = defers
        self._reputation = reputation
        self._captcha = captcha
        self._notifier = notifier
        self._mail_outcomes = mail_outcomes
        self._inline_wait = (
            inline_wait_seconds
            if inline_wait_seconds is not None
            else settings.ACTION_INLINE_WAIT_SECONDS
        )
        self._poll_interval = poll_interval_seconds or settings.POLL_INTERVAL_SECONDS
        self._temporary_white_seconds = (
            temporary_white_seconds or settings.TEMPORARY_WHITE_DAYS * 86_400
        )
        self._clock = clock or (lambda: datetime.now(UTC))

        self._handlers: dict[Operator, Handler] = {
            Operator.SPAM: self._handle_spam,
            Operator.UNBLOCK: self._handle_unblock,
            Operator.WHITE: self._handle_white,
            Operator.HOLDING: self._handle_holding,
            Operator.UNHOLD: self._handle_unhold,
            Operator.BLOCK: self._handle_block,
            Operator.UNSUBSCRIBE: self._handle_unsubscribe,
            Operator.RELEASE: self._handle_release,
        }

    # =================================================================
    # ENTRY POINTS
    # =================================================================

    async def handle(self, token: str, request: ActionRequest) -> ActionResult:
        """
        Decode a ticket taken from a link and run its action.

        Args:
            token: Opaque ticket from the URL path
            request: Method, form fields and client context

        Returns:
            ActionResult: Always; decoding and handler failures are mapped
            to forbidden/expired/error results
        """
        try:
            ticket, command = self._codec.decode_command(token, now=self._clock())
        except ExpiredTicketError as e:
            result = ActionResult(
                http_status=500,
                category=ResultCategory.EXPIRED,
                message_key="ticket_expired",
                params={"days": settings.TICKET_VALIDITY_DAYS},
            )
            self._log(result, request, error=str(e))
            return result
        except (MalformedTicketError, UnknownOperatorError) as e:
            result = ActionResult(
                http_status=403,
                category=ResultCategory.FORBIDDEN,
                message_key="forbidden",
            )
            self._log(result, request, error=str(e))
            return result
        except EncryptionError as e:
            result = ActionResult(
                http_status=500,
                category=ResultCategory.ERROR,
                message_key="encryption_unavailable",
            )
            self._log(result, request, error=str(e))
            return result

        return await self.dispatch(token, ticket, command, request)

    async def dispatch(
        self,
        token: str,
        ticket: Ticket,
        command: TicketCommand,
        request: ActionRequest,
    ) -> ActionResult:
        """Run the handler for an already decoded ticket."""
        handler = self._handlers.get(ticket.operator)
        error = None

        if handler is None:
            result = self._result(ticket, 403, ResultCategory.FORBIDDEN, "forbidden")
        else:
            try:
                result = await handler(token, ticket, command, request)
            except RecordNotFoundError as e:
                error = str(e)
                result = self._result(ticket, 500, ResultCategory.NOT_FOUND, "no_longer_exists")
            except CaptchaServiceError as e:
                error = str(e)
                result = self._result(ticket, 500, ResultCategory.ERROR, "captcha_unavailable")
            except ReputationServiceError as e:
                error = str(e)
                result = self._result(ticket, 500, ResultCategory.ERROR, "reputation_unavailable")
            except MailTransportError as e:
                error = str(e)
                result = self._result(
                    ticket,
                    500,
                    ResultCategory.ERROR,
                    f"transport_{e.kind.value}",
                    params={"recipient": e.recipient or ""},
                )
            except Exception as e:
                logger.error(
                    "Unexpected ticket action failure",
                    operator=ticket.operator.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                error = f"{type(e).__name__}: {e}"
                result = self._result(ticket, 500, ResultCategory.ERROR, "system_error")

        self._log(result, request, error=error)
        return result

    async def handle_machine(self, token: str) -> MachineResult:
        """
        Machine variant of a ticket request (PUT /<ticket>).

        Only spam tickets accept it; the answer is a plain-text line.
        """
        return await self._complain(token, spam=True, unchanged_body="DUPLICATE COMPLAIN")

    async def complain(self, token: str, spam: bool) -> MachineResult:
        """
        Add (PUT /spam/<ticket>) or withdraw (PUT /ham/<ticket>) a complaint.
        """
        unchanged_body = "ALREADY COMPLAINED" if spam else "NOT COMPLAINED"
        return await self._complain(token, spam=spam, unchanged_body=unchanged_body)

    async def _complain(self, token: str, spam: bool, unchanged_body: str) -> MachineResult:
        decoded = self._decode_machine(token)
        error = None

        if isinstance(decoded, MachineResult):
            result = decoded
        else:
            ticket, command = decoded
            try:
                if spam:
                    changed = await self._record_complaint(ticket, command)
                else:
                    changed = await self._complaints.remove(ticket)
            except Exception as e:
                logger.error(
                    "Complaint update failed",
                    spam=spam,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                error = f"{type(e).__name__}: {e}"
                result = MachineResult(
                    http_status=500,
                    body=str(e),
                    category=ResultCategory.ERROR,
                    message_key="system_error",
                    operator=ticket.operator,
                )
            else:
                if changed:
                    result = MachineResult(
                        http_status=200,
                        body=f"OK {command.summary()}",
                        message_key="complaint_recorded" if spam else "complaint_withdrawn",
                        operator=ticket.operator,
                    )
                else:
                    result = MachineResult(
                        http_status=404,
                        body=unchanged_body,
                        category=ResultCategory.ALREADY_DONE,
                        message_key="already_complained" if spam else "not_complained",
                        operator=ticket.operator,
                    )

        log_action_result(
            operator=result.operator.value if result.operator else None,
            category=result.category.value,
            status_code=result.http_status,
            message_key=result.message_key,
            error=error,
        )
        return result

    # =================================================================
    # HANDLERS
    # =================================================================

    async def _handle_spam(
        self, token: str, ticket: Ticket, command: SpamCommand, request: ActionRequest
    ) -> ActionResult:
        newly_reported = await self._record_complaint(ticket, command)

        if request.is_submission:
            return await self._block_selected(ticket, command, request)

        if not newly_reported:
            return self._result(
                ticket,
                200,
                ResultCategory.ALREADY_DONE,
                "spam_already_reported",
                choices=command.tokens,
                show_captcha=self._captcha.enabled,
            )

        return self._result(
            ticket,
            200,
            ResultCategory.SUCCESS,
            "spam_reported",
            choices=command.tokens,
            show_captcha=self._captcha.enabled,
        )

    async def _block_selected(
        self, ticket: Ticket, command: SpamCommand, request: ActionRequest
    ) -> ActionResult:
        # Only identifiers carried by the ticket may be blocked
        wanted = set(request.selected)
        selected = tuple(token for token in command.tokens if token in wanted)
        if not selected:
            return self._result(
                ticket,
                200,
                ResultCategory.CHALLENGE,
                "spam_select_identifiers",
                choices=command.tokens,
                show_captcha=self._captcha.enabled,
            )

        if not await self._captcha_passed(request):
            return self._result(
                ticket,
                200,
                ResultCategory.CHALLENGE,
                "captcha_required",
                choices=command.tokens,
                show_captcha=True,
            )

        blocked = [token for token in selected if await self._block_list.add(token)]
        if not blocked:
            return self._result(ticket, 200, ResultCategory.ALREADY_DONE, "spam_already_blocked")

        return self._result(
            ticket,
            200,
            ResultCategory.SUCCESS,
            "spam_blocked",
            params={"tokens": ", ".join(blocked)},
        )

    async def _handle_unblock(
        self, token: str, ticket: Ticket, command: UnblockCommand, request: ActionRequest
    ) -> ActionResult:
        params = {"sender": command.sender, "recipient": command.recipient, "ip": command.ip}

        observation = await self._mail_outcomes.observe(token)
        if observation is not None:
            return await self._report_mail_outcome(
                token, ticket, observation, request, "unblock_request_sent", params
            )

        if await self._white_list.contains(allow_entry(command.sender, command.recipient)):
            return self._result(
                ticket, 200, ResultCategory.ALREADY_DONE, "already_unblocked", params=params
            )

        authentication = await self._reputation.check_authentication(
            command.ip, command.sender, command.helo
        )
        if authentication is not AuthenticationResult.PASS:
            return self._result(
                ticket,
                403,
                ResultCategory.FORBIDDEN,
                "unblock_not_authenticated",
                params={**params, "result": authentication.value},
            )

        # Mail clients pre-fetch links, so sending needs an explicit POST
        if not request.is_submission:
            return self._challenge(ticket, "unblock_confirm", params)

        if not await self._captcha_passed(request):
            return self._challenge(ticket, "captcha_required", params)

        if not self._notifier.available:
            return self._result(ticket, 500, ResultCategory.ERROR, "mail_unavailable")

        return await self._start_mail(
            token,
            ticket,
            lambda: self._notifier.send_unblock_request(command, request.language),
            request,
            "unblock_request_sent",
            params,
        )

    async def _handle_white(
        self, token: str, ticket: Ticket, command: WhiteCommand, request: ActionRequest
    ) -> ActionResult:
        params = {"sender": command.sender, "recipient": command.recipient}

        observation = await self._mail_outcomes.observe(token)
        if observation is not None:
            return await self._report_mail_outcome(
                token, ticket, observation, request, "white_confirmed", params, partial=True
            )

        pair = allow_entry(command.sender, command.recipient)
        if await self._white_list.contains(pair):
            return self._result(
                ticket, 200, ResultCategory.ALREADY_DONE, "already_unblocked", params=params
            )

        if not await self._captcha_passed(request):
            return self._challenge(ticket, self._gate_key(request, "white_confirm"), params)

        if not await self._white_list.add(pair):
            return self._result(
                ticket, 200, ResultCategory.ALREADY_DONE, "already_unblocked", params=params
            )

        if not self._notifier.available:
            return self._result(
                ticket, 200, ResultCategory.PARTIAL, "white_added_without_notice", params=params
            )

        return await self._start_mail(
            token,
            ticket,
            lambda: self._notifier.send_unblock_confirmation(command, request.language),
            request,
            "white_confirmed",
            params,
            partial=True,
        )

    async def _handle_holding(
        self, token: str, ticket: Ticket, command: HoldingCommand, request: ActionRequest
    ) -> ActionResult:
        query = await self._load_query(ticket, command)

        if query.is_delivered():
            return self._already(ticket, "hold_already_delivered")
        if query.is_white_sender():
            return self._already(ticket, "hold_already_released")
        if query.is_block_sender():
            return self._already(ticket, "hold_already_blocked")
        if query.is_recipient_advised():
            return self._already(ticket, "hold_already_advised")
        if not query.is_holding():
            return self._already(ticket, "hold_already_delivered")

        query.advise_recipient_hold(self._clock())
        await self._queries.save(query)

        logger.info("Recipient advised of held message", user_email=query.user_email)
        return self._result(ticket, 200, ResultCategory.SUCCESS, "hold_recipient_advised")

    async def _handle_unhold(
        self, token: str, ticket: Ticket, command: UnholdCommand, request: ActionRequest
    ) -> ActionResult:
        query = await self._load_query(ticket, command)

        if query.is_delivered():
            return self._already(ticket, "hold_already_delivered")
        if query.is_white_sender():
            return self._already(ticket, "hold_already_released")
        if query.is_block_sender():
            return self._already(ticket, "hold_already_blocked")

        if not await self._captcha_passed(request):
            return self._challenge(ticket, self._gate_key(request, "query_confirm_release"), {})

        query.white_sender(self._clock())
        await self._queries.save(query)

        logger.info("Held message released", user_email=query.user_email, sender=query.sender)
        return self._result(ticket, 200, ResultCategory.SUCCESS, "query_released")

    async def _handle_block(
        self, token: str, ticket: Ticket, command: BlockCommand, request: ActionRequest
    ) -> ActionResult:
        query = await self._load_query(ticket, command)

        if query.is_block_sender():
            return self._already(ticket, "hold_already_blocked")
        if query.is_white_sender():
            return self._already(ticket, "hold_already_released")
        if query.is_delivered():
            return self._already(ticket, "hold_already_delivered")

        if not await self._captcha_passed(request):
            return self._challenge(ticket, self._gate_key(request, "query_confirm_block"), {})

        query.block_sender(self._clock())
        await self._queries.save(query)

        logger.info(
            "Sender of held message blocked", user_email=query.user_email, sender=query.sender
        )
        return self._result(
            ticket,
            200,
            ResultCategory.SUCCESS,
            "query_sender_blocked",
            params={"sender": query.sender or ""},
        )

    async def _handle_unsubscribe(
        self, token: str, ticket: Ticket, command: UnsubscribeCommand, request: ActionRequest
    ) -> ActionResult:
        params = {"email": command.email}

        if not await self._unsubscribe.add(command.email):
            return self._result(
                ticket, 200, ResultCategory.ALREADY_DONE, "already_unsubscribed", params=params
            )
        return self._result(ticket, 200, ResultCategory.SUCCESS, "unsubscribed", params=params)

    async def _handle_release(
        self, token: str, ticket: Ticket, command: ReleaseCommand, request: ActionRequest
    ) -> ActionResult:
        record = await self._defers.get(ticket.issued_at, command.message_id)
        if record is None:
            raise RecordNotFoundError(
                f"Deferred message {command.message_id} no longer exists", record_type="defer"
            )

        if record.is_released() or not await self._defers.release(record, self._clock()):
            return self._already(ticket, "already_released")

        await self._white_list.add(
            allow_entry(record.sender, record.recipient),
            ttl_seconds=self._temporary_white_seconds,
        )
        return self._result(ticket, 200, ResultCategory.SUCCESS, "message_released")

    # =================================================================
    # HELPERS
    # =================================================================

    def _decode_machine(self, token: str) -> tuple[Ticket, SpamCommand] | MachineResult:
        try:
            ticket, command = self._codec.decode_command(token, now=self._clock())
        except ExpiredTicketError:
            return MachineResult(
                http_status=500,
                body="EXPIRED TICKET",
                category=ResultCategory.EXPIRED,
                message_key="ticket_expired",
            )
        except (MalformedTicketError, UnknownOperatorError):
            return self._machine_forbidden()
        except EncryptionError as e:
            return MachineResult(
                http_status=500,
                body=str(e),
                category=ResultCategory.ERROR,
                message_key="encryption_unavailable",
            )

        if ticket.operator is not Operator.SPAM:
            return self._machine_forbidden(ticket.operator)
        return ticket, command

    @staticmethod
    def _machine_forbidden(operator: Operator | None = None) -> MachineResult:
        return MachineResult(
            http_status=403,
            body="FORBIDDEN",
            category=ResultCategory.FORBIDDEN,
            message_key="forbidden",
            operator=operator,
        )

    async def _record_complaint(self, ticket: Ticket, command: SpamCommand) -> bool:
        """Record a complaint and drop allow entries it contradicts."""
        added = await self._complaints.add(ticket, command.tokens)
        if added and command.recipient:
            for token in command.tokens:
                await self._white_list.remove(allow_entry(token, command.recipient))
        return added

    async def _load_query(self, ticket: Ticket, command: QueryCommand) -> Query:
        query = await self._queries.get(command.user_email, ticket.issued_at)
        if query is None:
            raise RecordNotFoundError(
                f"Query for {command.user_email} at {ticket.issued_at.isoformat()} no longer exists",
                record_type="query",
            )
        return query

    async def _captcha_passed(self, request: ActionRequest) -> bool:
        if not self._captcha.enabled:
            return True
        if not request.is_submission:
            return False
        return await self._captcha.verify(request.captcha_response, request.client_ip)

    @staticmethod
    def _gate_key(request: ActionRequest, confirm_key: str) -> str:
        # A submission that reaches the gate again had a missing or wrong answer
        return "captcha_required" if request.is_submission else confirm_key

    def _challenge(self, ticket: Ticket, message_key: str, params: dict) -> ActionResult:
        return self._result(
            ticket,
            200,
            ResultCategory.CHALLENGE,
            message_key,
            params=params,
            confirm=True,
            show_captcha=self._captcha.enabled,
        )

    def _already(self, ticket: Ticket, message_key: str) -> ActionResult:
        return self._result(ticket, 200, ResultCategory.ALREADY_DONE, message_key)

    async def _start_mail(
        self,
        token: str,
        ticket: Ticket,
        producer: Callable[[], Awaitable[str]],
        request: ActionRequest,
        success_key: str,
        params: dict,
        partial: bool = False,
    ) -> ActionResult:
        await self._mail_outcomes.get_or_start(token, producer)
        observation = await self._mail_outcomes.wait(token, self._inline_wait)
        return await self._report_mail_outcome(
            token, ticket, observation, request, success_key, params, partial=partial
        )

    async def _report_mail_outcome(
        self,
        token: str,
        ticket: Ticket,
        observation: Observation | None,
        request: ActionRequest,
        success_key: str,
        params: dict,
        partial: bool = False,
    ) -> ActionResult:
        """
        Turn a mail outcome into a page.

        RUNNING asks the browser to poll again. Terminal outcomes are consumed
        once shown, so a failed send can be retried by a later click.
        """
        if observation is None or observation.state is OutcomeState.RUNNING:
            return self._result(
                ticket,
                200,
                ResultCategory.PENDING,
                "please_wait",
                params={"seconds": self._poll_interval},
                refresh_seconds=self._poll_interval,
            )

        await self._mail_outcomes.consume(token)

        if observation.succeeded:
            return self._result(ticket, 200, ResultCategory.SUCCESS, success_key, params=params)

        error = observation.error
        kind = classify_transport_error(error)
        recipient = getattr(error, "recipient", None) or params.get("recipient", "")
        reason_key = f"transport_{kind.value}"

        if partial:
            reason = translate(reason_key, request.language, recipient=recipient)
            return self._result(
                ticket,
                200,
                ResultCategory.PARTIAL,
                "white_confirmation_failed",
                params={**params, "reason": reason},
            )

        return self._result(
            ticket,
            500,
            ResultCategory.ERROR,
            reason_key,
            params={**params, "recipient": recipient},
        )

    @staticmethod
    def _result(
        ticket: Ticket | None,
        http_status: int,
        category: ResultCategory,
        message_key: str,
        **fields,
    ) -> ActionResult:
        return ActionResult(
            http_status=http_status,
            category=category,
            message_key=message_key,
            operator=ticket.operator if ticket else None,
            **fields,
        )

    @staticmethod
    def _log(result: ActionResult, request: ActionRequest, error: str | None = None) -> None:
        log_action_result(
            operator=result.operator.value if result.operator else None,
            category=result.category.value,
            status_code=result.http_status,
            message_key=result.message_key,
            client_ip=request.client_ip,
            error=error,
        )
