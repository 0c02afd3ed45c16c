"""
Outbound mail transport and remote SMTP reachability probe.

smtplib is blocking, so sends run in a worker thread; both the send and the
probe are bounded by explicit timeouts because they run in the background
after the triggering request has been answered.
"""

import asyncio
import smtplib
import socket
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from enum import Enum

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Permanent failures that mean the mailbox does not exist
NONEXISTENT_ADDRESS_CODES = {550, 551, 553}


class TransportFailure(str, Enum):
    ADDRESS_NONEXISTENT = "address_nonexistent"
    SERVER_UNREACHABLE = "server_unreachable"
    SERVER_TIMEOUT = "server_timeout"
    SERVER_REJECTED = "server_rejected"
    GENERIC = "generic"


class MailTransportError(Exception):
    """Custom exception for outbound mail failures."""

    def __init__(
        self,
        message: str,
        kind: TransportFailure = TransportFailure.GENERIC,
        recipient: str | None = None,
        smtp_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.recipient = recipient
        self.smtp_code = smtp_code


def classify_transport_error(error: BaseException) -> TransportFailure:
    """Map a transport exception onto the failure kinds shown to users."""
    if isinstance(error, MailTransportError):
        return error.kind

    if isinstance(error, smtplib.SMTPRecipientsRefused):
        codes = {code for code, _ in error.recipients.values()}
        if codes and codes <= NONEXISTENT_ADDRESS_CODES:
            return TransportFailure.ADDRESS_NONEXISTENT
        return TransportFailure.SERVER_REJECTED

    if isinstance(error, smtplib.SMTPConnectError | smtplib.SMTPServerDisconnected):
        return TransportFailure.SERVER_UNREACHABLE

    if isinstance(error, smtplib.SMTPResponseException | smtplib.SMTPSenderRefused):
        return TransportFailure.SERVER_REJECTED

    if isinstance(error, smtplib.SMTPException):
        return TransportFailure.GENERIC

    if isinstance(error, TimeoutError):
        return TransportFailure.SERVER_TIMEOUT

    if isinstance(error, ConnectionError | socket.gaierror | OSError):
        return TransportFailure.SERVER_UNREACHABLE

    return TransportFailure.GENERIC


class MailSender:
    """SMTP client for confirmation and unblock-request mail."""

    def __init__(
        self,
        host: str,
        port: int = 25,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = False,
        timeout: float = 30.0,
        mail_from: str = "postmaster@localhost",
        enabled: bool = True,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout
        self.mail_from = mail_from
        self.enabled = enabled

    @property
    def available(self) -> bool:
        return self.enabled

    def build_message(
        self, to: str, subject: str, text: str, html: str | None = None
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.mail_from
        message["To"] = to
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid()
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")
        return message

    async def send(self, message: EmailMessage) -> str:
        """
        Send a message.

        Returns:
            str: The recipient address

        Raises:
            MailTransportError: Classified transport failure
        """
        recipient = str(message["To"])

        if not self.enabled:
            raise MailTransportError("Outbound mail is disabled", recipient=recipient)

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_sync, message),
                timeout=self.timeout + 5,
            )
        except Exception as e:
            kind = classify_transport_error(e)
            smtp_code = getattr(e, "smtp_code", None)
            logger.warning(
                "Outbound mail failed",
                recipient=recipient,
                failure=kind.value,
                smtp_code=smtp_code,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise MailTransportError(
                f"Could not send mail to {recipient}: {e}",
                kind=kind,
                recipient=recipient,
                smtp_code=smtp_code,
            ) from e

        logger.info("Outbound mail sent", recipient=recipient, subject=message["Subject"])
        return recipient

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            refused = smtp.send_message(message)

        if refused:
            raise smtplib.SMTPRecipientsRefused(refused)


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of an SMTP reachability probe."""

    ip: str
    reachable: bool
    banner: str | None = None
    failure: TransportFailure | None = None


class SmtpProbe:
    """Connects to a remote SMTP port and reads the greeting banner."""

    def __init__(self, port: int = 25, timeout: float = 10.0):
        self.port = port
        self.timeout = timeout

    async def probe(self, ip: str) -> ProbeResult:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(ip, self.port), timeout=self.timeout
            )
        except Exception as e:
            failure = classify_transport_error(e)
            logger.info("SMTP probe failed to connect", ip=ip, failure=failure.value)
            return ProbeResult(ip=ip, reachable=False, failure=failure)

        try:
            line = await asyncio.wait_for(reader.readline(), timeout=self.timeout)
        except Exception as e:
            failure = classify_transport_error(e)
            logger.info("SMTP probe got no banner", ip=ip, failure=failure.value)
            return ProbeResult(ip=ip, reachable=False, failure=failure)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("SMTP probe close failed", ip=ip, error=str(e))

        banner = line.decode("ascii", errors="replace").strip()
        reachable = banner.startswith("220")

        logger.info("SMTP probe finished", ip=ip, reachable=reachable, banner=banner[:80])
        return ProbeResult(
            ip=ip,
            reachable=reachable,
            banner=banner,
            failure=None if reachable else TransportFailure.SERVER_REJECTED,
        )


mail_sender = MailSender(
    host=settings.SMTP_HOST,
    port=settings.SMTP_PORT,
    username=settings.SMTP_USERNAME,
    password=settings.SMTP_PASSWORD,
    starttls=settings.SMTP_STARTTLS,
    timeout=settings.SMTP_TIMEOUT_SECONDS,
    mail_from=settings.MAIL_FROM,
    enabled=settings.SMTP_ENABLED,
)

smtp_probe = SmtpProbe(
    port=settings.SMTP_PROBE_PORT,
    timeout=settings.SMTP_PROBE_TIMEOUT_SECONDS,
)
