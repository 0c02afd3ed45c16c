"""
Notification Service for mail triggered by action links.
Composes the unblock request sent to a recipient and the confirmation sent
back to the sender once the recipient accepts them.
"""

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.ticket_domain import UnblockCommand, WhiteCommand
from app.services.mail_transport import MailSender, mail_sender
from app.services.ticket_codec import TicketCodec, ticket_codec

logger = get_logger(__name__)

TEMPLATES = {
    "en": {
        "unblock_subject": "Please accept messages from {sender}",
        "unblock_body": (
            "Messages from {sender} to {recipient} were rejected by the anti-spam filter.\n"
            "\n"
            "The sender asked to be accepted. If you know this sender, open the link below:\n"
            "\n"
            "{link}\n"
            "\n"
            "If you do not recognize this sender, ignore this message.\n"
        ),
        "confirmation_subject": "{recipient} now accepts your messages",
        "confirmation_body": (
            "The recipient {recipient} accepted messages from {sender}.\n"
            "\n"
            "You may now send your message again.\n"
        ),
    },
    "pt": {
        "unblock_subject": "Por favor, aceite mensagens de {sender}",
        "unblock_body": (
            "Mensagens de {sender} para {recipient} foram rejeitadas pelo filtro anti-spam.\n"
            "\n"
            "O remetente pediu para ser aceito. Se você conhece este remetente, abra o link abaixo:\n"
            "\n"
            "{link}\n"
            "\n"
            "Se você não reconhece este remetente, ignore esta mensagem.\n"
        ),
        "confirmation_subject": "{recipient} agora aceita suas mensagens",
        "confirmation_body": (
            "O destinatário {recipient} aceitou mensagens de {sender}.\n"
            "\n"
            "Você já pode enviar sua mensagem novamente.\n"
        ),
    },
}


class NotificationService:
    """Builds and sends action mail through the outbound transport."""

    def __init__(
        self,
        sender: MailSender = mail_sender,
        codec: TicketCodec = ticket_codec,
        base_url: str | None = None,
    ):
        self._sender = sender
        self._codec = codec
        self._base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    @property
    def available(self) -> bool:
        return self._sender.available

    def link_for(self, token: str) -> str:
        return f"{self._base_url}/{token}"

    async def send_unblock_request(self, command: UnblockCommand, language: str = "en") -> str:
        """
        Ask the recipient to accept the sender.

        The mail carries a freshly issued white ticket, so the recipient's link
        gets its own validity window.

        Returns:
            str: The address the request was sent to
        """
        white = WhiteCommand(
            sender=command.sender,
            recipient=command.recipient,
            ip=command.ip,
            client=command.client,
        )
        link = self.link_for(self._codec.encode_command(white))
        template = TEMPLATES.get(language, TEMPLATES["en"])
        params = {"sender": command.sender, "recipient": command.recipient, "link": link}

        message = self._sender.build_message(
            to=command.recipient,
            subject=template["unblock_subject"].format(**params),
            text=template["unblock_body"].format(**params),
        )

        logger.info(
            "Sending unblock request",
            sender=command.sender,
            recipient=command.recipient,
        )
        return await self._sender.send(message)

    async def send_unblock_confirmation(self, command: WhiteCommand, language: str = "en") -> str:
        """
        Tell the sender that the recipient now accepts them.

        Returns:
            str: The address the confirmation was sent to
        """
        template = TEMPLATES.get(language, TEMPLATES["en"])
        params = {"sender": command.sender, "recipient": command.recipient}

        message = self._sender.build_message(
            to=command.sender,
            subject=template["confirmation_subject"].format(**params),
            text=template["confirmation_body"].format(**params),
        )

        logger.info(
            "Sending unblock confirmation",
            sender=command.sender,
            recipient=command.recipient,
        )
        return await self._sender.send(message)


notification_service = NotificationService()
