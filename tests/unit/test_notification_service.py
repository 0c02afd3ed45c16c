"""
Tests for unblock request and confirmation mail.
"""

import pytest

from app.models.domain.ticket_domain import Operator, UnblockCommand, WhiteCommand
from app.services.mail_transport import MailSender
from app.services.notification_service import NotificationService


class RecordingSender(MailSender):
    def __init__(self):
        super().__init__(host="mail.invalid", mail_from="postmaster@example.net")
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        return str(message["To"])


@pytest.mark.asyncio
async def test_unblock_request_carries_fresh_white_ticket(codec):
    sender = RecordingSender()
    service = NotificationService(sender=sender, codec=codec, base_url="https://act.example.net/")
    command = UnblockCommand(ip="203.0.113.9", sender="bob@example.org", recipient="alice@example.com")

    recipient = await service.send_unblock_request(command)

    assert recipient == "alice@example.com"
    body = sender.sent[0].get_content()
    link = next(line for line in body.splitlines() if line.startswith("https://act.example.net/"))
    ticket, white = codec.decode_command(link.rsplit("/", 1)[1])

    assert ticket.operator is Operator.WHITE
    assert white == WhiteCommand(
        sender="bob@example.org", recipient="alice@example.com", ip="203.0.113.9"
    )


@pytest.mark.asyncio
async def test_confirmation_goes_to_sender_in_requested_language(codec):
    sender = RecordingSender()
    service = NotificationService(sender=sender, codec=codec)
    command = WhiteCommand(sender="bob@example.org", recipient="alice@example.com")

    await service.send_unblock_confirmation(command, language="pt")

    message = sender.sent[0]
    assert message["To"] == "bob@example.org"
    assert message["Subject"] == "alice@example.com agora aceita suas mensagens"
