# app/models/domain/query_domain.py
"""
Domain models for records owned by the filtering history.
The action layer reads and transitions them; it never creates or deletes them.
"""

from datetime import datetime

from pydantic import BaseModel


class Query(BaseModel):
    """
    Recipient-side record of a filtered message, keyed by (user_email, issued_at).

    Sub-states are timestamps: a set timestamp means the transition happened.
    """

    user_email: str
    issued_at: datetime
    sender: str | None = None
    recipient: str | None = None
    subject: str | None = None
    holding: bool = False
    delivered_at: datetime | None = None
    white_sender_at: datetime | None = None
    block_sender_at: datetime | None = None
    recipient_advised_at: datetime | None = None

    def is_holding(self) -> bool:
        return self.holding

    def is_delivered(self) -> bool:
        return self.delivered_at is not None

    def is_white_sender(self) -> bool:
        return self.white_sender_at is not None

    def is_block_sender(self) -> bool:
        return self.block_sender_at is not None

    def is_recipient_advised(self) -> bool:
        return self.recipient_advised_at is not None

    def white_sender(self, when: datetime) -> bool:
        """Release the held message and accept its sender."""
        if self.is_white_sender() or self.is_block_sender():
            return False
        self.white_sender_at = when
        self.holding = False
        return True

    def block_sender(self, when: datetime) -> bool:
        """Discard the held message and reject its sender from now on."""
        if self.is_block_sender() or self.is_white_sender():
            return False
        self.block_sender_at = when
        self.holding = False
        return True

    def advise_recipient_hold(self, when: datetime) -> bool:
        """Mark that the recipient was told a message is waiting for them."""
        if self.is_recipient_advised() or not self.is_holding():
            return False
        self.recipient_advised_at = when
        return True


class DeferredMessage(BaseModel):
    """Message queued for delayed delivery, keyed by (issued_at, message_id)."""

    message_id: str
    issued_at: datetime
    sender: str
    recipient: str
    released_at: datetime | None = None

    def is_released(self) -> bool:
        return self.released_at is not None
