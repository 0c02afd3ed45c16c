"""
Ticket Domain Models
A ticket is the decoded form of an action link: an operator, its positional
arguments and the instant the link was issued.

Each operator also has a typed command with named fields. The positional
layout of every command is fixed, so fields are recovered by position rather
than guessed from the shape of each token. Absent optional fields travel as
"-".
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict

EMPTY_TOKEN = "-"

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class Operator(str, Enum):
    """Action kinds an action link can carry."""

    SPAM = "spam"
    UNBLOCK = "unblock"
    HOLDING = "holding"
    UNHOLD = "unhold"
    BLOCK = "block"
    UNSUBSCRIBE = "unsubscribe"
    RELEASE = "release"
    WHITE = "white"


def to_epoch_ms(moment: datetime) -> int:
    """Milliseconds since the epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return (moment - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


class Ticket(BaseModel):
    """Immutable decoded ticket."""

    model_config = ConfigDict(frozen=True)

    operator: Operator
    arguments: tuple[str, ...] = ()
    issued_at: datetime

    @property
    def issued_at_ms(self) -> int:
        return to_epoch_ms(self.issued_at)

    def command_line(self) -> str:
        return " ".join((self.operator.value, *self.arguments))


class TicketCommand(BaseModel):
    """Base class for typed ticket commands with a fixed positional layout."""

    model_config = ConfigDict(frozen=True)

    operator: ClassVar[Operator]
    layout: ClassVar[tuple[str, ...]] = ()
    optional: ClassVar[frozenset[str]] = frozenset()

    def to_arguments(self) -> tuple[str, ...]:
        arguments = []
        for name in self.layout:
            value = getattr(self, name)
            if value is None:
                if name not in self.optional:
                    raise ValueError(f"{self.operator.value}: field '{name}' is required")
                arguments.append(EMPTY_TOKEN)
            else:
                arguments.append(_check_token(value))
        return tuple(arguments)

    @classmethod
    def from_arguments(cls, arguments: tuple[str, ...]) -> "TicketCommand":
        if len(arguments) != len(cls.layout):
            raise ValueError(
                f"{cls.operator.value}: expected {len(cls.layout)} arguments, got {len(arguments)}"
            )

        values = {}
        for name, token in zip(cls.layout, arguments, strict=True):
            if token == EMPTY_TOKEN:
                if name not in cls.optional:
                    raise ValueError(f"{cls.operator.value}: field '{name}' is required")
                values[name] = None
            else:
                values[name] = token
        return cls(**values)


def _check_token(value: str) -> str:
    if not value or value == EMPTY_TOKEN or any(ch.isspace() for ch in value):
        raise ValueError(f"Invalid ticket token: {value!r}")
    return value


class SpamCommand(TicketCommand):
    """Complaint against a message; tokens are the identifiers that may be blocked."""

    operator: ClassVar[Operator] = Operator.SPAM

    recipient: str | None = None
    tokens: tuple[str, ...]

    def to_arguments(self) -> tuple[str, ...]:
        if not self.tokens:
            raise ValueError("spam: at least one identifier is required")
        recipient = _check_token(self.recipient) if self.recipient else EMPTY_TOKEN
        return (recipient, *(_check_token(token) for token in self.tokens))

    @classmethod
    def from_arguments(cls, arguments: tuple[str, ...]) -> "SpamCommand":
        if len(arguments) < 2:
            raise ValueError("spam: expected a recipient slot and at least one identifier")
        recipient, *tokens = arguments
        return cls(recipient=None if recipient == EMPTY_TOKEN else recipient, tokens=tuple(tokens))

    def summary(self) -> str:
        """Machine-readable summary line used by PUT responses."""
        line = " ".join(self.tokens)
        if self.recipient:
            line += f" >{self.recipient}"
        return line


class UnblockCommand(TicketCommand):
    """Sender asks the recipient to accept mail that was rejected."""

    operator: ClassVar[Operator] = Operator.UNBLOCK
    layout: ClassVar[tuple[str, ...]] = ("ip", "sender", "helo", "recipient", "client")
    optional: ClassVar[frozenset[str]] = frozenset({"helo", "client"})

    ip: str
    sender: str
    helo: str | None = None
    recipient: str
    client: str | None = None


class WhiteCommand(TicketCommand):
    """Recipient accepts a sender."""

    operator: ClassVar[Operator] = Operator.WHITE
    layout: ClassVar[tuple[str, ...]] = ("sender", "recipient", "ip", "client")
    optional: ClassVar[frozenset[str]] = frozenset({"ip", "client"})

    sender: str
    recipient: str
    ip: str | None = None
    client: str | None = None


class QueryCommand(TicketCommand):
    """Acts on the stored query of a filtered message, keyed by user and issue time."""

    layout: ClassVar[tuple[str, ...]] = ("user_email",)

    user_email: str


class HoldingCommand(QueryCommand):
    operator: ClassVar[Operator] = Operator.HOLDING


class UnholdCommand(QueryCommand):
    operator: ClassVar[Operator] = Operator.UNHOLD


class BlockCommand(QueryCommand):
    operator: ClassVar[Operator] = Operator.BLOCK


class UnsubscribeCommand(TicketCommand):
    operator: ClassVar[Operator] = Operator.UNSUBSCRIBE
    layout: ClassVar[tuple[str, ...]] = ("email",)

    email: str


class ReleaseCommand(TicketCommand):
    operator: ClassVar[Operator] = Operator.RELEASE
    layout: ClassVar[tuple[str, ...]] = ("message_id",)

    message_id: str


COMMAND_TYPES: dict[Operator, type[TicketCommand]] = {
    Operator.SPAM: SpamCommand,
    Operator.UNBLOCK: UnblockCommand,
    Operator.WHITE: WhiteCommand,
    Operator.HOLDING: HoldingCommand,
    Operator.UNHOLD: UnholdCommand,
    Operator.BLOCK: BlockCommand,
    Operator.UNSUBSCRIBE: UnsubscribeCommand,
    Operator.RELEASE: ReleaseCommand,
}


def parse_command(ticket: Ticket) -> TicketCommand:
    """
    Build the typed command for a ticket.

    Raises:
        ValueError: If the arguments do not fit the operator's layout
    """
    command_type = COMMAND_TYPES[ticket.operator]
    return command_type.from_arguments(ticket.arguments)


def allow_entry(sender: str, recipient: str) -> str:
    """Allow-list key for a sender/recipient pair."""
    return f"{sender.lower()}>{recipient.lower()}"
