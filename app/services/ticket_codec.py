"""
Ticket codec for action links.

Wire layout (before encryption):

    +--------------------------+---------------------------------------+
    | 8 bytes, little endian   | zlib("<operator> <arg> <arg> ...")    |
    | issue time, epoch millis |                                       |
    +--------------------------+---------------------------------------+

The whole buffer is encrypted into a URL-safe Fernet token. Expiry is checked
on the clear timestamp before the payload is inflated.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.ticket_domain import (
    Operator,
    Ticket,
    TicketCommand,
    from_epoch_ms,
    parse_command,
    to_epoch_ms,
)
from app.services.infrastructure import compression_service
from app.services.infrastructure.compression_service import CompressionError
from app.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_bytes,
    encrypt_bytes,
)

logger = get_logger(__name__)

TIMESTAMP_SIZE = 8


class TicketError(Exception):
    """Base exception for tickets that cannot be honoured."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


class MalformedTicketError(TicketError):
    """Token could not be decrypted, inflated or parsed."""

    def __init__(self, message: str):
        super().__init__(message, error_code="malformed")


class ExpiredTicketError(TicketError):
    """Token is authentic but older than the validity window."""

    def __init__(self, message: str, issued_at: datetime):
        super().__init__(message, error_code="expired")
        self.issued_at = issued_at


class UnknownOperatorError(TicketError):
    """Token decoded to an operator this service does not handle."""

    def __init__(self, message: str, operator: str):
        super().__init__(message, error_code="unknown_operator")
        self.operator = operator


class TicketCodec:
    """
    Encodes action commands into opaque tokens and decodes them back.

    Decoding is pure: it never touches shared state, so one instance is
    safely shared by every request.
    """

    def __init__(
        self,
        validity_ms: int | None = None,
        encrypt: Callable[[bytes], str] = encrypt_bytes,
        decrypt: Callable[[str], bytes] = decrypt_bytes,
        compress: Callable[[bytes], bytes] = compression_service.compress,
        decompress: Callable[[bytes], bytes] = compression_service.decompress,
    ):
        self.validity_ms = validity_ms if validity_ms is not None else settings.ticket_validity_ms()
        self._encrypt = encrypt
        self._decrypt = decrypt
        self._compress = compress
        self._decompress = decompress

    def encode(
        self,
        operator: Operator | str,
        arguments: Iterable[str] = (),
        issued_at: datetime | None = None,
    ) -> str:
        """
        Build an opaque token for an operator and its arguments.

        Args:
            operator: Action kind
            arguments: Positional argument tokens (no whitespace inside)
            issued_at: Issue instant, defaults to now; sub-millisecond
                precision is dropped

        Returns:
            str: URL-safe token
        """
        operator_name = operator.value if isinstance(operator, Operator) else str(operator)
        tokens = [operator_name, *arguments]
        for token in tokens:
            if not token or any(ch.isspace() for ch in token):
                raise ValueError(f"Invalid ticket token: {token!r}")

        issued_ms = to_epoch_ms(issued_at or datetime.now(UTC))
        if issued_ms < 0:
            raise ValueError("Ticket issue time must not precede the epoch")

        payload = self._compress(" ".join(tokens).encode("utf-8"))
        return self._encrypt(issued_ms.to_bytes(TIMESTAMP_SIZE, "little") + payload)

    def encode_command(self, command: TicketCommand, issued_at: datetime | None = None) -> str:
        return self.encode(command.operator, command.to_arguments(), issued_at)

    def decode(self, token: str, now: datetime | None = None) -> Ticket:
        """
        Decode and validate a token.

        Args:
            token: Token taken from the link path
            now: Reference instant for the expiry check, defaults to now

        Returns:
            Ticket: The decoded ticket

        Raises:
            MalformedTicketError: Token was tampered with or is not a ticket
            ExpiredTicketError: Token is older than the validity window
            UnknownOperatorError: Operator is not one of the known actions
            EncryptionError: Encryption is not configured on this server
        """
        try:
            buffer = self._decrypt(token)
        except EncryptionError as e:
            if e.error_code == "not_configured":
                raise
            raise MalformedTicketError("Ticket could not be decrypted") from e
        except Exception as e:
            raise MalformedTicketError(f"Ticket could not be decrypted: {e}") from e

        if len(buffer) <= TIMESTAMP_SIZE:
            raise MalformedTicketError(f"Ticket payload too short ({len(buffer)} bytes)")

        issued_ms = int.from_bytes(buffer[:TIMESTAMP_SIZE], "little")
        now_ms = to_epoch_ms(now or datetime.now(UTC))
        expired = now_ms - issued_ms > self.validity_ms

        try:
            issued_at = from_epoch_ms(issued_ms)
        except (OverflowError, ValueError) as e:
            raise MalformedTicketError(f"Ticket timestamp out of range ({issued_ms})") from e

        if expired:
            raise ExpiredTicketError(
                f"Ticket issued at {issued_at.isoformat()} has expired", issued_at=issued_at
            )

        try:
            text = self._decompress(buffer[TIMESTAMP_SIZE:]).decode("utf-8")
        except (CompressionError, UnicodeDecodeError) as e:
            raise MalformedTicketError(f"Ticket payload is corrupt: {e}") from e
        except Exception as e:
            # Codec primitives are pluggable; never leak their exceptions
            logger.warning("Unexpected ticket decompression failure", error_type=type(e).__name__)
            raise MalformedTicketError(f"Ticket payload is corrupt: {e}") from e

        tokens = text.split()
        if not tokens:
            raise MalformedTicketError("Ticket payload is empty")

        operator_name, *arguments = tokens
        try:
            operator = Operator(operator_name)
        except ValueError as e:
            raise UnknownOperatorError(
                f"Unknown ticket operator '{operator_name[:32]}'", operator=operator_name
            ) from e

        return Ticket(operator=operator, arguments=tuple(arguments), issued_at=issued_at)

    def decode_command(
        self, token: str, now: datetime | None = None
    ) -> tuple[Ticket, TicketCommand]:
        """Decode a token and build its typed command."""
        ticket = self.decode(token, now)
        try:
            command = parse_command(ticket)
        except ValueError as e:
            raise MalformedTicketError(f"Ticket arguments do not match operator: {e}") from e
        return ticket, command


ticket_codec = TicketCodec()
