"""
Encryption service for action tickets.
Uses Fernet symmetric encryption, whose tokens are URL-safe base64 and can be
embedded directly in a link path segment.
"""

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""

    def __init__(self, message: str, error_code: str = "encryption_failed"):
        super().__init__(message)
        self.error_code = error_code


def _get_fernet() -> Fernet:
    """
    Get Fernet instance with encryption key from environment.

    Returns:
        Fernet: Configured Fernet instance

    Raises:
        EncryptionError: If encryption key is not configured
    """
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError(
            "ENCRYPTION_KEY not configured in environment", error_code="not_configured"
        )

    try:
        key_bytes = settings.ENCRYPTION_KEY.encode("utf-8")
        return Fernet(key_bytes)
    except Exception as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}", error_code="not_configured") from e


def encrypt_bytes(data: bytes) -> str:
    """
    Encrypt a binary payload into a URL-safe token.

    Args:
        data: Raw bytes to encrypt

    Returns:
        str: URL-safe token

    Raises:
        EncryptionError: If encryption fails
    """
    if not data or not isinstance(data, bytes):
        raise EncryptionError("Payload must be non-empty bytes", error_code="invalid_payload")

    fernet = _get_fernet()

    try:
        token = fernet.encrypt(data).decode("ascii")

        logger.debug(
            "Payload encrypted successfully",
            payload_length=len(data),
            token_length=len(token),
        )

        return token

    except Exception as e:
        logger.error("Failed to encrypt payload", error=str(e))
        raise EncryptionError(f"Encryption failed: {e}") from e


def decrypt_bytes(token: str) -> bytes:
    """
    Decrypt a URL-safe token back into its binary payload.

    Args:
        token: Token produced by encrypt_bytes

    Returns:
        bytes: Decrypted payload

    Raises:
        EncryptionError: With error_code "invalid_token" if the token was
            tampered with or is not a token at all, "not_configured" if no key
            is available
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string", error_code="invalid_token")

    fernet = _get_fernet()

    try:
        return fernet.decrypt(token.encode("ascii"))

    except (InvalidToken, UnicodeEncodeError, ValueError, TypeError) as e:
        # Client supplied garbage; not an operational error
        logger.warning(
            "Token decryption failed - invalid token",
            token_length=len(token),
            error_type=type(e).__name__,
        )
        raise EncryptionError("Invalid or corrupted token", error_code="invalid_token") from e


def validate_encryption_config() -> bool:
    """
    Validate that encryption is properly configured.

    Returns:
        bool: True if encryption is configured and working
    """
    try:
        test_data = b"test_encryption_12345"
        token = encrypt_bytes(test_data)
        is_valid = decrypt_bytes(token) == test_data

        if is_valid:
            logger.info("Encryption configuration validated successfully")
        else:
            logger.error("Encryption validation failed - data mismatch")

        return is_valid

    except Exception as e:
        logger.error("Encryption configuration validation failed", error=str(e))
        return False


def generate_new_key() -> str:
    """
    Generate a new Fernet encryption key.

    Returns:
        str: Base64-encoded Fernet key

    Note:
        Rotating the key invalidates every ticket already mailed out.
    """
    key = Fernet.generate_key()
    key_str = key.decode("utf-8")

    logger.info("New encryption key generated")

    return key_str
