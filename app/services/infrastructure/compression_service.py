"""
Compression codec used to shrink ticket payloads before encryption.
"""

import zlib

# Decompressed tickets are short command lines; anything larger is hostile
MAX_DECOMPRESSED_SIZE = 16 * 1024


class CompressionError(Exception):
    """Raised when a payload cannot be decompressed."""

    pass


def compress(data: bytes) -> bytes:
    return zlib.compress(data, 9)


def decompress(data: bytes, max_size: int = MAX_DECOMPRESSED_SIZE) -> bytes:
    """
    Inflate a payload produced by compress().

    Raises:
        CompressionError: If the stream is corrupt, truncated or inflates
            beyond max_size
    """
    inflater = zlib.decompressobj()
    try:
        result = inflater.decompress(data, max_size)
    except zlib.error as e:
        raise CompressionError(f"Corrupt compressed stream: {e}") from e

    if inflater.unconsumed_tail:
        raise CompressionError(f"Decompressed payload exceeds {max_size} bytes")
    if not inflater.eof:
        raise CompressionError("Truncated compressed stream")

    return result
