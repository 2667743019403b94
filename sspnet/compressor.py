"""zlib compression of transport payloads, bounded like a fixed output buffer."""

import zlib

BUFFER_SIZE = 2048 * 2048
"""Largest payload, compressed or not, that is accepted (effective limit on terminal size)."""


def compress(data: bytes) -> bytes:
    """Compress ``data`` with zlib at the default level."""
    result = zlib.compress(bytes(data))
    if len(result) > BUFFER_SIZE:
        raise ValueError(f"compressed payload exceeds {BUFFER_SIZE} bytes")
    return result


def uncompress(data: bytes) -> bytes:
    """Decompress a complete zlib stream of at most BUFFER_SIZE bytes of output."""
    decompressor = zlib.decompressobj()
    try:
        result = decompressor.decompress(bytes(data), BUFFER_SIZE)
        if decompressor.unconsumed_tail or not decompressor.eof:
            if decompressor.decompress(decompressor.unconsumed_tail, 1):
                raise ValueError(f"uncompressed payload exceeds {BUFFER_SIZE} bytes")
    except zlib.error as exc:
        raise ValueError(f"invalid compressed payload: {exc}") from exc
    if not decompressor.eof:
        raise ValueError("truncated compressed payload")
    return result