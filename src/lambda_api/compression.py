"""
=============================================================================
RESPONSE COMPRESSION
=============================================================================

Compresses serialized response bodies based on the Accept-Encoding
request header.

    Request:   accept-encoding: gzip, deflate
    App:       compression=["br", "gzip"]
                          │
                          ▼
    Negotiation walks the APP's list in priority order and picks the
    first encoding the client accepts  →  "gzip"
                          │
                          ▼
    Response:  content-encoding: gzip
               isBase64Encoded:  true
               body:             base64(gzip(serialized body))

API Gateway carries bodies as strings, so compressed bytes are always
base64-encoded and the base64 flag is forced on. With no overlap the
body is sent as-is and no Content-Encoding header is added.

=============================================================================
ENCODINGS
=============================================================================

    br       Brotli (brotli package)
    gzip     gzip container, mtime fixed at 0 so output is deterministic
    deflate  zlib stream, which is what browsers expect for "deflate"

=============================================================================
"""

import base64
import gzip
import logging
import zlib
from typing import Iterable, Mapping, Optional

import brotli


logger = logging.getLogger(__name__)

SUPPORTED_ENCODINGS = ("br", "gzip", "deflate")


def negotiate(app_encodings: Iterable[str], accepted: Mapping[str, float]) -> Optional[str]:
    """
    Pick the highest-priority app encoding the client accepts.

    An encoding the client lists with q=0 is refused even when "*" is
    present.

    Args:
        app_encodings: Encodings configured on the app, in priority order.
        accepted: Quality per encoding, see parse_accept_encoding().

    Returns:
        The chosen encoding, or None when there is no overlap.
    """
    wildcard = accepted.get("*", 0.0)
    for encoding in app_encodings:
        if accepted.get(encoding, wildcard) > 0:
            return encoding
    return None


def compress(data: bytes, encoding: str, level: int = 6) -> bytes:
    """
    Compress bytes with one of SUPPORTED_ENCODINGS.

    Raises:
        ValueError: for an unsupported encoding.
    """
    if encoding == "br":
        return brotli.compress(data)
    if encoding == "gzip":
        return gzip.compress(data, compresslevel=level, mtime=0)
    if encoding == "deflate":
        return zlib.compress(data, level)
    raise ValueError(f"Unsupported encoding: {encoding}")


def compress_body(body: bytes, encoding: str) -> str:
    """Compress and base64-encode a body for the gateway payload."""
    compressed = compress(body, encoding)
    logger.debug(
        "Compressed body with %s: %d -> %d bytes",
        encoding, len(body), len(compressed),
    )
    return base64.b64encode(compressed).decode("ascii")
