"""
Wire protocol: message envelope and the pure codec used by Connection.
"""

from .message import Message
from .codec import (
    SEPARATOR,
    LENGTH_KEY,
    CHUNK_SIZE,
    DEFAULT_MAX_HEADER_SIZE,
    MessageDecoder,
    encode_header,
    parse_header,
    iter_chunks,
    frame,
)

__all__ = [
    "Message",
    "MessageDecoder",
    "SEPARATOR",
    "LENGTH_KEY",
    "CHUNK_SIZE",
    "DEFAULT_MAX_HEADER_SIZE",
    "encode_header",
    "parse_header",
    "iter_chunks",
    "frame",
]
