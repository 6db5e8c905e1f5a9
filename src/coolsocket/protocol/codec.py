"""
=============================================================================
WIRE FORMAT CODEC
=============================================================================

Pure encode/decode logic for the coolsocket wire format. Nothing in this
module touches a socket; Connection feeds it bytes and writes what it
returns.

=============================================================================
THE WIRE FORMAT
=============================================================================

    <header-text> + "\\nHEADER_END\\n" + <exactly `length` body bytes>

    header-text   UTF-8 JSON object, at least {"length": <int >= 0>}
    separator     the literal bytes b"\\nHEADER_END\\n"
    body          raw bytes, no terminator

Example (5 byte body):

    {"length":5}\\nHEADER_END\\nHELLO

=============================================================================
WHY A DECLARED LENGTH?
=============================================================================

TCP is a byte stream. One send() can arrive as many recv() results and
several sends can arrive as one. The receiver needs two facts to cut a
message out of the stream:

1. Where the header ends       -> the separator
2. Where the body ends         -> the declared length

The header is found by searching for the separator in everything received
so far. After that no searching happens: the decoder simply counts body
bytes until it has `length` of them.

    recv() #1:  {"length":11}\\nHEAD
    recv() #2:  ER_END\\nhello w          <- separator found, body starts
    recv() #3:  orld                     <- 11 bytes, message complete

=============================================================================
"""

import json
from typing import Iterator, Optional

from ..errors import MalformedHeader
from .message import Message


SEPARATOR = b"\nHEADER_END\n"
LENGTH_KEY = "length"

# Read and write granularity for both directions. Fixed, not configurable.
CHUNK_SIZE = 8096

DEFAULT_MAX_HEADER_SIZE = 64 * 1024


# =============================================================================
# ENCODING
# =============================================================================

def encode_header(length: int, extra: Optional[dict] = None) -> bytes:
    """
    Serialize a header plus the separator.

    Args:
        length: Body length in bytes.
        extra: Additional header fields. "length" is always overwritten
               with the real body length.

    Returns:
        Header text followed by SEPARATOR, ready to be written.
    """
    if length < 0:
        raise ValueError(f"length must be >= 0, got {length}")

    header = dict(extra) if extra else {}
    header[LENGTH_KEY] = length

    # Compact separators keep the header small; the peer only needs valid JSON.
    return json.dumps(header, separators=(",", ":")).encode("utf-8") + SEPARATOR


def iter_chunks(payload: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[memoryview]:
    """Yield successive CHUNK_SIZE slices of payload without copying."""
    view = memoryview(payload)
    for start in range(0, len(view), chunk_size):
        yield view[start:start + chunk_size]


def frame(payload: Optional[bytes], header: Optional[dict] = None) -> bytes:
    """
    Build a complete message in memory.

    Connection.reply() streams large bodies chunk by chunk instead of using
    this; frame() is convenient for small messages and for tests.
    """
    body = payload or b""
    return encode_header(len(body), header) + body


# =============================================================================
# DECODING
# =============================================================================

def parse_header(raw: bytes) -> dict:
    """
    Parse header text into a dict with a validated "length" field.

    Args:
        raw: Bytes preceding the separator.

    Returns:
        The header object.

    Raises:
        MalformedHeader: If the bytes are not UTF-8 JSON, not an object, or
                         "length" is missing, not an integer, or negative.
    """
    try:
        header = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise MalformedHeader(f"Header is not valid UTF-8: {e}", raw[:256]) from e
    except json.JSONDecodeError as e:
        raise MalformedHeader(f"Header is not valid JSON: {e}", raw[:256]) from e

    if not isinstance(header, dict):
        raise MalformedHeader(
            f"Header must be a JSON object, got {type(header).__name__}", raw[:256]
        )

    if LENGTH_KEY not in header:
        raise MalformedHeader(f"Header has no '{LENGTH_KEY}' field", raw[:256])

    length = header[LENGTH_KEY]

    # bool is a subclass of int; {"length": true} is not a length.
    if isinstance(length, bool) or not isinstance(length, int):
        raise MalformedHeader(f"Header length must be an integer, got {length!r}", raw[:256])

    if length < 0:
        raise MalformedHeader(f"Header length must be >= 0, got {length}", raw[:256])

    return header


class MessageDecoder:
    """
    Incremental decoder for one message.

    Feed it whatever recv() returns; it reports when the message is complete.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       Decoder States                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   HEADER (total_length is None)                                      │
    │       └── append bytes to header buffer                              │
    │       └── separator found? parse header, switch to BODY              │
    │                                                                      │
    │   BODY (total_length known)                                          │
    │       └── append up to the missing number of bytes                   │
    │       └── anything past the end goes to `leftover`                   │
    │                                                                      │
    │   COMPLETE (len(body) == total_length)                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        decoder = MessageDecoder()
        while not decoder.feed(sock.recv(CHUNK_SIZE)):
            pass
        message = decoder.result()
    """

    def __init__(
        self,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
        remote_address: Optional[tuple] = None,
    ):
        self.max_header_size = max_header_size
        self.remote_address = remote_address

        self.header: dict = {}
        self.total_length: Optional[int] = None

        self._header_buffer = bytearray()
        self._body = bytearray()

        # Bytes received after this message ended (belong to the next one)
        self.leftover = b""

        self.bytes_received = 0

    @property
    def body_size(self) -> int:
        return len(self._body)

    @property
    def started(self) -> bool:
        """True once any byte of this message has been fed."""
        return self.bytes_received > 0

    @property
    def is_complete(self) -> bool:
        return self.total_length is not None and len(self._body) == self.total_length

    def feed(self, data: bytes) -> bool:
        """
        Consume received bytes.

        Args:
            data: Bytes from the stream. May be empty.

        Returns:
            True if the message is complete.

        Raises:
            MalformedHeader: If the header is invalid or grows past
                             max_header_size without a separator.
        """
        if self.is_complete:
            self.leftover += bytes(data)
            return True

        self.bytes_received += len(data)

        if self.total_length is None:
            data = self._consume_header(data)
            if self.total_length is None:
                return False

        missing = self.total_length - len(self._body)
        self._body += data[:missing]
        if len(data) > missing:
            self.leftover += bytes(data[missing:])

        return self.is_complete

    def _consume_header(self, data: bytes) -> bytes:
        """Accumulate header bytes; return the body bytes that followed them."""
        self._header_buffer += data

        end = self._header_buffer.find(SEPARATOR)
        if end == -1:
            # The separator may straddle two reads, so allow its length extra.
            if len(self._header_buffer) > self.max_header_size + len(SEPARATOR):
                raise MalformedHeader(
                    f"No header separator within {self.max_header_size} bytes",
                    bytes(self._header_buffer[:256]),
                )
            return b""

        if end > self.max_header_size:
            raise MalformedHeader(
                f"Header is {end} bytes, limit is {self.max_header_size}",
                bytes(self._header_buffer[:256]),
            )

        self.header = parse_header(bytes(self._header_buffer[:end]))
        self.total_length = self.header[LENGTH_KEY]

        rest = bytes(self._header_buffer[end + len(SEPARATOR):])
        self._header_buffer.clear()
        return rest

    def result(self) -> Message:
        """Build the Message (complete or not) from what has been decoded."""
        return Message(
            header=self.header,
            body=bytes(self._body),
            total_length=self.total_length,
            remote_address=self.remote_address,
        )


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# encode_header()  {"length": n} + SEPARATOR
# frame()          whole message in memory
# iter_chunks()    CHUNK_SIZE views for streaming writes
# parse_header()   bytes -> validated header dict
# MessageDecoder   incremental reassembly across partial reads
# =============================================================================
