"""
=============================================================================
EXCEPTIONS
=============================================================================

Every failure coolsocket raises on purpose derives from CoolSocketError, so
applications can catch the whole family with one except clause.

    CoolSocketError
    ├── FramingError                 Problems while moving one message
    │   ├── FramingTimeout           Deadline passed mid receive()/reply()
    │   ├── MalformedHeader          Header is not valid / has no length
    │   └── IncompleteMessage        Peer hung up before the body ended
    └── ConnectionStateError         Operation not allowed in this state
        └── ConnectionClosedError    Operation on a CLOSED connection

The framing errors also inherit from the matching builtin (TimeoutError,
ValueError, ConnectionError) so generic handlers keep working:

    try:
        message = conn.receive()
    except TimeoutError:
        ...   # catches FramingTimeout

Failures that are reported through return values instead of exceptions:

    Bind failure       Listener.start() returns False
    Capacity exceeded  AdmissionController.try_admit() returns False

=============================================================================
"""

from typing import Optional


class CoolSocketError(Exception):
    """Base class for all coolsocket errors."""


class FramingError(CoolSocketError):
    """A message could not be sent or received as a whole."""


class FramingTimeout(FramingError, TimeoutError):
    """
    The deadline for a receive() or reply() call elapsed.

    The connection is still technically open, but the stream is now at an
    unknown position inside a message. The owner should close it.
    """


class MalformedHeader(FramingError, ValueError):
    """
    The header text did not parse into an object with a valid length.

    Attributes:
        raw: The offending header bytes (possibly truncated).
    """

    def __init__(self, message: str, raw: bytes = b""):
        super().__init__(message)
        self.raw = raw


class IncompleteMessage(FramingError, ConnectionError):
    """
    The stream ended before the declared body length was reached.

    Attributes:
        expected: Declared body length, or None if the header never arrived.
        received: Body bytes received before the stream ended.
        started: False if not a single byte of the message had arrived,
                 i.e. the peer closed cleanly between messages.
    """

    def __init__(self, expected: Optional[int], received: int, started: bool = True):
        if not started:
            detail = "stream ended before the message started"
        elif expected is None:
            detail = "stream ended before the header was complete"
        else:
            detail = f"stream ended after {received} of {expected} body bytes"
        super().__init__(f"Incomplete message: {detail}")
        self.expected = expected
        self.received = received
        self.started = started


class ConnectionStateError(CoolSocketError):
    """The connection is not in a state that allows the operation."""


class ConnectionClosedError(ConnectionStateError):
    """The connection has been closed and cannot be used again."""
