"""
=============================================================================
HANDLERS MODULE
=============================================================================

Built-in connection handlers.

A handler is anything the server can call once per admitted connection:
an object with a handle(connection) method, or a plain function.

    ┌─────────────────────────────────────────────────────────────────────┐
    │              CONNECTION → HANDLER → (receive/reply)*               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Handler receives an OPEN Connection and owns it:                  │
    │   - receive() messages, reply() to them, in any pattern             │
    │   - close() it when done (a `with conn:` block does that)           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
BUILT-IN HANDLERS
=============================================================================

1. EchoHandler
   - Replies to every message with the same body and header
   - Serves any number of messages until the peer disconnects
   - Used by `python -m coolsocket serve`

=============================================================================
"""

from .echo import EchoHandler

__all__ = [
    "EchoHandler",
]
