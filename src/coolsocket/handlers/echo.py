"""
Echo handler: reply to every message with itself.

Useful as a smoke test for a deployment and as the reference example of
a handler that serves many messages over one connection.
"""

import logging

from ..core.connection import Connection
from ..errors import IncompleteMessage


logger = logging.getLogger(__name__)


class EchoHandler:
    """
    Echo every received message back to the sender.

    Args:
        max_messages: Close after this many messages (None = until the
                      peer disconnects).
        echo_header: Also send back the extra header fields of the
                     received message.
    """

    def __init__(self, max_messages=None, echo_header: bool = True):
        self.max_messages = max_messages
        self.echo_header = echo_header

    def handle(self, connection: Connection) -> None:
        with connection:
            count = 0
            while self.max_messages is None or count < self.max_messages:
                try:
                    message = connection.receive()
                except IncompleteMessage as e:
                    if not e.started:
                        # Peer closed cleanly between messages
                        break
                    raise

                header = dict(message.header) if self.echo_header else None
                connection.reply(message.body, header)
                count += 1

            logger.debug(f"[{connection.id}] Echoed {count} message(s)")
