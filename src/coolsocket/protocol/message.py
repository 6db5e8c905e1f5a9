"""
Message envelope returned by Connection.receive().

A message is the unit of exchange on a connection: one header object
followed by exactly `length` body bytes.

    ┌──────────────────────────────┬────────────────┬──────────────────┐
    │ {"length": 5}                │ \\nHEADER_END\\n │ HELLO            │
    │ header (UTF-8 JSON object)   │ separator      │ body (5 bytes)   │
    └──────────────────────────────┴────────────────┴──────────────────┘
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Message:
    """
    One framed message.

    Attributes:
        header: Parsed header object. Always contains "length" once known.
        body: Body bytes received so far (all of them once complete).
        total_length: Declared body length. None until the header has been
                      parsed; set exactly once per message. 0 is a valid,
                      immediately complete, empty body.
        remote_address: (host, port) of the peer that sent the message.
    """

    header: dict = field(default_factory=dict)
    body: bytes = b""
    total_length: Optional[int] = None
    remote_address: Optional[tuple] = None

    @property
    def is_complete(self) -> bool:
        """True once the body holds exactly the declared number of bytes."""
        return self.total_length is not None and len(self.body) == self.total_length

    @property
    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.body.decode("utf-8")

    @property
    def json(self) -> Any:
        """Body parsed as JSON (raises ValueError if it is not JSON)."""
        return json.loads(self.text)

    def __len__(self) -> int:
        return len(self.body)
