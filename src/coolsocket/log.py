"""
Logging configuration.

coolsocket modules only ever do `logger = logging.getLogger(__name__)`;
they never configure handlers themselves. Applications that embed the
library keep full control. The CLI (and anyone who wants the defaults)
calls setup_logging() once at startup.

    text:  2026-01-15 12:30:45 [INFO] coolsocket.core.listener: Listening on 127.0.0.1:8080
    json:  {"time": "2026-01-15 12:30:45", "level": "INFO", "logger": "...", "message": "..."}

JSON lines are easier for log aggregators (ELK, Datadog); text is easier
for humans.
"""

import json
import logging


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """Format each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """
    Configure the root logger.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "text" or "json".
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    # force=True: replace whatever an earlier basicConfig() installed
    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)

    logging.getLogger("coolsocket").setLevel(numeric_level)
