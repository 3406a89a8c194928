"""
Structured JSON logging.

Logs go to stdout, one JSON object per line, so that a log collector can
index the structured fields. Structured data is attached through the
standard `extra` mechanism under the "log_data" key:

    logger.info("Token issued", extra={"log_data": {"client_id": "chatgpt"}})

produces

    {"timestamp": "...", "level": "INFO", "logger": "tmdb-mcp.oauth",
     "message": "Token issued", "client_id": "chatgpt"}
"""

import json
import logging
import sys


class JSONLogFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "log_data"):
            log_entry.update(record.log_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "info") -> None:
    """Install the JSON formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )


def redact(secret: str | None) -> str:
    """Shorten a credential for logging: enough to correlate, not to reuse."""
    if not secret:
        return ""
    return f"{secret[:6]}..."
