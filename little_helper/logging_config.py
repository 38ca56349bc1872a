"""Structured logging configuration with JSON output."""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from little_helper.utils.redaction import redact_sensitive_data, redact_value

# Attributes every LogRecord carries; anything else arrived through `extra`.
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "request_id"}


class RequestIDFilter(logging.Filter):
    """Add request ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add request_id field to log record."""
        from little_helper.utils.request_context import get_request_id

        record.request_id = get_request_id() or "no-request-id"
        return True


class RedactionFilter(logging.Filter):
    """Scrub credential-looking substrings from messages and extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = redact_sensitive_data(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None

        for key, value in list(record.__dict__.items()):
            if key in _STANDARD_RECORD_ATTRS:
                continue
            if isinstance(value, (str, dict, list, tuple)):
                setattr(record, key, redact_value(value))
        return True


class HealthCheckFilter(logging.Filter):
    """Suppress access logs for successful health check and polling requests.

    Only filters out 200 OK responses - errors (4xx, 5xx) are still logged.
    """

    quiet_paths = (
        "GET /health ",
        "GET /health/ready ",
        "GET /api/v1/commands/",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return all(not (path in message and '" 200' in message) for path in self.quiet_paths)


def configure_json_logging(
    log_level: str = "INFO",
    use_json: bool = True,
) -> None:
    """Configure application logging with optional JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Whether to use JSON output (True) or text output (False)
    """
    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.addFilter(RequestIDFilter())
    stream_handler.addFilter(RedactionFilter())

    if use_json:
        stream_handler.setFormatter(
            JsonFormatter(
                fmt="%(timestamp)s %(levelname)s %(name)s %(message)s %(request_id)s",
                rename_fields={"levelname": "level"},
                timestamp=True,
            )
        )
    else:
        stream_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(stream_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
