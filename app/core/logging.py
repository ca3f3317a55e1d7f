"""
Logging setup for the connector.

One stdout handler with a pipe-separated format, plus a filter that masks
bearer tokens and OAuth secrets should one ever reach a log message.
"""

import logging
import re
import sys

_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(
        r"(?i)((?:access_token|refresh_token|code_verifier|client_secret|code)=)[^&\s\"']+"
    ),
    re.compile(r"(?i)(\"(?:access_token|refresh_token)\"\s*:\s*\")[^\"]+"),
)
_MASK = "***"


def redact(message: str) -> str:
    """Mask token-like values in ``message``."""
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(lambda match: f"{match.group(1)}{_MASK}", message)
    return message


class RedactingFilter(logging.Filter):
    """Rewrite records so their rendered message carries no credentials."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        cleaned = redact(rendered)
        if cleaned != rendered:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the connector's format and redaction."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    )
    handler.addFilter(RedactingFilter())
    logging.basicConfig(level=level.upper(), handlers=[handler])
    # httpx logs every request URL at INFO, including token endpoint calls.
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["RedactingFilter", "configure_logging", "redact"]
