"""Logging Hardening and Redaction.

Rotation handlers log events and vault responses; this module keeps credential
values (generated passwords, secret strings, rotated fields) out of the logs.
"""
import logging
import re

# Matches "field": "value" and field=value forms for credential-bearing keys.
_SENSITIVE_FIELDS = r"(?:authMasterKey|password|SecretString|RandomPassword|secret|api_key|token_value)"

SECRET_PATTERNS = [
    (re.compile(r'(["\']' + _SENSITIVE_FIELDS + r'["\']\s*:\s*["\'])[^"\']*(["\'])', re.IGNORECASE), r'\1[REDACTED]\2'),
    (re.compile(r'(\b' + _SENSITIVE_FIELDS + r'=)[^\s,)]+', re.IGNORECASE), r'\1[REDACTED]'),
]


def redact(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        elif isinstance(record.msg, dict):
            record.msg = redact(str(record.msg))

        # Also redact arguments if they are strings or mappings
        if record.args and isinstance(record.args, tuple):
            new_args = []
            for arg in record.args:
                if isinstance(arg, (str, dict)):
                    arg = redact(str(arg))
                new_args.append(arg)
            record.args = tuple(new_args)

        return True


def setup_logging_redaction() -> None:
    """Apply the SecretRedactionFilter to the root logger and all existing loggers."""
    redact_filter = SecretRedactionFilter()

    root_logger = logging.getLogger()

    # Remove existing filters if any (to avoid duplicates)
    for f in root_logger.filters[:]:
        if isinstance(f, SecretRedactionFilter):
            root_logger.removeFilter(f)
    root_logger.addFilter(redact_filter)

    # Handlers see records from child loggers that never pass the root filter
    for handler in root_logger.handlers:
        if not any(isinstance(f, SecretRedactionFilter) for f in handler.filters):
            handler.addFilter(redact_filter)

    for name in logging.root.manager.loggerDict:
        logger = logging.getLogger(name)
        if not any(isinstance(f, SecretRedactionFilter) for f in logger.filters):
            logger.addFilter(redact_filter)

    logging.info("Logging redaction filters active.")


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger and install redaction."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    setup_logging_redaction()
