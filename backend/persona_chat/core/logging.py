from __future__ import annotations

import logging

from persona_chat.core.security import redact_secrets

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class RedactionFilter(logging.Filter):
    """Log filter that masks provider keys before output.

    The message is rendered once and stored without args, so format specifiers
    such as ``%d`` in third-party records still see their original values.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Leave malformed records to the handler's own error reporting.
            record.msg = redact_secrets(str(record.msg))
            return True
        record.msg = redact_secrets(message)
        record.args = ()
        return True


def setup_logging(level: str) -> None:
    """Configure application logging with secret redaction."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # Handler-level so records propagated from module loggers are redacted too.
    for handler in logging.getLogger().handlers:
        if not any(isinstance(item, RedactionFilter) for item in handler.filters):
            handler.addFilter(RedactionFilter())
