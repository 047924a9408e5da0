"""Logging setup: one readable line per record, structured extras as JSON."""

import json
import logging
import sys
from typing import Any

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

# Fan-out issues dozens of requests per seed; keep per-request client logs out of INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed via ``extra=`` on the logging call."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JSONExtrasFormatter(logging.Formatter):
    """``timestamp | LEVEL | logger | message {extras as json}``

    Example:
        2026-01-15 10:30:45 | INFO     | keywordscope.services.volume_enrichment | Volume enrichment complete {"enriched": 40}
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        line = " | ".join(
            (
                self.formatTime(record, self.datefmt),
                f"{record.levelname:<8}",
                record.name,
                record.message,
            )
        )

        extras = record_extras(record)
        if extras:
            try:
                line = f"{line} {json.dumps(extras, default=str, ensure_ascii=False)}"
            except (TypeError, ValueError):
                pass

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


def setup_logging(level: int | None = None) -> None:
    """Attach the console handler to the ``keywordscope`` logger once.

    Level defaults to DEBUG when ``settings.debug`` is on, INFO otherwise.
    """
    if level is None:
        from keywordscope.config import settings

        level = logging.DEBUG if settings.debug else logging.INFO

    logger = logging.getLogger("keywordscope")
    logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if logger.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONExtrasFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
