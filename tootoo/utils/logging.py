"""
Root logger setup for the CLI and the API server.

Library modules only ever do ``logger = logging.getLogger(__name__)``;
``configure_logging()`` is called once by the entry point and decides where
records go (stdout, plus a file when ``logging.log_file`` is set) and how
they look.

Plain format::

    2026-01-15T07:05:00Z [INFO] tootoo.pipeline.eod: EOD state DONE | as_of_date=2026-01-15

JSON-lines format (``logging.json_format = true``)::

    {"ts": "2026-01-15T07:05:00Z", "level": "INFO", "logger": "tootoo.pipeline.eod",
     "msg": "EOD state DONE | as_of_date=2026-01-15", "as_of_date": "2026-01-15",
     "state": "DONE"}

Anything passed through ``extra=`` becomes a top-level JSON key, which is
how the run coordinator tags every line with its as-of date.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tootoo.config import LoggingConfig

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _UtcFormatter(logging.Formatter):
    converter = time.gmtime


class _JsonFormatter(_UtcFormatter):
    """One JSON object per record; ``extra=`` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, TIMESTAMP_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        )
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_logging(config: "LoggingConfig") -> None:
    """Install handlers on the root logger according to ``config``.

    Replaces any handlers installed by an earlier call, so calling it twice
    (e.g. in tests) does not duplicate output.
    """
    level = logging.getLevelName(config.level.upper())
    formatter = (
        _JsonFormatter()
        if config.json_format
        else _UtcFormatter(PLAIN_FORMAT, datefmt=TIMESTAMP_FORMAT)
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        path = Path(config.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
