import json
import logging
from typing import Iterable

# Context attached through `extra=` by the pipeline and EventLog
CONTEXT_FIELDS = ("category", "source_id", "digest_id", "details")

# Libraries that log every request or query at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "hpack")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message and any pipeline context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({
            name: getattr(record, name)
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        })
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: int = logging.INFO, quiet: Iterable[str] = NOISY_LOGGERS) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    # replace handlers so repeated calls (tests, reloads) don't duplicate lines
    for existing in list(root.handlers):
        root.removeHandler(existing)

    stream = logging.StreamHandler()
    stream.setFormatter(JsonFormatter())
    root.addHandler(stream)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
