from __future__ import annotations

import logging
from typing import Iterable

TRACE_LEVEL = 5
MASK = "********"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_COLORS = {
    "TRACE": "cyan",
    "DEBUG": "blue",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: object) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, message, args, **kwargs)


class SecretFilter(logging.Filter):
    """Mask known secrets (database passwords) in rendered log messages."""

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        self.secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # left for Handler.handleError once the record is emitted
            return True
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(level: int, secrets: Iterable[str] = ()) -> None:
    """Install a single stderr handler that masks ``secrets`` in every record."""
    logging.addLevelName(TRACE_LEVEL, "TRACE")
    setattr(logging.Logger, "trace", _trace)
    handler = logging.StreamHandler()
    try:
        from colorlog import ColoredFormatter  # type: ignore

        handler.setFormatter(ColoredFormatter("%(log_color)s" + LOG_FORMAT, log_colors=LOG_COLORS))
    except ImportError:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SecretFilter(secrets))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def resolve_log_level(verbosity: int, fallback: str) -> int:
    if verbosity >= 2:
        return TRACE_LEVEL
    if verbosity == 1:
        return logging.DEBUG
    if fallback.upper() == "TRACE":
        return TRACE_LEVEL
    return logging._nameToLevel.get(fallback.upper(), logging.INFO)
