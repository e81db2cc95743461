from __future__ import annotations

import logging

TRACE_LEVEL = 5

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: object) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, message, args, **kwargs)


def build_formatter() -> logging.Formatter:
    try:
        from colorlog import ColoredFormatter  # type: ignore
    except ImportError:
        return logging.Formatter(LOG_FORMAT)
    return ColoredFormatter(
        "%(log_color)s" + LOG_FORMAT,
        log_colors={
            "TRACE": "cyan",
            "DEBUG": "blue",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
    )


def configure_logging(level: int) -> None:
    logging.addLevelName(TRACE_LEVEL, "TRACE")
    setattr(logging.Logger, "trace", _trace)
    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def resolve_log_level(verbosity: int, fallback: str) -> int:
    if verbosity >= 2:
        return TRACE_LEVEL
    if verbosity == 1:
        return logging.DEBUG
    return logging._nameToLevel.get(fallback.upper(), logging.INFO)
