from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from rich.console import Console
from rich.logging import RichHandler
from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

LOGGER_NAME = "infbook"


class DecodedPathAccessFormatter(UvicornAccessFormatter):
    """Access lines with the request path percent-decoded, so chapter names stay readable."""

    def formatMessage(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        args = record.args
        if isinstance(args, tuple) and len(args) == 5 and isinstance(args[2], str):
            record = copy(record)
            record.args = (*args[:2], unquote(args[2], errors="replace"), *args[3:])
        return super().formatMessage(record)


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    """Return uvicorn's logging config with decoded access paths and the infbook logger."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "infbook.logging_utils.DecodedPathAccessFormatter"
    config.setdefault("loggers", {})[LOGGER_NAME] = {
        "handlers": ["default"],
        "level": "DEBUG" if debug else "INFO",
        "propagate": False,
    }
    return config


def configure_cli_logging(debug: bool = False) -> None:
    """Send infbook log records to stderr through rich."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False
