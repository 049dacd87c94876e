from __future__ import annotations

import logging

_ROOT_LOGGER_NAME = "estateops"
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_HANDLER_MARKER = "_estateops_handler"


def configure_logging(level: str = "INFO") -> None:
    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(level.upper())

    for handler in logger.handlers:
        if getattr(handler, _HANDLER_MARKER, False):
            handler.setLevel(level.upper())
            return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler.setLevel(level.upper())
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    logger.propagate = False
