from __future__ import annotations

import logging

import colorlog

_HANDLER_NAME = "gearout-console"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Colored console logging for the gearout package (safe to call on every rerun)."""
    logger = logging.getLogger("gearout")
    logger.setLevel(level)
    if any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        return logger

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s[%(asctime)s] %(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s %(message)s",
        datefmt="%H:%M:%S",
        reset=True,
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
        style="%",
    ))
    logger.addHandler(handler)
    return logger
