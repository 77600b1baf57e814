"""
Console logging setup for the ``token_bank`` logger tree.

Library modules only create ``logging.getLogger(__name__)`` loggers; scripts
call ``setup_logging()`` once to see their output.
"""

import logging.config
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: Union[int, str] = "INFO") -> None:
    """Install a stderr handler on the ``token_bank`` logger."""
    if isinstance(level, int):
        level = logging.getLevelName(level)
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "token_bank": {
                "handlers": ["console"],
                "level": level.upper(),
                "propagate": False,
            },
        },
    })
