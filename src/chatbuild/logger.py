# chatbuild - logging
# Copyright (C) 2025  Clyso GmbH
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# pyright: reportExplicitAny=false

import logging
import logging.config
import os
from typing import Any

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_level_name() -> str:
    level = logging.INFO if not os.getenv("CHATBUILD_DEBUG") else logging.DEBUG
    return logging.getLevelName(level)


def setup_logging(
    level: str | None = None,
    *,
    log_file: str | None = None,
) -> None:
    level = level if level else get_level_name()
    file_handler: dict[str, Any] | None = None

    if log_file is not None:
        file_handler = {
            "level": "DEBUG",
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "simple",
            "filename": log_file,
            "maxBytes": 10485760,
            "backupCount": 1,
        }

    cfg: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "rich": {
                "format": "[%(name)s] %(message)s",
                "datefmt": DATE_FORMAT,
            },
            "simple": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                "datefmt": DATE_FORMAT,
            },
        },
        "handlers": {
            "console": {
                "level": level,
                "class": "rich.logging.RichHandler",
                "formatter": "rich",
                "show_path": False,
            },
        },
    }

    handlers: list[str] = ["console"]

    if file_handler is not None:
        cfg["handlers"]["log_file"] = file_handler
        handlers.append("log_file")

    cfg["root"] = {
        "level": level,
        "handlers": handlers,
    }

    logging.config.dictConfig(cfg)


# application logger
#
logger = logging.getLogger("chatbuild")
