# chatbuild - commands
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

import errno
import sys
from collections.abc import Callable
from functools import update_wrapper
from pathlib import Path
from typing import Concatenate

import click
from rich.console import Console

from chatbuild.config import Config, ConfigError
from chatbuild.logger import logger as root_logger

logger = root_logger.getChild("cmds")

console = Console()
err_console = Console(stderr=True)


class Ctx:
    config_path: Path | None = None


pass_ctx = click.make_pass_decorator(Ctx, ensure=True)


def with_config[R, **P](
    f: Callable[Concatenate[Config, P], R],
) -> Callable[P, R]:
    """Load the configuration file from the context and pass it to `f`."""

    def inner(*args: P.args, **kwargs: P.kwargs) -> R:
        curr_ctx = click.get_current_context()
        ctx = curr_ctx.find_object(Ctx)
        if not ctx:
            logger.error(f"missing context for '{f.__name__}'")
            sys.exit(errno.ENOTRECOVERABLE)
        if not ctx.config_path:
            logger.error("configuration file path not provided")
            sys.exit(errno.EINVAL)

        try:
            config = Config.load(ctx.config_path)
        except ConfigError as e:
            perror(f"unable to read configuration file: {e}")
            sys.exit(errno.ENOENT if not ctx.config_path.exists() else errno.EINVAL)

        return f(config, *args, **kwargs)

    return update_wrapper(inner, f)


def set_log_level(lvl: int) -> None:
    root_logger.setLevel(lvl)


def perror(s: str) -> None:
    err_console.print(f"[bold][red]error:[/red] {s}[/bold]")


def pwarn(s: str) -> None:
    err_console.print(f"[bold yellow]warning:[/bold yellow] {s}")


def pinfo(s: str) -> None:
    console.print(s, style="cyan")


def psuccess(s: str) -> None:
    console.print(s, style="bold green")
