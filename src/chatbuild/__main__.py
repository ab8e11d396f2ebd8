#!/usr/bin/env python3

# Builds project branches on request and delivers their archives
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

import logging
from pathlib import Path

import click

from chatbuild.cmds import Ctx, branches, builds, config, pass_ctx, set_log_level
from chatbuild.cmds import logger as parent_logger
from chatbuild.logger import setup_logging

logger = parent_logger.getChild("main")


@click.group()
@click.option(
    "-d", "--debug", help="Enable debug output", is_flag=True, envvar="CHATBUILD_DEBUG"
)
@click.option(
    "-c",
    "--config",
    "config_path",
    help="Path to configuration file.",
    type=click.Path(
        exists=False,
        dir_okay=False,
        file_okay=True,
        readable=True,
        resolve_path=True,
        path_type=Path,
    ),
    required=True,
    default="chatbuild.config.yaml",
)
@click.option(
    "--log-file",
    "log_file",
    help="Also write logs to this file.",
    type=click.Path(dir_okay=False, file_okay=True, path_type=Path),
    required=False,
)
@pass_ctx
def cmd_main(ctx: Ctx, debug: bool, config_path: Path, log_file: Path | None) -> None:
    setup_logging(
        "DEBUG" if debug else None, log_file=str(log_file) if log_file else None
    )
    if debug:
        set_log_level(logging.DEBUG)

    ctx.config_path = config_path


cmd_main.add_command(config.cmd_config)
cmd_main.add_command(branches.cmd_branches)
cmd_main.add_command(builds.cmd_build)
cmd_main.add_command(builds.cmd_queue)


if __name__ == "__main__":
    cmd_main()
