# chatbuild - commands - branches
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

import asyncio
import errno
import sys

import click
import rich.box
from rich.table import Table

from chatbuild.cmds import console, perror, pwarn, with_config
from chatbuild.config import Config
from chatbuild.utils import CommandExecutor
from chatbuild.utils.git import BranchResolver, GitError, GitRepo
from chatbuild.utils.outcome import Degraded


@click.command("branches", help="List branches available for building.")
@click.option(
    "-n",
    "--limit",
    type=click.IntRange(min=1),
    default=50,
    show_default=True,
    help="Show at most this many branches.",
)
@with_config
def cmd_branches(config: Config, limit: int) -> None:
    repo = GitRepo(CommandExecutor(), config.project_path)
    resolver = BranchResolver(repo, auto_fetch=config.build.auto_fetch_pull)

    try:
        res = asyncio.run(resolver.list_branches())
    except GitError as e:
        perror(f"unable to list branches: {e}")
        sys.exit(errno.EIO)

    if isinstance(res, Degraded):
        pwarn(res.warning)

    branches = res.value
    if not branches:
        console.print("no branches found")
        return

    table = Table(show_header=True, show_lines=False, box=rich.box.HORIZONTALS)
    table.add_column("#", justify="right", style="dim", no_wrap=True)
    table.add_column("Branch", justify="left", style="bold cyan", no_wrap=True)
    table.add_column("Allowed", justify="left", no_wrap=True)

    for idx, name in enumerate(branches[:limit], start=1):
        allowed = (
            "[green]yes[/green]"
            if config.build.is_branch_allowed(name)
            else "[red]no[/red]"
        )
        table.add_row(str(idx), name, allowed)

    console.print(table)

    if len(branches) > limit:
        console.print(f"... and {len(branches) - limit} more branches not shown")
