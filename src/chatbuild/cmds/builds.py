# chatbuild - commands - builds
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
import getpass
import sys

import click
from rich.padding import Padding
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from chatbuild.builder.builder import Builder, BuildResult
from chatbuild.builder.progress import ProgressEvent
from chatbuild.cmds import console, perror, pinfo, psuccess, pwarn, with_config
from chatbuild.cmds import logger as parent_logger
from chatbuild.config import Config
from chatbuild.errors import BranchNotAllowedError, MalformedBranchError
from chatbuild.mgr import (
    BuildsMgr,
    RequestError,
    RequestReport,
    check_branch_allowed,
    check_branch_name,
)
from chatbuild.notifier import DirectoryNotifier
from chatbuild.scheduler.types import TaskState
from chatbuild.utils import CommandExecutor

logger = parent_logger.getChild("builds")


def _print_result(res: BuildResult) -> None:
    table = Table(show_header=False, show_lines=False, box=None)
    table.add_column(justify="right", style="bold cyan", no_wrap=True)
    table.add_column(justify="left", style="magenta", no_wrap=False)
    table.add_row("Branch", res.branch)
    table.add_row("Archive", str(res.archive_path))
    table.add_row("Size", f"{res.size_mb} MB")
    table.add_row("Build time", f"{res.build_duration}s")
    table.add_row("Total time", f"{res.total_duration}s")
    table.add_row("Latest commit", res.commit_info or "n/a")
    console.print(Padding(table, (1, 0, 1, 0)))


@click.command("build", help="Build a branch once, in the foreground.")
@click.argument("branch", metavar="BRANCH", type=str, required=True)
@click.option(
    "--keep",
    is_flag=True,
    default=False,
    help="Keep the resulting archive instead of removing it.",
)
@with_config
def cmd_build(config: Config, branch: str, keep: bool) -> None:
    try:
        check_branch_name(branch)
    except MalformedBranchError as e:
        perror(str(e))
        sys.exit(errno.EINVAL)

    try:
        check_branch_allowed(config.build, branch)
    except BranchNotAllowedError as e:
        perror(f"{e}, allowed branches: {', '.join(config.build.allowed_branches)}")
        sys.exit(errno.EACCES)

    builder = Builder(config.project_path, config.build, CommandExecutor())

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task(f"building '{branch}'", total=100)

        def _on_progress(event: ProgressEvent) -> None:
            progress.update(
                task_id,
                completed=event.percent,
                description=f"[{event.stage.value}] {event.message}",
            )

        res = asyncio.run(builder.run(branch, progress=_on_progress))

    if not res.success:
        perror(f"build of '{branch}' failed: {res.error}")
        sys.exit(errno.EIO)

    psuccess(f"build of '{branch}' succeeded")
    _print_result(res)

    assert res.archive_path is not None
    if not keep:
        res.archive_path.unlink(missing_ok=True)
        pinfo(f"removed archive '{res.archive_path}'")


def _print_report(report: RequestReport) -> None:
    if report.rejected_user:
        perror("user not allowed to request builds")
        return

    for name in report.malformed:
        pwarn(f"malformed branch name: {name}")
    if report.disallowed:
        perror(f"branches not allowed: {', '.join(report.disallowed)}")
    for name in report.unknown:
        pwarn(f"unknown branch: {name}")
    if report.deferred:
        pwarn("unable to check branches, they will be checked on checkout")
    for name in report.started:
        pinfo(f"started build of '{name}'")
    for name, pos in report.queued:
        pinfo(f"queued build of '{name}' at position {pos}")
    for name in report.duplicates:
        pwarn(f"'{name}' is already building or queued")


@click.command("queue", help="Queue builds for one or more branches.")
@click.argument("branches", metavar="BRANCH...", type=str, nargs=-1, required=True)
@click.option(
    "-u",
    "--user",
    "requester",
    type=str,
    default=getpass.getuser,
    help="User requesting the builds (default: current user).",
)
@click.option(
    "--to",
    "destination",
    type=str,
    default="local",
    show_default=True,
    help="Where to deliver build archives, under the delivery path.",
)
@with_config
def cmd_queue(
    config: Config, branches: tuple[str, ...], requester: str, destination: str
) -> None:
    logger.debug(f"queue {list(branches)} for '{requester}', to '{destination}'")
    notifier = DirectoryNotifier(config.delivery.path)

    async def _run() -> tuple[RequestReport, list[TaskState]]:
        mgr = BuildsMgr.from_config(config, notifier)
        report = await mgr.request(branches, requester, destination)
        _print_report(report)
        await mgr.scheduler.wait_idle()
        return report, [t.state for t in mgr.scheduler.history]

    try:
        report, states = asyncio.run(_run())
    except RequestError as e:
        perror(str(e))
        sys.exit(errno.EINVAL)

    if report.rejected_user or report.disallowed:
        sys.exit(errno.EACCES)

    if report.admitted == 0:
        perror("no builds were admitted")
        sys.exit(errno.EINVAL)

    completed = states.count(TaskState.completed)
    failed = len(states) - completed
    if failed:
        perror(f"{completed} builds completed, {failed} did not")
        sys.exit(errno.EIO)

    psuccess(
        f"{completed} builds completed, delivered to "
        + f"'{notifier.destination_path(destination)}'"
    )
