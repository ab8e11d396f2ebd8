# chatbuild - scheduler - build worker
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

import datetime
import inspect
from datetime import datetime as dt

from chatbuild.builder.builder import Builder, BuildResult
from chatbuild.builder.progress import ProgressEvent, ProgressSink
from chatbuild.notifier import Notifier
from chatbuild.scheduler import logger as parent_logger
from chatbuild.scheduler.types import BuildTask, TaskState
from chatbuild.utils.cancel import CancellationToken

logger = parent_logger.getChild("worker")

# log progress only when crossing one of these steps.
_PROGRESS_LOG_STEP = 20


def _now_str() -> str:
    return dt.now(tz=datetime.UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_success(res: BuildResult) -> str:
    return (
        "build succeeded\n\n"
        + f"branch: {res.branch}\n"
        + f"size: {res.size_mb} MB\n"
        + f"build time: {res.build_duration}s\n"
        + f"total time: {res.total_duration}s\n"
        + f"latest commit: {res.commit_info}\n"
        + f"finished at: {_now_str()}"
    )


def format_failure(branch: str, error: str | None) -> str:
    return (
        "build failed\n\n"
        + f"branch: {branch}\n"
        + f"error: {error or 'unknown error'}\n"
        + f"at: {_now_str()}"
    )


class BuildWorker:
    """
    Executes a scheduled build task and delivers its outcome.

    Runs the build pipeline for the task's branch, then hands the archive to
    the notifier. The archive is always removed afterwards, whether it was
    delivered or not.
    """

    _builder: Builder
    _notifier: Notifier
    _progress: ProgressSink | None

    def __init__(
        self,
        builder: Builder,
        notifier: Notifier,
        *,
        progress: ProgressSink | None = None,
    ) -> None:
        self._builder = builder
        self._notifier = notifier
        self._progress = progress

    def _make_sink(self, task: BuildTask, token: CancellationToken) -> ProgressSink:
        last_logged = -_PROGRESS_LOG_STEP

        async def _sink(event: ProgressEvent) -> None:
            nonlocal last_logged
            if token.cancelled:
                return

            if event.percent - last_logged >= _PROGRESS_LOG_STEP:
                last_logged = event.percent - (event.percent % _PROGRESS_LOG_STEP)
                logger.info(
                    f"build '{task.branch}': {event.percent}% {event.message}"
                )

            if self._progress:
                res = self._progress(event)
                if inspect.isawaitable(res):
                    await res

        return _sink

    async def _notify(self, destination: str, text: str) -> None:
        try:
            await self._notifier.send_message(destination, text)
        except Exception as e:
            logger.error(f"unable to notify '{destination}': {e}")

    async def __call__(self, task: BuildTask, token: CancellationToken) -> TaskState:
        logger.info(
            f"run build '{task.branch}' requested by '{task.requester}' "
            + f"(task {task.id})"
        )

        res = await self._builder.run(
            task.branch, progress=self._make_sink(task, token), token=token
        )

        try:
            # also covers cancelling after the build, right before upload.
            if res.cancelled or token.cancelled:
                logger.info(f"build '{task.branch}' cancelled, nothing delivered")
                return TaskState.cancelled

            if not res.success:
                task.error = res.error
                await self._notify(
                    task.destination, format_failure(task.branch, res.error)
                )
                return TaskState.failed

            assert res.archive_path is not None
            task.state = TaskState.uploading

            await self._notify(task.destination, format_success(res))
            try:
                await self._notifier.send_file(
                    task.destination, res.archive_path, f"archive {res.archive_name}"
                )
            except Exception as e:
                logger.error(f"unable to deliver archive for '{task.branch}': {e}")
                await self._notify(
                    task.destination, f"unable to deliver archive: {e}"
                )

            return TaskState.completed

        finally:
            if res.archive_path:
                res.archive_path.unlink(missing_ok=True)
                logger.debug(f"removed archive '{res.archive_path}'")
