# chatbuild - scheduler - single-flight build scheduler
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
from collections import deque
from collections.abc import Awaitable, Callable

from chatbuild.scheduler import SchedulerError
from chatbuild.scheduler import logger as parent_logger
from chatbuild.scheduler.types import (
    AdmitResult,
    AdmitStatus,
    BuildTask,
    CancelResult,
    SchedulerStatus,
    TaskState,
)
from chatbuild.utils.cancel import CancellationToken

logger = parent_logger.getChild("scheduler")

TaskExecutor = Callable[[BuildTask, CancellationToken], Awaitable[TaskState]]


class Scheduler:
    """
    Runs at most one build at a time, in admission order.

    The working copy is shared by every build, so a single drain loop owns it
    while there is work: it runs the current task, waits for the settle delay and
    then moves on to the next queued task. Admissions arriving while the loop is
    alive, including during the settle delay, are queued.

    All state changes happen in synchronous methods, so they are atomic with
    respect to the event loop and need no lock.
    """

    _execute: TaskExecutor
    _settle_delay: float
    _sleep: Callable[[float], Awaitable[None]]
    _queue: deque[BuildTask]
    _current: BuildTask | None
    _token: CancellationToken | None
    _drain_task: asyncio.Task[None] | None
    _idle: asyncio.Event
    _history: list[BuildTask]

    def __init__(
        self,
        execute: TaskExecutor,
        *,
        settle_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._execute = execute
        self._settle_delay = settle_delay
        self._sleep = sleep
        self._queue = deque()
        self._current = None
        self._token = None
        self._drain_task = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._history = []

    @property
    def is_building(self) -> bool:
        return self._current is not None

    @property
    def current_branch(self) -> str | None:
        return self._current.branch if self._current else None

    @property
    def history(self) -> list[BuildTask]:
        """Tasks that reached a terminal state, oldest first."""
        return list(self._history)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_building=self.is_building,
            current_branch=self.current_branch,
            current_task_id=self._current.id if self._current else None,
            cancel_requested=self._token.cancelled if self._token else False,
            queue=list(self._queue),
        )

    def is_pending(self, branch: str) -> bool:
        """Check whether `branch` is being built or waiting to be built."""
        if self._current and self._current.branch == branch:
            return True
        return any(t.branch == branch for t in self._queue)

    def admit(self, task: BuildTask) -> AdmitResult:
        """
        Admit `task` for building, never blocking.

        Starts it right away if nothing is running, otherwise appends it to the
        queue. Rejected if its branch is already running or queued. Raises
        `SchedulerError` if `task` was admitted before.
        """
        if task.state != TaskState.queued or any(
            t is task for t in (self._current, *self._queue)
        ):
            msg = f"task {task.id} already admitted (state: {task.state.value})"
            logger.error(msg)
            raise SchedulerError(msg)

        if self._current and self._current.branch == task.branch:
            logger.info(f"reject '{task.branch}': already building")
            return AdmitResult(
                status=AdmitStatus.rejected, task=task, reason="already building"
            )

        if any(t.branch == task.branch for t in self._queue):
            logger.info(f"reject '{task.branch}': already queued")
            return AdmitResult(
                status=AdmitStatus.rejected, task=task, reason="already queued"
            )

        task.state = TaskState.queued
        if self._drain_task is None:
            self._begin(task)
            self._idle.clear()
            self._drain_task = asyncio.create_task(
                self._drain(task), name=f"chatbuild-drain-{task.id}"
            )
            return AdmitResult(status=AdmitStatus.started, task=task)

        self._queue.append(task)
        position = len(self._queue)
        logger.info(f"queued '{task.branch}' at position {position}")
        return AdmitResult(status=AdmitStatus.queued, task=task, position=position)

    def cancel(self, branch: str) -> CancelResult:
        """
        Cancel every pending build of `branch`.

        A running build is only flagged; it stops at its next checkpoint. Queued
        entries are removed right away.
        """
        cancelled_running = False
        if self._current and self._current.branch == branch and self._token:
            self._token.cancel(f"cancel requested for '{branch}'")
            cancelled_running = True
            logger.info(f"cancellation requested for running build '{branch}'")

        removed = [t for t in self._queue if t.branch == branch]
        if removed:
            self._queue = deque(t for t in self._queue if t.branch != branch)
            for t in removed:
                t.state = TaskState.cancelled
                self._history.append(t)
            logger.info(f"removed '{branch}' from queue ({len(removed)} entries)")

        if not cancelled_running and not removed:
            logger.info(f"cancel: no pending build for '{branch}'")

        return CancelResult(
            branch=branch,
            cancelled_running=cancelled_running,
            removed_from_queue=len(removed),
        )

    async def wait_idle(self) -> None:
        """Wait until the running build and every queued build are done."""
        _ = await self._idle.wait()

    def _begin(self, task: BuildTask) -> None:
        self._current = task
        self._token = CancellationToken()
        task.state = TaskState.running
        logger.info(f"start build '{task.branch}' (task {task.id})")

    def _on_task_settled(self, task: BuildTask, state: TaskState) -> None:
        task.state = state
        self._history.append(task)
        self._current = None
        self._token = None
        logger.info(
            f"build '{task.branch}' (task {task.id}) finished: {state.value}, "
            + f"{len(self._queue)} queued"
        )

    async def _run_task(self, task: BuildTask) -> None:
        assert self._token is not None
        token = self._token
        try:
            state = await self._execute(task, token)
        except Exception as e:
            logger.exception(f"unexpected error building '{task.branch}'")
            task.error = str(e)
            state = TaskState.failed

        if not state.terminal:
            logger.error(
                f"build '{task.branch}' returned non-terminal state '{state.value}'"
            )
            state = TaskState.failed

        self._on_task_settled(task, state)

    async def _drain(self, task: BuildTask) -> None:
        try:
            next_task: BuildTask | None = task
            while next_task is not None:
                await self._run_task(next_task)
                # let process handles and file locks go before the next build.
                await self._sleep(self._settle_delay)

                next_task = self._queue.popleft() if self._queue else None
                if next_task is not None:
                    logger.info(
                        f"dequeued '{next_task.branch}' ({len(self._queue)} left)"
                    )
                    self._begin(next_task)
        finally:
            if self._current is not None:
                self._current.state = TaskState.cancelled
                self._history.append(self._current)
            self._drain_task = None
            self._current = None
            self._token = None
            self._idle.set()
