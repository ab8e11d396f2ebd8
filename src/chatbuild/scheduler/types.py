# chatbuild - scheduler - types
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
import enum
import itertools
import time
from datetime import datetime as dt

import pydantic

_task_seq = itertools.count(1)


def gen_task_id() -> str:
    """Generate a task id, unique within this process."""
    return f"{time.time_ns()}_{next(_task_seq)}"


class TaskState(str, enum.Enum):
    queued = "QUEUED"
    running = "RUNNING"
    uploading = "UPLOADING"
    completed = "COMPLETED"
    failed = "FAILED"
    cancelled = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.completed, TaskState.failed, TaskState.cancelled)


class BuildTask(pydantic.BaseModel):
    id: str = pydantic.Field(default_factory=gen_task_id)
    branch: str
    requester: str
    destination: str
    enqueued_at: dt = pydantic.Field(
        default_factory=lambda: dt.now(tz=datetime.UTC)
    )
    state: TaskState = TaskState.queued
    error: str | None = None


class AdmitStatus(str, enum.Enum):
    started = "started"
    queued = "queued"
    rejected = "rejected"


class AdmitResult(pydantic.BaseModel):
    status: AdmitStatus
    task: BuildTask
    # 1-based queue position, when queued.
    position: int | None = None
    reason: str | None = None


class CancelResult(pydantic.BaseModel):
    branch: str
    cancelled_running: bool
    removed_from_queue: int

    @property
    def found(self) -> bool:
        return self.cancelled_running or self.removed_from_queue > 0


class SchedulerStatus(pydantic.BaseModel):
    is_building: bool
    current_branch: str | None
    current_task_id: str | None
    cancel_requested: bool
    queue: list[BuildTask]
