# chatbuild - builder - progress
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

import enum
import inspect
from collections.abc import Awaitable, Callable
from typing import Annotated

import pydantic

from chatbuild.builder import logger as parent_logger

logger = parent_logger.getChild("progress")


class Stage(str, enum.Enum):
    check = "check"
    fetch = "fetch"
    install = "install"
    build = "build"
    compress = "compress"
    package = "package"


class ProgressEvent(pydantic.BaseModel):
    stage: Stage
    percent: Annotated[int, pydantic.Field(ge=0, le=100)]
    message: str
    # extrapolated from elapsed time, not measured.
    estimated: bool = False


ProgressSink = Callable[[ProgressEvent], Awaitable[None] | None]


class ProgressReporter:
    """
    Deliver progress events for a single build to a caller-supplied sink.

    Percentages never go backwards within a build, and sink errors are logged
    and otherwise ignored.
    """

    _sink: ProgressSink | None
    _last_percent: int

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._last_percent = 0

    @property
    def last_percent(self) -> int:
        return self._last_percent

    async def report(
        self, stage: Stage, percent: int, message: str, *, estimated: bool = False
    ) -> None:
        percent = max(self._last_percent, min(100, percent))
        self._last_percent = percent
        logger.debug(f"progress: {stage.value} {percent}% {message}")

        if not self._sink:
            return

        event = ProgressEvent(
            stage=stage, percent=percent, message=message, estimated=estimated
        )
        try:
            res = self._sink(event)
            if inspect.isawaitable(res):
                await res
        except Exception as e:
            logger.warning(f"progress sink failed on '{stage.value}' event: {e}")
