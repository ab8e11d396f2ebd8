# chatbuild - builds manager
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

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import override

import pydantic

from chatbuild.builder.builder import Builder
from chatbuild.builder.progress import ProgressSink
from chatbuild.config import BuildConfig, Config
from chatbuild.errors import (
    BranchNotAllowedError,
    ChatBuildError,
    MalformedBranchError,
)
from chatbuild.logger import logger as root_logger
from chatbuild.notifier import Notifier
from chatbuild.scheduler.scheduler import Scheduler
from chatbuild.scheduler.types import (
    AdmitStatus,
    BuildTask,
    CancelResult,
    SchedulerStatus,
)
from chatbuild.scheduler.worker import BuildWorker
from chatbuild.utils import CommandExecutor
from chatbuild.utils.git import BranchResolver
from chatbuild.utils.outcome import Outcome

logger = root_logger.getChild("mgr")

MAX_BRANCH_NAME_LEN = 100

_BRANCH_NAME_RE = re.compile(r"^[A-Za-z0-9\-_/.]+$")
# zero-width and non-breaking spaces, usually pasted along from chat clients.
_INVISIBLE_CHARS_RE = re.compile("[\u200b-\u200d\ufeff\u00a0]")


class RequestError(ChatBuildError):
    @override
    def __str__(self) -> str:
        return "Request error" + (f": {self.msg}" if self.msg else "")


def clean_branch_names(raw: str | Iterable[str]) -> list[str]:
    """Split `raw` on whitespace and strip invisible characters from each name."""
    text = raw if isinstance(raw, str) else " ".join(raw)
    names: list[str] = []
    for token in text.split():
        name = _INVISIBLE_CHARS_RE.sub("", token).strip()
        if name:
            names.append(name)
    return names


def check_branch_name(name: str) -> None:
    """Raise `MalformedBranchError` if `name` can't be a branch we'd build."""
    if len(name) > MAX_BRANCH_NAME_LEN:
        raise MalformedBranchError(
            name, f"longer than {MAX_BRANCH_NAME_LEN} characters"
        )
    if not _BRANCH_NAME_RE.match(name):
        raise MalformedBranchError(name, "contains invalid characters")
    # would otherwise be taken as an option by git.
    if name.startswith("-"):
        raise MalformedBranchError(name, "must not start with '-'")


def check_branch_allowed(config: BuildConfig, name: str) -> None:
    if not config.is_branch_allowed(name):
        raise BranchNotAllowedError(name)


class RequestReport(pydantic.BaseModel):
    started: list[str] = pydantic.Field(default_factory=list)
    # branch name and its 1-based queue position.
    queued: list[tuple[str, int]] = pydantic.Field(default_factory=list)
    duplicates: list[str] = pydantic.Field(default_factory=list)
    malformed: list[str] = pydantic.Field(default_factory=list)
    disallowed: list[str] = pydantic.Field(default_factory=list)
    unknown: list[str] = pydantic.Field(default_factory=list)
    # branch existence could not be checked, left to checkout.
    deferred: bool = False
    rejected_user: bool = False

    @property
    def admitted(self) -> int:
        return len(self.started) + len(self.queued)


class BuildsMgr:
    """Admits build requests, validating them before they reach the scheduler."""

    _config: Config
    _scheduler: Scheduler
    _resolver: BranchResolver

    def __init__(
        self, config: Config, scheduler: Scheduler, resolver: BranchResolver
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._resolver = resolver

    @classmethod
    def from_config(
        cls,
        config: Config,
        notifier: Notifier,
        *,
        executor: CommandExecutor | None = None,
        progress: ProgressSink | None = None,
    ) -> BuildsMgr:
        """Wire a builder, worker, scheduler and resolver from `config`."""
        executor = executor if executor else CommandExecutor()
        builder = Builder(config.project_path, config.build, executor)
        worker = BuildWorker(builder, notifier, progress=progress)
        scheduler = Scheduler(worker, settle_delay=config.scheduler.settle_delay)
        resolver = BranchResolver(
            builder.repo, auto_fetch=config.build.auto_fetch_pull
        )
        return cls(config, scheduler, resolver)

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    async def request(
        self, names: str | Iterable[str], requester: str, destination: str
    ) -> RequestReport:
        """
        Request builds for one or more branches.

        Unknown users get nothing built. Malformed names are dropped. If any
        name falls outside the allowed branches, the whole request is refused.
        Names that don't exist in the repository are skipped, the rest are
        admitted in order. Raises `RequestError` if no names are given.
        """
        cleaned = clean_branch_names(names)
        if not cleaned:
            raise RequestError("no branch names given")

        report = RequestReport()

        if not self._config.is_user_allowed(requester):
            logger.warning(f"refused request from unauthorized user '{requester}'")
            report.rejected_user = True
            return report

        candidates: list[str] = []
        for name in cleaned:
            try:
                check_branch_name(name)
            except MalformedBranchError as e:
                logger.warning(str(e))
                report.malformed.append(name)
                continue
            candidates.append(name)

        for name in candidates:
            try:
                check_branch_allowed(self._config.build, name)
            except BranchNotAllowedError as e:
                logger.debug(str(e))
                report.disallowed.append(name)

        if report.disallowed:
            logger.warning(
                f"refused request from '{requester}', branches not allowed: "
                + f"{report.disallowed}"
            )
            return report

        if not candidates:
            return report

        validation = await self._resolver.validate_many(candidates)
        report.unknown = validation.invalid
        report.deferred = validation.deferred
        if validation.invalid:
            logger.warning(f"skipping unknown branches: {validation.invalid}")

        for name in validation.valid:
            task = BuildTask(branch=name, requester=requester, destination=destination)
            res = self._scheduler.admit(task)
            match res.status:
                case AdmitStatus.started:
                    report.started.append(name)
                case AdmitStatus.queued:
                    assert res.position is not None
                    report.queued.append((name, res.position))
                case AdmitStatus.rejected:
                    report.duplicates.append(name)

        logger.info(
            f"request from '{requester}': {len(report.started)} started, "
            + f"{len(report.queued)} queued, {len(report.duplicates)} duplicates"
        )
        return report

    def cancel(self, branch: str) -> CancelResult:
        return self._scheduler.cancel(branch)

    def status(self) -> SchedulerStatus:
        return self._scheduler.status()

    async def branches(self) -> Outcome[list[str]]:
        """List available branches; propagates `GitError` if none are known."""
        return await self._resolver.list_branches()
