# chatbuild - tests - mgr
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

import asyncio
from pathlib import Path

import pytest
from conftest import FakeExecutor, SleepRecorder

from chatbuild.config import BuildConfig, Config
from chatbuild.errors import MalformedBranchError
from chatbuild.mgr import BuildsMgr, RequestError, check_branch_name, clean_branch_names
from chatbuild.notifier import LogNotifier
from chatbuild.scheduler.scheduler import Scheduler
from chatbuild.scheduler.types import BuildTask, TaskState
from chatbuild.utils.cancel import CancellationToken
from chatbuild.utils.git import BranchResolver, GitRepo


class HoldingExecutor:
    """Holds every task until released."""

    release: asyncio.Event

    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def __call__(self, task: BuildTask, token: CancellationToken) -> TaskState:
        _ = await self.release.wait()
        return TaskState.completed


def _mgr(
    project: Path,
    executor: FakeExecutor,
    *,
    allowed_users: list[str] | None = None,
    allowed_branches: list[str] | None = None,
) -> tuple[BuildsMgr, HoldingExecutor]:
    config = Config(
        project_path=project,
        allowed_users=allowed_users if allowed_users else [],
        build=BuildConfig(
            allowed_branches=allowed_branches if allowed_branches else []
        ),
    )
    holding = HoldingExecutor()
    scheduler = Scheduler(holding, sleep=SleepRecorder())
    resolver = BranchResolver(GitRepo(executor, project))
    return BuildsMgr(config, scheduler, resolver), holding


def test_clean_branch_names() -> None:
    raw = "main\u200b  feature/login\n\ufeffdevelop \u200c\u200d "
    assert clean_branch_names(raw) == ["main", "feature/login", "develop"]
    assert clean_branch_names(["main", " develop "]) == ["main", "develop"]


@pytest.mark.parametrize(
    "name",
    [
        "feat;rm -rf",
        "a" * 101,
        "-x",
        "--upload-pack=evil",
        "feature/$HOME",
        "caf\u00e9",
    ],
)
def test_check_branch_name_rejects(name: str) -> None:
    with pytest.raises(MalformedBranchError):
        check_branch_name(name)


@pytest.mark.parametrize("name", ["main", "feature/login", "release-1.0_rc", "a" * 100])
def test_check_branch_name_accepts(name: str) -> None:
    check_branch_name(name)


def test_request_admits_and_reports(project: Path, executor: FakeExecutor) -> None:
    mgr, holding = _mgr(project, executor)

    async def _run() -> None:
        report = await mgr.request(
            "main develop nope bad;name main", "alice", "chat-1"
        )

        assert report.started == ["main"]
        assert report.queued == [("develop", 1)]
        assert report.unknown == ["nope"]
        assert report.malformed == ["bad;name"]
        assert report.duplicates == ["main"]
        assert report.admitted == 2
        assert not report.deferred

        status = mgr.status()
        assert status.current_branch == "main"
        assert [t.branch for t in status.queue] == ["develop"]
        assert status.queue[0].requester == "alice"
        assert status.queue[0].destination == "chat-1"

        holding.release.set()
        await mgr.scheduler.wait_idle()

    asyncio.run(_run())


def test_request_from_unknown_user(project: Path, executor: FakeExecutor) -> None:
    mgr, _ = _mgr(project, executor, allowed_users=["bob"])

    report = asyncio.run(mgr.request("main", "alice", "chat-1"))

    assert report.rejected_user
    assert report.admitted == 0
    assert executor.calls == []
    assert not mgr.status().is_building


def test_disallowed_branch_refuses_whole_request(
    project: Path, executor: FakeExecutor
) -> None:
    mgr, _ = _mgr(project, executor, allowed_branches=["main"])

    report = asyncio.run(mgr.request("main develop", "alice", "chat-1"))

    assert report.disallowed == ["develop"]
    assert report.started == []
    assert not mgr.status().is_building


def test_unresolvable_branches_are_deferred(
    project: Path, executor: FakeExecutor
) -> None:
    executor.fail("git branch -a", "not a git repository")
    mgr, holding = _mgr(project, executor)

    async def _run() -> None:
        report = await mgr.request("main whatever", "alice", "chat-1")
        assert report.deferred
        assert report.started == ["main"]
        assert report.queued == [("whatever", 1)]

        holding.release.set()
        await mgr.scheduler.wait_idle()

    asyncio.run(_run())


def test_empty_request_is_an_error(project: Path, executor: FakeExecutor) -> None:
    mgr, _ = _mgr(project, executor)

    with pytest.raises(RequestError):
        _ = asyncio.run(mgr.request(" \u200b ", "alice", "chat-1"))


def test_cancel_through_manager(project: Path, executor: FakeExecutor) -> None:
    mgr, holding = _mgr(project, executor)

    async def _run() -> None:
        _ = await mgr.request("main develop", "alice", "chat-1")

        res = mgr.cancel("develop")
        assert res.removed_from_queue == 1
        assert mgr.status().queue == []

        holding.release.set()
        await mgr.scheduler.wait_idle()

    asyncio.run(_run())


def test_branches_through_manager(project: Path, executor: FakeExecutor) -> None:
    mgr, _ = _mgr(project, executor)

    res = asyncio.run(mgr.branches())

    assert res.value == ["main", "develop", "feature/login"]


def test_from_config_wiring(tmp_path: Path) -> None:
    config = Config.model_validate(
        {
            "project-path": str(tmp_path),
            "scheduler": {"settle-delay": 0.5},
        }
    )

    mgr = BuildsMgr.from_config(config, LogNotifier())

    assert not mgr.status().is_building
    assert mgr.scheduler._settle_delay == 0.5  # pyright: ignore[reportPrivateUsage]
