# chatbuild - tests - branches
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
from conftest import BRANCH_LISTING, FakeExecutor

from chatbuild.utils import CommandResult
from chatbuild.utils.git import BranchResolver, GitError, GitRepo, parse_branch_listing
from chatbuild.utils.outcome import Degraded, Ok


def _resolver(
    executor: FakeExecutor, path: Path, *, auto_fetch: bool = True
) -> BranchResolver:
    return BranchResolver(GitRepo(executor, path), auto_fetch=auto_fetch)


def test_parse_branch_listing() -> None:
    assert parse_branch_listing(BRANCH_LISTING) == ["main", "develop", "feature/login"]


def test_parse_branch_listing_skips_blank_and_head_lines() -> None:
    raw = "\n  \n* (HEAD detached at 1a2b3c)\n  release/1.0\n\n"
    assert parse_branch_listing(raw) == ["release/1.0"]


def test_list_branches_fetches_first(executor: FakeExecutor, tmp_path: Path) -> None:
    res = asyncio.run(_resolver(executor, tmp_path).list_branches())

    assert isinstance(res, Ok)
    assert res.value == ["main", "develop", "feature/login"]
    assert executor.calls == ["git fetch --all --prune", "git branch -a"]


def test_list_branches_without_auto_fetch(
    executor: FakeExecutor, tmp_path: Path
) -> None:
    res = asyncio.run(_resolver(executor, tmp_path, auto_fetch=False).list_branches())

    assert not res.degraded
    assert executor.calls == ["git branch -a"]


def test_failed_fetch_degrades(executor: FakeExecutor, tmp_path: Path) -> None:
    executor.fail("git fetch --all --prune", "network unreachable")

    res = asyncio.run(_resolver(executor, tmp_path).list_branches())

    assert isinstance(res, Degraded)
    assert res.value == ["main", "develop", "feature/login"]
    assert "network unreachable" in res.warning


def test_failed_listing_without_history_raises(
    executor: FakeExecutor, tmp_path: Path
) -> None:
    executor.fail("git branch -a")

    with pytest.raises(GitError):
        _ = asyncio.run(_resolver(executor, tmp_path).list_branches())


def test_failed_listing_falls_back_to_last_known(
    executor: FakeExecutor, tmp_path: Path
) -> None:
    executor.script(
        "git branch -a",
        CommandResult(success=True, output="  main\n  develop\n"),
        CommandResult(success=False, error="index locked"),
    )
    resolver = _resolver(executor, tmp_path)

    async def _run() -> None:
        first = await resolver.list_branches()
        assert isinstance(first, Ok)

        second = await resolver.list_branches()
        assert isinstance(second, Degraded)
        assert second.value == ["main", "develop"]
        assert await resolver.branch_exists("develop")

    asyncio.run(_run())


def test_branch_exists_uses_cache(executor: FakeExecutor, tmp_path: Path) -> None:
    resolver = _resolver(executor, tmp_path)

    async def _run() -> None:
        assert await resolver.branch_exists("feature/login")
        assert not await resolver.branch_exists("feature/nope")

    asyncio.run(_run())
    assert executor.count("git branch -a") == 1

    resolver.invalidate()
    assert asyncio.run(resolver.branch_exists("main"))
    assert executor.count("git branch -a") == 2


def test_validate_many_partitions(executor: FakeExecutor, tmp_path: Path) -> None:
    res = asyncio.run(
        _resolver(executor, tmp_path).validate_many(["main", "nope", "develop"])
    )

    assert res.valid == ["main", "develop"]
    assert res.invalid == ["nope"]
    assert not res.deferred


def test_validate_many_refreshes_once(executor: FakeExecutor, tmp_path: Path) -> None:
    resolver = _resolver(executor, tmp_path)

    async def _run() -> None:
        _ = await resolver.list_branches()
        _ = await resolver.validate_many(["main", "develop"])

    asyncio.run(_run())
    assert executor.count("git branch -a") == 2


def test_validate_many_defers_on_git_failure(
    executor: FakeExecutor, tmp_path: Path
) -> None:
    executor.fail("git branch -a")

    res = asyncio.run(_resolver(executor, tmp_path).validate_many(["main", "nope"]))

    assert res.deferred
    assert res.valid == ["main", "nope"]
    assert res.invalid == []
