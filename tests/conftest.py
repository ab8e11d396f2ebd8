# chatbuild - tests - fixtures
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
from collections.abc import Callable
from pathlib import Path
from typing import override

import pytest

from chatbuild.config import BuildConfig
from chatbuild.utils import CmdArgs, CommandExecutor, CommandResult

GIT_LOG = "git log -1 --pretty=format:%h - %s (%an, %ar)"

BRANCH_LISTING = """\
* main
  develop
  remotes/origin/HEAD -> origin/main
  remotes/origin/main
  remotes/origin/develop
  remotes/origin/feature/login
"""


class FakeExecutor(CommandExecutor):
    """Scripted executor, recording every command it is asked to run."""

    responses: dict[str, list[CommandResult]]
    hooks: dict[str, Callable[[Path], None]]
    calls: list[str]

    def __init__(self) -> None:
        super().__init__()
        self.responses = {}
        self.hooks = {}
        self.calls = []

    def script(self, cmd: str, *results: CommandResult) -> None:
        """Answer `cmd` with `results` in order, repeating the last one."""
        self.responses[cmd] = list(results)

    def fail(self, cmd: str, error: str = "boom") -> None:
        self.script(cmd, CommandResult(success=False, error=error))

    def on(self, cmd: str, hook: Callable[[Path], None]) -> None:
        self.hooks[cmd] = hook

    def count(self, cmd: str) -> int:
        return self.calls.count(cmd)

    @override
    async def run(self, command: str | CmdArgs, cwd: Path) -> CommandResult:
        cmd = command if isinstance(command, str) else " ".join(command)
        self.calls.append(cmd)

        hook = self.hooks.get(cmd)
        if hook:
            hook(cwd)

        results = self.responses.get(cmd)
        if not results:
            return CommandResult(success=True)
        return results.pop(0) if len(results) > 1 else results[0]


class SleepRecorder:
    """Stands in for `asyncio.sleep`, recording requested delays."""

    delays: list[float]

    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        # still yield, so loops driven by it let other tasks run.
        await asyncio.sleep(0)


def write_dist(cwd: Path) -> None:
    dist = cwd / "dist"
    (dist / "assets").mkdir(parents=True, exist_ok=True)
    _ = (dist / "index.html").write_text("<html>hello</html>")
    _ = (dist / "assets" / "app.js").write_text("console.log('hi');\n" * 200)


@pytest.fixture
def executor() -> FakeExecutor:
    fake = FakeExecutor()
    fake.script(GIT_LOG, CommandResult(success=True, output="abc1234 - fix (dev, 1h)"))
    fake.script("git branch -a", CommandResult(success=True, output=BRANCH_LISTING))
    fake.on("npm run build", write_dist)
    return fake


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    (path / "node_modules").mkdir(parents=True)
    return path


@pytest.fixture
def build_config(tmp_path: Path) -> BuildConfig:
    return BuildConfig(
        zip_output_path=tmp_path / "builds",
        retry_delay=3.0,
        progress_interval=3600.0,
    )
