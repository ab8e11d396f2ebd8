# chatbuild - tests - cli
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

import errno
from pathlib import Path

import pytest
from click.testing import CliRunner
from conftest import FakeExecutor

import chatbuild.cmds.branches
import chatbuild.cmds.builds
import chatbuild.mgr
from chatbuild.__main__ import cmd_main
from chatbuild.config import BuildConfig, Config, DeliveryConfig, SchedulerConfig


@pytest.fixture
def config_path(tmp_path: Path, project: Path, build_config: BuildConfig) -> Path:
    path = tmp_path / "chatbuild.config.yaml"
    Config(
        project_path=project,
        build=build_config,
        scheduler=SchedulerConfig(settle_delay=0),
        delivery=DeliveryConfig(path=tmp_path / "delivered"),
    ).store(path)
    return path


@pytest.fixture
def fake_commands(
    monkeypatch: pytest.MonkeyPatch, executor: FakeExecutor
) -> FakeExecutor:
    for mod in (chatbuild.cmds.branches, chatbuild.cmds.builds, chatbuild.mgr):
        monkeypatch.setattr(mod, "CommandExecutor", lambda: executor)
    return executor


def test_config_init(tmp_path: Path, project: Path) -> None:
    path = tmp_path / "new.yaml"

    res = CliRunner().invoke(
        cmd_main,
        [
            "-c",
            str(path),
            "config",
            "init",
            "--project",
            str(project),
            "--allow-user",
            "12345",
            "--allow-branch",
            "main",
            "-y",
        ],
    )

    assert res.exit_code == 0, res.output
    config = Config.load(path)
    assert config.project_path == project
    assert config.allowed_users == ["12345"]
    assert config.build.allowed_branches == ["main"]


def test_config_init_declined(tmp_path: Path, project: Path) -> None:
    path = tmp_path / "new.yaml"

    res = CliRunner().invoke(
        cmd_main,
        ["-c", str(path), "config", "init", "--project", str(project)],
        input="n\n",
    )

    assert res.exit_code == errno.ENOTRECOVERABLE
    assert not path.exists()


def test_config_show(config_path: Path) -> None:
    res = CliRunner().invoke(cmd_main, ["-c", str(config_path), "config", "show"])

    assert res.exit_code == 0, res.output
    assert "project-path:" in res.output
    assert "settle-delay: 0" in res.output


def test_missing_config(tmp_path: Path) -> None:
    res = CliRunner().invoke(
        cmd_main, ["-c", str(tmp_path / "nope.yaml"), "config", "show"]
    )

    assert res.exit_code == errno.ENOENT


def test_branches(config_path: Path, fake_commands: FakeExecutor) -> None:
    res = CliRunner().invoke(cmd_main, ["-c", str(config_path), "branches"])

    assert res.exit_code == 0, res.output
    assert "feature/login" in res.output
    assert "develop" in res.output


def test_branches_limit(config_path: Path, fake_commands: FakeExecutor) -> None:
    res = CliRunner().invoke(
        cmd_main, ["-c", str(config_path), "branches", "--limit", "1"]
    )

    assert res.exit_code == 0, res.output
    assert "2 more branches not shown" in res.output


def test_branches_git_failure(config_path: Path, fake_commands: FakeExecutor) -> None:
    fake_commands.fail("git branch -a", "not a git repository")

    res = CliRunner().invoke(cmd_main, ["-c", str(config_path), "branches"])

    assert res.exit_code == errno.EIO


def test_build(
    config_path: Path, build_config: BuildConfig, fake_commands: FakeExecutor
) -> None:
    res = CliRunner().invoke(cmd_main, ["-c", str(config_path), "build", "main"])

    assert res.exit_code == 0, res.output
    assert "succeeded" in res.output
    assert not (build_config.zip_output_path / "main.zip").exists()
    assert "npm run build" in fake_commands.calls


def test_build_keep(
    config_path: Path, build_config: BuildConfig, fake_commands: FakeExecutor
) -> None:
    res = CliRunner().invoke(
        cmd_main, ["-c", str(config_path), "build", "release/1.0", "--keep"]
    )

    assert res.exit_code == 0, res.output
    assert (build_config.zip_output_path / "release-1.0.zip").exists()


def test_build_failure(config_path: Path, fake_commands: FakeExecutor) -> None:
    fake_commands.fail("npm run build", "SyntaxError")

    res = CliRunner().invoke(cmd_main, ["-c", str(config_path), "build", "main"])

    assert res.exit_code == errno.EIO


def test_build_malformed_branch(config_path: Path, fake_commands: FakeExecutor) -> None:
    res = CliRunner().invoke(
        cmd_main, ["-c", str(config_path), "build", "main;reboot"]
    )

    assert res.exit_code == errno.EINVAL
    assert fake_commands.calls == []


def test_queue_delivers_archives(
    tmp_path: Path, config_path: Path, fake_commands: FakeExecutor
) -> None:
    res = CliRunner().invoke(
        cmd_main,
        [
            "-c",
            str(config_path),
            "queue",
            "main",
            "feature/login",
            "--user",
            "alice",
            "--to",
            "team-a",
        ],
    )

    assert res.exit_code == 0, res.output
    delivered = tmp_path / "delivered" / "team-a"
    assert (delivered / "main.zip").exists()
    assert (delivered / "feature-login.zip").exists()
    assert fake_commands.count("npm run build") == 2


def test_queue_unknown_branches_only(
    config_path: Path, fake_commands: FakeExecutor
) -> None:
    res = CliRunner().invoke(
        cmd_main,
        ["-c", str(config_path), "queue", "nope", "--user", "alice"],
    )

    assert res.exit_code == errno.EINVAL
    assert "npm run build" not in fake_commands.calls


def test_build_branch_not_allowed(
    tmp_path: Path, project: Path, fake_commands: FakeExecutor
) -> None:
    path = tmp_path / "restricted.yaml"
    Config(
        project_path=project,
        build=BuildConfig(allowed_branches=["main"]),
    ).store(path)

    res = CliRunner().invoke(cmd_main, ["-c", str(path), "build", "develop"])

    assert res.exit_code == errno.EACCES
    assert fake_commands.calls == []
