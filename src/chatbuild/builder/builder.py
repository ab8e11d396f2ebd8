# chatbuild - builder - build pipeline
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
import contextlib
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

import pydantic

from chatbuild.builder import BuildCancelledError, BuilderError
from chatbuild.builder import logger as parent_logger
from chatbuild.builder.archive import ArchiveInfo, package
from chatbuild.builder.progress import ProgressReporter, ProgressSink, Stage
from chatbuild.config import BuildConfig
from chatbuild.utils import CommandExecutor, CommandResult
from chatbuild.utils.cancel import CancellationToken
from chatbuild.utils.git import GitRepo

logger = parent_logger.getChild("builder")


class BuildResult(pydantic.BaseModel):
    success: bool
    cancelled: bool = False
    branch: str
    commit_info: str | None = None
    build_duration: float | None = None
    total_duration: float | None = None
    archive_path: Path | None = None
    archive_name: str | None = None
    size_mb: float | None = None
    error: str | None = None


def estimate_build_percent(elapsed: float, estimated_total: float) -> int:
    """Extrapolate build progress, within 40-70%, from elapsed time."""
    return 40 + min(30, int((elapsed / estimated_total) * 30))


class Builder:
    """
    Runs the build pipeline for a branch on the project's working copy.

    Stages run in order: check the working copy exists, checkout and sync the
    branch, install dependencies, run the build command, and package the build
    output. The first fatal failure ends the build. The archive produced by a
    successful build belongs to the caller, who must remove it.
    """

    project_path: Path
    config: BuildConfig
    repo: GitRepo
    _executor: CommandExecutor
    _sleep: Callable[[float], Awaitable[None]]

    def __init__(
        self,
        project_path: Path,
        config: BuildConfig,
        executor: CommandExecutor,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.project_path = project_path.resolve()
        self.config = config
        self._executor = executor
        self.repo = GitRepo(executor, self.project_path)
        self._sleep = sleep

    def _check_project_exists(self) -> None:
        if not self.project_path.is_dir():
            msg = f"project directory does not exist: {self.project_path}"
            logger.error(msg)
            raise BuilderError(msg)
        logger.info(f"project directory '{self.project_path}' found")

    async def _with_retries(
        self,
        what: str,
        fn: Callable[[], Awaitable[CommandResult]],
        progress: ProgressReporter,
    ) -> None:
        attempts = self.config.retries
        res: CommandResult | None = None
        for attempt in range(1, attempts + 1):
            res = await fn()
            if res.success:
                return

            if attempt < attempts:
                msg = (
                    f"{what} failed, retrying in {self.config.retry_delay:g}s "
                    + f"({attempt}/{attempts})"
                )
                logger.warning(msg)
                await progress.report(Stage.fetch, progress.last_percent, msg)
                await self._sleep(self.config.retry_delay)

        assert res is not None
        msg = (
            f"{what} failed after {attempts} attempts: {res.error}; "
            + "check network connectivity and try again"
        )
        logger.error(msg)
        raise BuilderError(msg)

    async def _checkout_and_sync(self, branch: str, progress: ProgressReporter) -> str:
        logger.info(f"checkout branch '{branch}'")

        if self.config.auto_fetch_pull:
            await self._with_retries("fetch", self.repo.fetch, progress)
            logger.info("fetch done")
        else:
            logger.info("skipping fetch, auto-fetch-pull disabled")

        res = await self.repo.checkout(branch)
        if not res.success:
            msg = f"unable to checkout branch '{branch}': {res.error}"
            logger.error(msg)
            raise BuilderError(msg)
        logger.info(f"checked out '{branch}'")

        if self.config.auto_fetch_pull:
            await self._with_retries("pull", self.repo.pull, progress)
            logger.info("branch up to date")
        else:
            logger.info("skipping pull, using local branch state")

        commit = await self.repo.commit_descriptor()
        return commit.value

    async def _install_dependencies(self) -> None:
        deps_path = self.project_path / self.config.deps_path
        cmd = self.config.install_command

        if not deps_path.exists():
            logger.info(f"'{deps_path}' not found, installing dependencies")
            res = await self._executor.run(cmd, self.project_path)
            if not res.success:
                msg = f"unable to install dependencies: {res.error}"
                logger.error(msg)
                raise BuilderError(msg)
            logger.info("dependencies installed")
            return

        if not self.config.auto_install:
            logger.info("dependencies present, skipping install")
            return

        res = await self._executor.run(cmd, self.project_path)
        if not res.success:
            logger.warning(f"dependency update failed, continuing: {res.error}")
        else:
            logger.info("dependencies updated")

    async def _run_build(self, progress: ProgressReporter) -> float:
        start = time.monotonic()

        async def _ticker() -> None:
            while True:
                await self._sleep(self.config.progress_interval)
                elapsed = time.monotonic() - start
                percent = estimate_build_percent(
                    elapsed, self.config.estimated_build_seconds
                )
                await progress.report(
                    Stage.build,
                    percent,
                    f"building... {int(elapsed)}s",
                    estimated=True,
                )

        ticker = asyncio.create_task(_ticker())
        try:
            res = await self._executor.run(
                self.config.build_command, self.project_path
            )
        finally:
            _ = ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

        duration = round(time.monotonic() - start, 2)
        if not res.success:
            msg = f"build failed: {res.error}"
            logger.error(msg)
            raise BuilderError(msg)

        logger.info(f"build done in {duration}s")
        return duration

    async def _package(self, branch: str, progress: ProgressReporter) -> ArchiveInfo:
        dist_path = self.project_path / self.config.dist_path
        if not dist_path.is_dir():
            msg = f"build output directory does not exist: {dist_path}"
            logger.error(msg)
            raise BuilderError(msg)

        # propagate ArchiveError
        return await package(
            dist_path,
            self.config.zip_output_path,
            branch,
            compression_level=self.config.compression_level,
            progress=progress,
        )

    def _checkpoint(self, token: CancellationToken | None, where: str) -> None:
        if token and token.cancelled:
            logger.info(f"build cancelled {where}")
            raise BuildCancelledError(where)

    async def run(
        self,
        branch: str,
        *,
        progress: ProgressSink | None = None,
        token: CancellationToken | None = None,
    ) -> BuildResult:
        """Run the whole pipeline for `branch`, never raising on build failures."""
        logger.info(f"start build for '{branch}'")
        reporter = ProgressReporter(progress)
        start = time.monotonic()
        archive: ArchiveInfo | None = None

        try:
            await reporter.report(Stage.check, 5, "checking project directory...")
            self._check_project_exists()
            self._checkpoint(token, "before checkout")

            await reporter.report(Stage.fetch, 10, "switching branch and syncing...")
            commit_info = await self._checkout_and_sync(branch, reporter)
            self._checkpoint(token, "after checkout")

            await reporter.report(Stage.install, 30, "checking dependencies...")
            await self._install_dependencies()
            self._checkpoint(token, "after installing dependencies")

            await reporter.report(Stage.build, 40, "building project...")
            build_duration = await self._run_build(reporter)
            self._checkpoint(token, "after build")

            await reporter.report(Stage.package, 70, "packaging build output...")
            archive = await self._package(branch, reporter)
            self._checkpoint(token, "after packaging")

        except BuildCancelledError as e:
            if archive:
                archive.path.unlink(missing_ok=True)
                logger.info(f"removed archive '{archive.path}'")
            return BuildResult(
                success=False, cancelled=True, branch=branch, error=str(e)
            )
        except BuilderError as e:
            logger.error(f"build for '{branch}' failed: {e}")
            return BuildResult(success=False, branch=branch, error=e.msg or str(e))

        assert archive is not None
        total_duration = round(time.monotonic() - start, 2)
        logger.info(f"build for '{branch}' succeeded in {total_duration}s")

        return BuildResult(
            success=True,
            branch=branch,
            commit_info=commit_info,
            build_duration=build_duration,
            total_duration=total_duration,
            archive_path=archive.path,
            archive_name=archive.file_name,
            size_mb=archive.size_mb,
        )
