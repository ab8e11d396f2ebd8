# chatbuild - git utilities
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


import re
from collections.abc import Sequence
from pathlib import Path
from typing import override

import pydantic

from chatbuild.errors import ChatBuildError
from chatbuild.utils import CmdArgs, CommandExecutor, CommandResult
from chatbuild.utils import logger as parent_logger
from chatbuild.utils.outcome import Degraded, Ok, Outcome

logger = parent_logger.getChild("git")

COMMIT_FORMAT = "%h - %s (%an, %ar)"

_REMOTE_PREFIX_RE = re.compile(r"^remotes/[^/]+/")
_CURRENT_MARKER_RE = re.compile(r"^\*\s*")


class GitError(ChatBuildError):
    @override
    def __str__(self) -> str:
        return f"git error: {self.msg}"


class GitRepo:
    """A git working copy, driven through a `CommandExecutor`."""

    path: Path
    _executor: CommandExecutor

    def __init__(self, executor: CommandExecutor, path: Path) -> None:
        self._executor = executor
        self.path = path

    async def run(self, args: CmdArgs) -> CommandResult:
        cmd: CmdArgs = ["git", *args]
        return await self._executor.run(cmd, self.path)

    async def fetch(self, *, prune: bool = False) -> CommandResult:
        args = ["fetch", "--all"]
        if prune:
            args.append("--prune")
        return await self.run(args)

    async def checkout(self, branch: str) -> CommandResult:
        return await self.run(["checkout", branch])

    async def pull(self) -> CommandResult:
        return await self.run(["pull"])

    async def list_branches_raw(self) -> str:
        """Obtain the output of `git branch -a`."""
        res = await self.run(["branch", "-a"])
        if not res.success:
            msg = f"unable to list branches in '{self.path}': {res.error}"
            logger.error(msg)
            raise GitError(msg)
        return res.output

    async def commit_descriptor(self) -> Outcome[str]:
        """Describe the checked out commit in one line, best-effort."""
        res = await self.run(["log", "-1", f"--pretty=format:{COMMIT_FORMAT}"])
        if not res.success or not res.output.strip():
            logger.warning(f"unable to obtain commit info: {res.error}")
            return Degraded("unavailable", f"unable to obtain commit info: {res.error}")
        return Ok(res.output.strip())


def parse_branch_listing(raw: str) -> list[str]:
    """
    Parse `git branch -a` output into branch names.

    Drops the current-branch marker, remote prefixes and symbolic HEAD pointers,
    keeping the first occurrence of each name.
    """
    seen: set[str] = set()
    branches: list[str] = []
    for line in raw.splitlines():
        name = _CURRENT_MARKER_RE.sub("", line.strip())
        name = _REMOTE_PREFIX_RE.sub("", name)
        if not name or "HEAD" in name:
            continue
        if name in seen:
            continue
        seen.add(name)
        branches.append(name)

    return branches


class BranchValidation(pydantic.BaseModel):
    valid: list[str]
    invalid: list[str]
    # set when branches could not be resolved and validation is left to checkout.
    deferred: bool = False


class BranchResolver:
    """Lists and validates branches against the working copy's remotes."""

    _repo: GitRepo
    _auto_fetch: bool
    _cache: list[str] | None
    _last_known: list[str] | None

    def __init__(self, repo: GitRepo, *, auto_fetch: bool = True) -> None:
        self._repo = repo
        self._auto_fetch = auto_fetch
        self._cache = None
        self._last_known = None

    def invalidate(self) -> None:
        self._cache = None

    async def list_branches(self) -> Outcome[list[str]]:
        """
        List local and remote-tracking branches.

        Refreshes remotes first, if so configured. A failed refresh, or a failed
        listing when an earlier listing is known, yields a `Degraded` result.
        Raises `GitError` only if nothing can be listed at all.
        """
        warning: str | None = None
        if self._auto_fetch:
            res = await self._repo.fetch(prune=True)
            if not res.success:
                warning = f"unable to refresh remote branches: {res.error}"
                logger.warning(f"{warning}, using existing branch list")
            else:
                logger.info("refreshed remote branch list")

        try:
            raw = await self._repo.list_branches_raw()
        except GitError as e:
            if self._last_known is None:
                raise e from None
            msg = f"unable to list branches, using last known list: {e}"
            logger.warning(msg)
            self._cache = self._last_known
            return Degraded(list(self._last_known), msg)

        branches = parse_branch_listing(raw)
        self._last_known = branches
        self._cache = branches

        if warning:
            return Degraded(list(branches), warning)
        return Ok(list(branches))

    async def _branches(self) -> list[str]:
        if self._cache is None:
            _ = await self.list_branches()
        assert self._cache is not None
        return self._cache

    async def branch_exists(self, name: str) -> bool:
        return name in await self._branches()

    async def validate_many(self, names: Sequence[str]) -> BranchValidation:
        """
        Partition `names` into existing and unknown branches.

        The cache is refreshed once for the whole batch. If branches can't be
        resolved, every name is considered valid and validation is deferred.
        """
        self.invalidate()
        try:
            known = await self._branches()
        except GitError as e:
            logger.warning(f"unable to obtain branch list, deferring validation: {e}")
            return BranchValidation(valid=list(names), invalid=[], deferred=True)

        valid = [n for n in names if n in known]
        invalid = [n for n in names if n not in known]
        return BranchValidation(valid=valid, invalid=invalid)
