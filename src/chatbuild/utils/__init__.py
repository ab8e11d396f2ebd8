# chatbuild - utilities
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
import os
from asyncio.streams import StreamReader
from pathlib import Path
from typing import override

import pydantic

from chatbuild.errors import ChatBuildError
from chatbuild.logger import logger as root_logger

logger = root_logger.getChild("utils")

# upper bound on captured output, stdout and stderr combined.
MAX_OUTPUT_BYTES = 10 * 1024 * 1024

_READ_CHUNK_SIZE = 64 * 1024


class CommandError(ChatBuildError):
    @override
    def __str__(self) -> str:
        return "Command error" + (f": {self.msg}" if self.msg else "")


class CommandOutputLimitError(CommandError):
    limit: int

    def __init__(self, limit: int) -> None:
        super().__init__(f"output exceeded {limit} bytes")
        self.limit = limit


CmdArgs = list[str]


class CommandResult(pydantic.BaseModel):
    success: bool
    output: str = ""
    error: str | None = None


def _cmd_str(cmd: str | CmdArgs) -> str:
    return cmd if isinstance(cmd, str) else " ".join(cmd)


async def async_run_cmd(
    cmd: str | CmdArgs,
    *,
    cwd: Path | None = None,
    max_output: int = MAX_OUTPUT_BYTES,
    extra_env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """
    Run `cmd`, returning its return code, stdout and stderr.

    A string is handed to the shell, a list is executed directly. Raises
    `CommandOutputLimitError` if the process writes more than `max_output` bytes,
    after killing it.
    """
    logger.debug(f"async run '{_cmd_str(cmd)}', cwd: {cwd}")

    env: dict[str, str] = os.environ.copy()
    if extra_env:
        env.update(extra_env)

    if isinstance(cmd, str):
        p = await asyncio.create_subprocess_shell(
            cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )
    else:
        p = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )

    total = 0
    exceeded = False

    async def read_stream(stream: StreamReader | None) -> str:
        nonlocal total, exceeded
        collected = bytearray()

        if not stream:
            return ""

        while not exceeded:
            chunk = await stream.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > max_output:
                exceeded = True
                raise CommandOutputLimitError(max_output)
            collected.extend(chunk)

        return collected.decode("utf-8", errors="replace")

    async def monitor() -> tuple[str, str]:
        stdout, stderr = await asyncio.gather(
            read_stream(p.stdout),
            read_stream(p.stderr),
        )
        return stdout, stderr

    try:
        stdout, stderr = await monitor()
        retcode = await p.wait()
    except (CommandOutputLimitError, asyncio.CancelledError):
        logger.error(f"killing '{_cmd_str(cmd)}': output limit hit or cancelled")
        if p.returncode is None:
            p.kill()
        _ = await p.wait()
        raise

    return retcode, stdout, stderr


class CommandExecutor:
    """Runs external commands, one process per call, with bounded output."""

    max_output: int

    def __init__(self, *, max_output: int = MAX_OUTPUT_BYTES) -> None:
        self.max_output = max_output

    async def run(self, command: str | CmdArgs, cwd: Path) -> CommandResult:
        cmd_str = _cmd_str(command)
        logger.info(f"run '{cmd_str}' in '{cwd}'")

        try:
            rc, stdout, stderr = await async_run_cmd(
                command, cwd=cwd, max_output=self.max_output
            )
        except CommandOutputLimitError as e:
            msg = f"'{cmd_str}' failed: {e.msg}, output discarded"
            logger.error(msg)
            return CommandResult(success=False, error=msg)
        except OSError as e:
            msg = f"unable to run '{cmd_str}': {e}"
            logger.error(msg)
            return CommandResult(success=False, error=msg)

        if rc != 0:
            msg = f"'{cmd_str}' failed (rc={rc})" + (
                f": {stderr.strip()}" if stderr.strip() else ""
            )
            logger.error(msg)
            return CommandResult(success=False, output=stdout, error=msg)

        if stderr:
            # advisory diagnostics only.
            if "warning" in stderr.lower():
                logger.debug(f"'{cmd_str}' warnings: {stderr.strip()}")
            else:
                logger.warning(f"'{cmd_str}' stderr: {stderr.strip()}")

        return CommandResult(success=True, output=stdout)
