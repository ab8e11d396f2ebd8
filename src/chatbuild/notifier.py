# chatbuild - notifier
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

import abc
import asyncio
import re
import shutil
from pathlib import Path
from typing import override

from chatbuild.errors import ChatBuildError
from chatbuild.logger import logger as root_logger

logger = root_logger.getChild("notifier")

_UNSAFE_DEST_RE = re.compile(r"[^A-Za-z0-9._-]")


class NotifierError(ChatBuildError):
    @override
    def __str__(self) -> str:
        return "Notifier error" + (f": {self.msg}" if self.msg else "")


class Notifier(abc.ABC):
    """Delivers messages and build artifacts back to whoever asked for them."""

    @abc.abstractmethod
    async def send_message(self, destination: str, text: str) -> None:
        pass

    @abc.abstractmethod
    async def send_file(self, destination: str, path: Path, caption: str) -> None:
        pass


class LogNotifier(Notifier):
    """Only logs what would have been delivered."""

    @override
    async def send_message(self, destination: str, text: str) -> None:
        logger.info(f"[{destination}] {text}")

    @override
    async def send_file(self, destination: str, path: Path, caption: str) -> None:
        logger.info(f"[{destination}] file '{path}': {caption}")


class DirectoryNotifier(LogNotifier):
    """Delivers files by copying them into a per-destination directory."""

    base_path: Path

    def __init__(self, base_path: Path) -> None:
        super().__init__()
        self.base_path = base_path

    def destination_path(self, destination: str) -> Path:
        name = _UNSAFE_DEST_RE.sub("_", destination)
        # must stay below base_path.
        if not name.strip("."):
            name = "_"
        return self.base_path / name

    @override
    async def send_file(self, destination: str, path: Path, caption: str) -> None:
        dest_dir = self.destination_path(destination)
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            _ = await asyncio.to_thread(shutil.copy2, path, dest_dir / path.name)
        except OSError as e:
            msg = f"unable to deliver '{path}' to '{dest_dir}': {e}"
            logger.error(msg)
            raise NotifierError(msg) from e

        logger.info(f"[{destination}] delivered '{path.name}' to '{dest_dir}'")
        await self.send_message(destination, caption)
