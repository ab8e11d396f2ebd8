# chatbuild - builder
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

from typing import override

from chatbuild.errors import ChatBuildError
from chatbuild.logger import logger as root_logger

logger = root_logger.getChild("builder")


class BuilderError(ChatBuildError):
    @override
    def __str__(self) -> str:
        return "Builder error" + (f": {self.msg}" if self.msg else "")


class BuildCancelledError(BuilderError):
    @override
    def __str__(self) -> str:
        return "Build cancelled" + (f": {self.msg}" if self.msg else "")
