# chatbuild - errors
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


class ChatBuildError(Exception):
    msg: str | None

    def __init__(self, msg: str | None = None) -> None:
        super().__init__()
        self.msg = msg

    @override
    def __str__(self) -> str:
        return "chatbuild error" + (f": {self.msg}" if self.msg is not None else "")


class MalformedBranchError(ChatBuildError):
    branch: str

    def __init__(self, branch: str, reason: str) -> None:
        super().__init__(reason)
        self.branch = branch

    @override
    def __str__(self) -> str:
        return f"malformed branch '{self.branch}': {self.msg}"


class BranchNotAllowedError(ChatBuildError):
    branch: str

    def __init__(self, branch: str) -> None:
        super().__init__()
        self.branch = branch

    @override
    def __str__(self) -> str:
        return f"branch not allowed: {self.branch}"
