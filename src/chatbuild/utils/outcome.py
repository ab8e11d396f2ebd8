# chatbuild - utilities - outcomes
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

from dataclasses import dataclass


@dataclass(frozen=True)
class Ok[T]:
    """A value obtained cleanly."""

    value: T

    @property
    def degraded(self) -> bool:
        return False


@dataclass(frozen=True)
class Degraded[T]:
    """A value obtained through a fallback path; `warning` says which."""

    value: T
    warning: str

    @property
    def degraded(self) -> bool:
        return True


type Outcome[T] = Ok[T] | Degraded[T]
