# chatbuild - config
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

import json
from pathlib import Path
from typing import Annotated, ClassVar

import pydantic
import yaml

from chatbuild.errors import ChatBuildError
from chatbuild.logger import logger as root_logger

logger = root_logger.getChild("config")


class ConfigError(ChatBuildError):
    pass


class BuildConfig(pydantic.BaseModel):
    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(
        validate_by_alias=True,
        validate_by_name=True,
        serialize_by_alias=True,
    )

    build_command: Annotated[str, pydantic.Field(alias="build-command")] = (
        "npm run build"
    )
    install_command: Annotated[str, pydantic.Field(alias="install-command")] = (
        "npm install"
    )
    dist_path: Annotated[Path, pydantic.Field(alias="dist-path")] = Path("dist")
    deps_path: Annotated[Path, pydantic.Field(alias="deps-path")] = Path(
        "node_modules"
    )
    zip_output_path: Annotated[Path, pydantic.Field(alias="zip-output-path")] = Path(
        "builds"
    )
    # reinstall dependencies on every build, even if they are present.
    auto_install: Annotated[bool, pydantic.Field(alias="auto-install")] = False
    auto_fetch_pull: Annotated[bool, pydantic.Field(alias="auto-fetch-pull")] = True
    allowed_branches: Annotated[
        list[str], pydantic.Field(alias="allowed-branches", default_factory=list)
    ]
    compression_level: Annotated[
        int, pydantic.Field(alias="compression-level", ge=1, le=9)
    ] = 6
    retries: Annotated[int, pydantic.Field(ge=1)] = 3
    retry_delay: Annotated[float, pydantic.Field(alias="retry-delay", ge=0)] = 3.0
    progress_interval: Annotated[
        float, pydantic.Field(alias="progress-interval", gt=0)
    ] = 15.0
    estimated_build_seconds: Annotated[
        float, pydantic.Field(alias="estimated-build-seconds", gt=0)
    ] = 180.0

    def is_branch_allowed(self, branch: str) -> bool:
        """Check `branch` against the allow-list; an empty list allows all."""
        return not self.allowed_branches or branch in self.allowed_branches


class SchedulerConfig(pydantic.BaseModel):
    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(
        validate_by_alias=True,
        validate_by_name=True,
        serialize_by_alias=True,
    )

    settle_delay: Annotated[float, pydantic.Field(alias="settle-delay", ge=0)] = 2.0


class DeliveryConfig(pydantic.BaseModel):
    path: Path = Path("delivered")


class Config(pydantic.BaseModel):
    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(
        populate_by_name=True,
        validate_by_alias=True,
        serialize_by_alias=True,
    )

    project_path: Annotated[Path, pydantic.Field(alias="project-path")]
    allowed_users: Annotated[
        list[str], pydantic.Field(alias="allowed-users", default_factory=list)
    ]
    build: BuildConfig = pydantic.Field(default_factory=BuildConfig)
    scheduler: SchedulerConfig = pydantic.Field(default_factory=SchedulerConfig)
    delivery: DeliveryConfig = pydantic.Field(default_factory=DeliveryConfig)

    @classmethod
    def load(cls, path: Path) -> Config:
        if not path.exists() or not path.is_file():
            raise ConfigError(f"config file '{path}' does not exist or is not a file")

        try:
            raw_data = path.read_text()
            if path.suffix.lower() in (".yaml", ".yml"):
                config = Config.model_validate(yaml.safe_load(raw_data))
            else:
                config = Config.model_validate_json(raw_data)

        except (yaml.YAMLError, pydantic.ValidationError) as e:
            msg = f"error loading config at '{path}': {e}"
            logger.error(msg)
            raise ConfigError(msg) from e
        except Exception as e:
            msg = f"unexpected error loading config at '{path}': {e}"
            logger.error(msg)
            raise ConfigError(msg) from e

        return config

    def store(self, path: Path) -> None:
        """Store config to specified path in YAML format."""
        try:
            # Path objects must go through pydantic's JSON serializer first.
            json_dict = json.loads(self.model_dump_json())  # pyright: ignore[reportAny]
            raw_data = yaml.safe_dump(json_dict, indent=2, sort_keys=False)
            _ = path.write_text(raw_data)
        except Exception as e:
            msg = f"error storing config to '{path}': {e}"
            logger.error(msg)
            raise ConfigError(msg) from e

    def is_user_allowed(self, user: str) -> bool:
        """Check `user` against the allow-list; an empty list allows everyone."""
        return not self.allowed_users or user in self.allowed_users
