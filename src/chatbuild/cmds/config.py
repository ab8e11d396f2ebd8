# chatbuild - commands - config
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


import errno
import json
import sys
from pathlib import Path
from typing import cast

import click
import yaml

from chatbuild.cmds import Ctx, pass_ctx, with_config
from chatbuild.config import BuildConfig, Config, ConfigError


def _dump_yaml(config: Config) -> str:
    json_dict = json.loads(config.model_dump_json())  # pyright: ignore[reportAny]
    return yaml.safe_dump(json_dict, indent=2, sort_keys=False)


def config_init(
    config_path: Path,
    *,
    project_path: Path | None = None,
    allowed_users: list[str] | None = None,
    allowed_branches: list[str] | None = None,
    assume_yes: bool = False,
) -> None:
    """Initialize config, prompting for what wasn't provided, and store it."""
    if not project_path:
        project_path = Path(
            cast(str, click.prompt("Project path", type=str))
        ).resolve()

    if not project_path.exists() or not project_path.is_dir():
        click.echo(
            f"warning: project path '{project_path}' does not exist "
            + "or is not a directory",
            err=True,
        )

    config = Config(
        project_path=project_path,
        allowed_users=allowed_users if allowed_users else [],
        build=BuildConfig(
            allowed_branches=allowed_branches if allowed_branches else []
        ),
    )

    if config_path.suffix not in (".yaml", ".yml"):
        new_config_path = config_path.with_suffix(".yaml")
        click.echo(
            f"config at '{config_path}' not YAML, use '{new_config_path}' instead."
        )
        config_path = new_config_path

    if (
        config_path.exists()
        and not assume_yes
        and not click.confirm("Config file exists, overwrite?")
    ):
        click.echo(f"do not write config file to '{config_path}'", err=True)
        sys.exit(errno.ENOTRECOVERABLE)

    click.echo("config:\n")
    click.echo(_dump_yaml(config))

    if not assume_yes and not click.confirm(f"Write config to '{config_path}'?"):
        click.echo("do not write config file")
        sys.exit(errno.ENOTRECOVERABLE)

    try:
        config.store(config_path)
    except ConfigError as e:
        click.echo(f"error writing config file: {e}", err=True)
        sys.exit(errno.ENOTRECOVERABLE)

    click.echo(f"wrote config file to '{config_path}'")


@click.group("config", help="Config related operations.")
def cmd_config() -> None:
    pass


@cmd_config.command("init", help="Initialize the configuration file.")
@click.option(
    "--project",
    "project_path",
    type=click.Path(
        path_type=Path,
        exists=False,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    required=False,
    help="Path to the project's git working copy.",
)
@click.option(
    "--allow-user",
    "allowed_users",
    type=str,
    multiple=True,
    help="User allowed to request builds (default: everyone).",
)
@click.option(
    "--allow-branch",
    "allowed_branches",
    type=str,
    multiple=True,
    help="Branch allowed to be built (default: all).",
)
@click.option(
    "-y",
    "--yes",
    "assume_yes",
    is_flag=True,
    default=False,
    help="Don't ask for confirmation.",
)
@pass_ctx
def cmd_config_init(
    ctx: Ctx,
    project_path: Path | None,
    allowed_users: tuple[str, ...],
    allowed_branches: tuple[str, ...],
    assume_yes: bool,
) -> None:
    assert ctx.config_path
    config_init(
        ctx.config_path,
        project_path=project_path,
        allowed_users=list(allowed_users),
        allowed_branches=list(allowed_branches),
        assume_yes=assume_yes,
    )


@cmd_config.command("show", help="Show the current configuration.")
@with_config
def cmd_config_show(config: Config) -> None:
    click.echo(_dump_yaml(config))
