# chatbuild - builder - archive
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
import re
import zipfile
from collections.abc import Iterator
from pathlib import Path
from typing import override

import pydantic

from chatbuild.builder import BuilderError
from chatbuild.builder import logger as parent_logger
from chatbuild.builder.progress import ProgressReporter, Stage

logger = parent_logger.getChild("archive")

# characters not allowed in file names on at least one common platform.
_ILLEGAL_CHARS_RE = re.compile(r'[/\\:*?"<>|]')

PROGRESS_START = 70
PROGRESS_END = 80
PROGRESS_STEP = 2

_MIB = 1024 * 1024


class ArchiveError(BuilderError):
    @override
    def __str__(self) -> str:
        return "Archive error" + (f": {self.msg}" if self.msg else "")


class ArchiveInfo(pydantic.BaseModel):
    path: Path
    file_name: str
    size_mb: float
    total_bytes: int


def sanitize_archive_name(name: str) -> str:
    """Replace characters that can't appear in a file name with '-'."""
    return _ILLEGAL_CHARS_RE.sub("-", name)


def _iter_files(source_dir: Path) -> Iterator[Path]:
    """Yield regular files under `source_dir`, in a stable order."""
    for root, dirs, files in source_dir.walk():
        dirs.sort()
        for name in sorted(files):
            p = root / name
            if p.is_file():
                yield p


def directory_size(source_dir: Path) -> int:
    """Sum the sizes of all regular files under `source_dir`."""
    return sum(p.stat().st_size for p in _iter_files(source_dir))


def _write_member(zf: zipfile.ZipFile, src: Path, arcname: str) -> int:
    zf.write(src, arcname)
    return src.stat().st_size


def _progress_percent(processed: int, total: int) -> int:
    if total <= 0:
        return PROGRESS_END
    span = PROGRESS_END - PROGRESS_START
    return PROGRESS_START + min(span, (processed * span) // total)


async def package(
    source_dir: Path,
    output_dir: Path,
    base_name: str,
    *,
    compression_level: int = 6,
    progress: ProgressReporter | None = None,
    arc_root: str | None = None,
) -> ArchiveInfo:
    """
    Compress `source_dir` into `output_dir/<base_name>.zip`.

    `base_name` is sanitized first. Members are stored under `arc_root`, or the
    source directory's name if not provided. Progress is reported within the
    70-80% range, only when it advanced by at least two points or at the end.
    On error the partial archive is removed and `ArchiveError` is raised.
    """
    if not source_dir.is_dir():
        msg = f"source directory '{source_dir}' does not exist"
        logger.error(msg)
        raise ArchiveError(msg)

    try:
        total_bytes = await asyncio.to_thread(directory_size, source_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        msg = f"unable to prepare archive of '{source_dir}': {e}"
        logger.error(msg)
        raise ArchiveError(msg) from e

    file_name = f"{sanitize_archive_name(base_name)}.zip"
    archive_path = output_dir / file_name
    root = arc_root if arc_root is not None else source_dir.name
    total_mb = total_bytes / _MIB

    logger.info(
        f"packaging '{source_dir}' ({total_mb:.1f} MB) into '{archive_path}', "
        + f"compression level {compression_level}/9"
    )

    processed = 0
    last_percent = PROGRESS_START
    try:
        zf = zipfile.ZipFile(
            archive_path,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compression_level,
        )
        try:
            for src in _iter_files(source_dir):
                rel = src.relative_to(source_dir).as_posix()
                arcname = f"{root}/{rel}" if root else rel
                processed += await asyncio.to_thread(_write_member, zf, src, arcname)

                percent = _progress_percent(processed, total_bytes)
                if progress and (
                    percent - last_percent >= PROGRESS_STEP or percent >= PROGRESS_END
                ):
                    last_percent = percent
                    await progress.report(
                        Stage.compress,
                        percent,
                        f"packaging... {processed / _MIB:.1f}MB/{total_mb:.1f}MB",
                    )
        finally:
            await asyncio.to_thread(zf.close)
    except (OSError, ValueError, zipfile.LargeZipFile) as e:
        archive_path.unlink(missing_ok=True)
        msg = f"error writing archive '{archive_path}': {e}"
        logger.error(msg)
        raise ArchiveError(msg) from e
    except asyncio.CancelledError:
        archive_path.unlink(missing_ok=True)
        raise

    size_mb = round(archive_path.stat().st_size / _MIB, 2)
    logger.info(f"packaged '{file_name}' ({size_mb:.2f} MB)")

    if progress:
        await progress.report(
            Stage.package, PROGRESS_END, f"packaged {file_name} ({size_mb:.2f}MB)"
        )

    return ArchiveInfo(
        path=archive_path,
        file_name=file_name,
        size_mb=size_mb,
        total_bytes=total_bytes,
    )
