# SPDX-License-Identifier: GPL-3.0-or-later
"""Mirror the conda packages found inside ZIP files and gzipped tarballs."""

import io
import logging
import re
import tarfile
import zipfile
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Iterator, Optional

from meso_forge_mirror.core.conda.filename import is_conda_package
from meso_forge_mirror.core.errors import BaseError, InvalidInput, MirrorFailed
from meso_forge_mirror.core.repository import Repository
from meso_forge_mirror.core.sources.general import compile_pattern

log = logging.getLogger(__name__)

DEFAULT_PACKAGE_PATTERN = r".*\.conda$|.*\.tar\.bz2$"

# an archive member: its path and a way to read its content
ArchiveEntry = tuple[str, Callable[[], bytes]]


@dataclass
class ScanResult:
    """What happened to the packages of one archive."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    all_paths: list[str] = field(default_factory=list)


def _zip_entries(content: bytes) -> Iterator[ArchiveEntry]:
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise InvalidInput(f"Not a valid ZIP file: {e}") from e

    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            yield info.filename, lambda info=info: archive.read(info)


def _tarball_entries(content: bytes) -> Iterator[ArchiveEntry]:
    try:
        archive = tarfile.open(fileobj=io.BytesIO(content), mode="r:gz")
    except (tarfile.TarError, OSError) as e:
        raise InvalidInput(f"Not a valid gzipped tarball: {e}") from e

    with archive:
        for member in archive:
            if not member.isfile():
                continue

            def read(member: tarfile.TarInfo = member) -> bytes:
                fileobj = archive.extractfile(member)
                return fileobj.read() if fileobj else b""

            yield member.name, read


def _mirror_entries(
    entries: Iterator[ArchiveEntry],
    repository: Repository,
    pattern: Optional[re.Pattern[str]],
    kind: str,
) -> ScanResult:
    result = ScanResult()

    for path, read in entries:
        result.all_paths.append(path)
        matches = pattern.search(path) if pattern else True
        if not (matches and is_conda_package(path)):
            log.debug(f"Skipping {path}")
            continue

        log.info(f"Found conda package in {kind}: {path}")
        filename = PurePosixPath(path).name
        try:
            repository.upload(filename, read())
        except BaseError as e:
            log.error(f"Error mirroring package {filename}: {e}")
            result.failed.append(f"{filename}: {e}")
        else:
            log.info(f"Successfully mirrored {filename}")
            result.succeeded.append(filename)

    log.info(
        f"{kind.capitalize()} processing completed: "
        f"{len(result.succeeded)} succeeded, {len(result.failed)} failed"
    )

    if result.succeeded:
        repository.finalize()

    return result


def _raise_on_failures(result: ScanResult, kind: str, pattern: Optional[str]) -> None:
    if result.failed:
        raise MirrorFailed(f"{len(result.failed)} packages failed to mirror", result.failed)

    if not result.succeeded:
        if pattern:
            reason = f"No conda packages found in {kind} matching pattern: {pattern!r}"
            hint = (
                f"File paths must match regex pattern {pattern!r} "
                "and have .conda or .tar.bz2 extensions."
            )
        else:
            reason = f"No conda packages found in {kind}"
            hint = "Files must have .conda or .tar.bz2 extensions."
        raise MirrorFailed(f"{reason}\nAll files in {kind}:", result.all_paths, solution=hint)


def mirror_from_zip(content: bytes, pattern: str, repository: Repository) -> ScanResult:
    """Mirror every conda package in a ZIP file whose path matches pattern.

    Packages that were mirrored are kept even if others fail.

    :param content: the ZIP file
    :param pattern: regular expression searched for in each member path, empty matches all
    :param repository: where to mirror the packages
    :raises InvalidInput: if the pattern or the ZIP file is invalid
    :raises MirrorFailed: if any package failed, or none was found
    """
    regex = compile_pattern(pattern) if pattern else None
    log.info("Extracting conda packages from ZIP file")
    result = _mirror_entries(_zip_entries(content), repository, regex, "ZIP file")
    _raise_on_failures(result, "ZIP file", pattern)
    return result


def mirror_from_tarball(content: bytes, repository: Repository) -> ScanResult:
    """Mirror every conda package in a gzipped tarball.

    :raises InvalidInput: if the tarball is invalid
    :raises MirrorFailed: if any package failed, or none was found
    """
    log.info("Extracting conda packages from tarball")
    result = _mirror_entries(_tarball_entries(content), repository, None, "tarball")
    _raise_on_failures(result, "tarball", None)
    return result
