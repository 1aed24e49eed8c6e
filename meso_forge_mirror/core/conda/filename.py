# SPDX-License-Identifier: GPL-3.0-or-later
"""Recover package identity from a conda package filename.

Used when the package manifest can't be read. Conda filenames look like
``<name>-<version>-<build>.conda``; packages built outside of conda-forge sometimes
also carry the platform, e.g. ``numpy-1.21.0-py39h06a4308_0-linux-64.conda``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from meso_forge_mirror.core.conda.platform import is_platform_string

log = logging.getLogger(__name__)

CONDA_EXTENSIONS = (".conda", ".tar.bz2")

UNKNOWN_NAME = "unknown"
UNKNOWN_VERSION = "0.0.0"
UNKNOWN_BUILD = "unknown"
DEFAULT_BUILD = "0"


@dataclass(frozen=True)
class FilenameInfo:
    """Identity fields parsed from a filename."""

    name: str
    version: str
    build: str
    build_number: int
    platform: Optional[str] = None


def is_conda_package(filename: str) -> bool:
    """Check if a file is a conda package based on its extension."""
    return filename.endswith(CONDA_EXTENSIONS)


def strip_extension(filename: str) -> Optional[str]:
    """Remove the conda package extension, None if there is none."""
    for extension in CONDA_EXTENSIONS:
        if filename.endswith(extension):
            return filename[: -len(extension)]
    return None


def parse_build_number(build: str) -> int:
    """Return the integer after the last underscore of a build string, 0 if there isn't one."""
    if "_" not in build:
        return 0
    suffix = build.rsplit("_", 1)[1]
    return int(suffix) if suffix.isascii() and suffix.isdigit() else 0


def find_platform(tokens: list[str]) -> Optional[tuple[int, str]]:
    """Find the platform among hyphen-separated filename tokens.

    Scans from the second token onward. A platform is either a single token ("noarch")
    or a token joined with the next one ("linux" + "64").

    :return: index of the first platform token and the platform string, or None
    """
    for i in range(1, len(tokens)):
        if is_platform_string(tokens[i]):
            return i, tokens[i]
        if i + 1 < len(tokens):
            joined = f"{tokens[i]}-{tokens[i + 1]}"
            if is_platform_string(joined):
                return i, joined
    return None


def split_name_version(tokens: list[str]) -> tuple[str, str, int]:
    """Split filename tokens into name and version.

    The version is the first token after the first one that starts with an ASCII digit or
    contains a dot; everything before it is the (possibly hyphenated) name.

    :return: name, version and the index of the version token
    """
    for i in range(1, len(tokens)):
        token = tokens[i]
        if (token[:1].isascii() and token[:1].isdigit()) or "." in token:
            return "-".join(tokens[:i]), token, i
    return tokens[0], tokens[1], 1


def parse_filename(filename: str) -> FilenameInfo:
    """Extract name, version, build and a platform hint from a conda package filename.

    Never raises: filenames that can't be split get placeholder values.
    """
    stem = strip_extension(filename)
    if stem is None:
        stem = filename

    tokens = stem.split("-")
    if len(tokens) < 2:
        log.warning(f"Cannot parse filename {filename}, using defaults")
        return FilenameInfo(
            name=UNKNOWN_NAME, version=UNKNOWN_VERSION, build=UNKNOWN_BUILD, build_number=0
        )

    name, version, version_index = split_name_version(tokens)

    found = find_platform(tokens)
    platform = None
    build_end = len(tokens)
    if found is not None:
        platform_index, platform = found
        if platform_index > version_index:
            build_end = platform_index

    build = "-".join(tokens[version_index + 1 : build_end]) or DEFAULT_BUILD

    return FilenameInfo(
        name=name,
        version=version,
        build=build,
        build_number=parse_build_number(build),
        platform=platform,
    )
