# SPDX-License-Identifier: GPL-3.0-or-later
import pytest

from meso_forge_mirror.core.conda.filename import (
    FilenameInfo,
    is_conda_package,
    parse_build_number,
    parse_filename,
    strip_extension,
)


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("numpy-1.21.0-py39_0.conda", True),
        ("numpy-1.21.0-py39_0.tar.bz2", True),
        ("numpy-1.21.0-py39_0.tar.gz", False),
        ("README.md", False),
        ("numpy.conda.zip", False),
    ],
)
def test_is_conda_package(filename: str, expected: bool) -> None:
    assert is_conda_package(filename) is expected


def test_strip_extension() -> None:
    assert strip_extension("pkg-1.0-0.tar.bz2") == "pkg-1.0-0"
    assert strip_extension("pkg-1.0-0.conda") == "pkg-1.0-0"
    assert strip_extension("pkg-1.0-0.zip") is None


@pytest.mark.parametrize(
    "build, expected",
    [
        ("py39h06a4308_0", 0),
        ("h1234_12", 12),
        ("pyhd8ed1ab_3", 3),
        ("h1234", 0),
        ("py39_abc", 0),
        ("", 0),
    ],
)
def test_parse_build_number(build: str, expected: int) -> None:
    assert parse_build_number(build) == expected


@pytest.mark.parametrize(
    "filename, expected",
    [
        pytest.param(
            "numpy-1.21.0-py39h06a4308_0-linux-64.conda",
            FilenameInfo("numpy", "1.21.0", "py39h06a4308_0", 0, "linux-64"),
            id="platform_suffix",
        ),
        pytest.param(
            "okd-install-4.14.0-h1234_5.conda",
            FilenameInfo("okd-install", "4.14.0", "h1234_5", 5, None),
            id="hyphenated_name",
        ),
        pytest.param(
            "mypkg-1.0-pyhd8ed1ab_0-noarch.tar.bz2",
            FilenameInfo("mypkg", "1.0", "pyhd8ed1ab_0", 0, "noarch"),
            id="noarch_suffix",
        ),
        pytest.param(
            "python-dateutil-2.8.2-pyhd8ed1ab_0.tar.bz2",
            FilenameInfo("python-dateutil", "2.8.2", "pyhd8ed1ab_0", 0, None),
            id="no_platform",
        ),
        pytest.param(
            "mytool-1.0.conda",
            FilenameInfo("mytool", "1.0", "0", 0, None),
            id="no_build",
        ),
        pytest.param(
            "mytool-2-osx-arm64.conda",
            FilenameInfo("mytool", "2", "0", 0, "osx-arm64"),
            id="platform_right_after_version",
        ),
        pytest.param(
            "tool-\u00b2x-1-h_0.conda",
            FilenameInfo("tool-\u00b2x", "1", "h_0", 0, None),
            id="non_ascii_digit_is_part_of_name",
        ),
    ],
)
def test_parse_filename(filename: str, expected: FilenameInfo) -> None:
    assert parse_filename(filename) == expected


@pytest.mark.parametrize("filename", ["package.conda", "package", "nohyphens.tar.bz2"])
def test_parse_filename_without_enough_tokens(filename: str) -> None:
    assert parse_filename(filename) == FilenameInfo("unknown", "0.0.0", "unknown", 0, None)


def test_parse_filename_bare_64_is_not_a_platform() -> None:
    info = parse_filename("mytool-1.0-h1_0-64.conda")

    assert info.platform is None
    assert info.build == "h1_0-64"
