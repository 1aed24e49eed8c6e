# SPDX-License-Identifier: GPL-3.0-or-later
import pytest

from meso_forge_mirror.core.conda.platform import (
    Platform,
    PlatformHints,
    guess_platform,
    guess_platform_from_name,
    is_platform_string,
    resolve_platform,
    resolve_platform_with_strategy,
)


@pytest.mark.parametrize("platform", list(Platform))
def test_from_subdir_accepts_every_canonical_subdir(platform: Platform) -> None:
    assert Platform.from_subdir(platform.value) == platform


def test_there_are_twelve_platforms() -> None:
    assert len(Platform) == 12


@pytest.mark.parametrize("value", ["64", "linux", "osx", "linux-riscv64", "", "Linux_64"])
def test_is_platform_string_rejects_fragments(value: str) -> None:
    assert not is_platform_string(value)


def test_from_subdir_normalizes_case_and_whitespace() -> None:
    assert Platform.from_subdir(" Linux-64 ") == Platform.LINUX_64
    assert Platform.from_subdir(None) is None


@pytest.mark.parametrize(
    "hints, expected_platform, expected_strategy",
    [
        pytest.param(
            PlatformHints(subdir="osx-arm64", platform="linux", arch="x86_64", name="okd-install"),
            Platform.OSX_ARM64,
            "subdir",
            id="subdir_wins",
        ),
        pytest.param(
            PlatformHints(platform="linux", arch="x86_64", name="mytool"),
            Platform.LINUX_64,
            "platform-arch",
            id="platform_arch_pair",
        ),
        pytest.param(
            PlatformHints(platform="osx", arch="arm64"),
            Platform.OSX_ARM64,
            "platform-arch",
            id="osx_arm64_pair",
        ),
        pytest.param(
            PlatformHints(platform="win-64", name="mytool"),
            Platform.WIN_64,
            "platform",
            id="platform_is_subdir",
        ),
        pytest.param(
            PlatformHints(subdir="linux-riscv64", name="kubectl"),
            Platform.LINUX_64,
            "name",
            id="unknown_subdir_falls_through",
        ),
        pytest.param(
            PlatformHints(name="rb-rake"),
            Platform.NOARCH,
            "name",
            id="noarch_prefix",
        ),
        pytest.param(
            PlatformHints(name="mytool"),
            Platform.NOARCH,
            "default",
            id="nothing_known",
        ),
        pytest.param(PlatformHints(), Platform.NOARCH, "default", id="no_hints"),
    ],
)
def test_resolve_platform_with_strategy(
    hints: PlatformHints, expected_platform: Platform, expected_strategy: str
) -> None:
    assert resolve_platform_with_strategy(hints) == (expected_platform, expected_strategy)
    assert resolve_platform(hints) == expected_platform


def test_platform_arch_pair_is_case_insensitive() -> None:
    assert resolve_platform(PlatformHints(platform="Linux", arch="AARCH64")) == (
        Platform.LINUX_AARCH64
    )


@pytest.mark.parametrize(
    "name, expected",
    [
        ("okd-install", Platform.LINUX_64),
        ("openshift-install", Platform.LINUX_64),
        ("kubectl", Platform.LINUX_64),
        ("python-dateutil", Platform.NOARCH),
        ("nodejs-left-pad", Platform.NOARCH),
        ("rb-bundler", Platform.NOARCH),
        ("numpy", Platform.NOARCH),
    ],
)
def test_guess_platform(name: str, expected: Platform) -> None:
    assert guess_platform(name) == expected


def test_guess_platform_from_name_unknown() -> None:
    assert guess_platform_from_name("numpy") is None
