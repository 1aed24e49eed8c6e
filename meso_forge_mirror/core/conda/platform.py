# SPDX-License-Identifier: GPL-3.0-or-later
"""Platform resolution for conda packages.

A package's platform (its repository subdir) is resolved from whatever hints could be
recovered, either from the package's info/index.json or from its filename. The hints are
tried by an ordered list of strategies; the first one that produces a platform wins:

1. subdir       -- the hint is one of the canonical subdir strings
2. platform+arch -- the pair maps to a subdir through a fixed table
3. platform     -- the platform hint alone is a canonical subdir string
4. name         -- the package name is a known binary tool, or has a noarch-only prefix
5. default      -- noarch

Resolution never fails.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional

log = logging.getLogger(__name__)


class Platform(str, enum.Enum):
    """A conda repository subdir."""

    LINUX_64 = "linux-64"
    LINUX_32 = "linux-32"
    LINUX_AARCH64 = "linux-aarch64"
    LINUX_ARMV6L = "linux-armv6l"
    LINUX_ARMV7L = "linux-armv7l"
    LINUX_PPC64LE = "linux-ppc64le"
    LINUX_S390X = "linux-s390x"
    OSX_64 = "osx-64"
    OSX_ARM64 = "osx-arm64"
    WIN_32 = "win-32"
    WIN_64 = "win-64"
    NOARCH = "noarch"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_subdir(cls, subdir: Optional[str]) -> Optional["Platform"]:
        """Return the platform for a canonical subdir string, None for anything else."""
        if subdir is None:
            return None
        try:
            return cls(subdir.strip().lower())
        except ValueError:
            return None


PLATFORM_STRINGS: frozenset[str] = frozenset(p.value for p in Platform)


def is_platform_string(value: str) -> bool:
    """Check if value is one of the canonical subdir strings.

    Fragments such as "64" or "linux" are not platform strings on their own.
    """
    return value in PLATFORM_STRINGS


PLATFORM_ARCH_SUBDIRS: dict[tuple[str, str], Platform] = {
    ("linux", "x86_64"): Platform.LINUX_64,
    ("linux", "x86"): Platform.LINUX_32,
    ("linux", "i686"): Platform.LINUX_32,
    ("linux", "aarch64"): Platform.LINUX_AARCH64,
    ("linux", "armv6l"): Platform.LINUX_ARMV6L,
    ("linux", "armv7l"): Platform.LINUX_ARMV7L,
    ("linux", "ppc64le"): Platform.LINUX_PPC64LE,
    ("linux", "s390x"): Platform.LINUX_S390X,
    ("osx", "x86_64"): Platform.OSX_64,
    ("osx", "arm64"): Platform.OSX_ARM64,
    ("win", "x86"): Platform.WIN_32,
    ("win", "x86_64"): Platform.WIN_64,
}

# Packages that ship prebuilt binaries but whose metadata is commonly unavailable
# (e.g. .conda artifacts, where the manifest can't be read).
KNOWN_LINUX_64_PACKAGES: frozenset[str] = frozenset(
    {
        # installers
        "coreos-installer",
        "okd-install",
        "openshift-install",
        "butane",
        "ignition",
        # container tooling
        "podman",
        "buildah",
        "skopeo",
        "crun",
        "runc",
        "conmon",
        "netavark",
        "aardvark-dns",
        "docker-compose",
        # kubernetes clis
        "kubectl",
        "oc",
        "helm",
        "k9s",
        "kind",
        "minikube",
        "kustomize",
        "kubelogin",
        # system tools
        "ripgrep",
        "fd-find",
        "bat",
        "jq",
        "yq",
        "htop",
        "tmux",
        # package managers
        "pixi",
        "rattler-build",
        "micromamba",
        "uv",
        # virtualization
        "qemu",
        "libvirt",
        "vagrant",
        "packer",
    }
)

NOARCH_NAME_PREFIXES: tuple[str, ...] = ("rb-", "python-", "nodejs-")


@dataclass(frozen=True)
class PlatformHints:
    """Everything known about a package that could tell us its platform."""

    subdir: Optional[str] = None
    platform: Optional[str] = None
    arch: Optional[str] = None
    name: Optional[str] = None


def _match_subdir(hints: PlatformHints) -> Optional[Platform]:
    if not hints.subdir:
        return None
    platform = Platform.from_subdir(hints.subdir)
    if platform is None:
        log.warning(f"Unrecognized subdir {hints.subdir!r}, trying other platform hints")
    return platform


def _match_platform_arch(hints: PlatformHints) -> Optional[Platform]:
    if not (hints.platform and hints.arch):
        return None
    return PLATFORM_ARCH_SUBDIRS.get((hints.platform.lower(), hints.arch.lower()))


def _match_platform(hints: PlatformHints) -> Optional[Platform]:
    return Platform.from_subdir(hints.platform)


def _match_name(hints: PlatformHints) -> Optional[Platform]:
    if not hints.name:
        return None
    return guess_platform_from_name(hints.name)


def _default(hints: PlatformHints) -> Optional[Platform]:
    log.warning(f"Could not determine platform for {hints.name or 'package'}, defaulting to noarch")
    return Platform.NOARCH


class ResolutionStrategy(NamedTuple):
    """A named step of the platform resolution cascade."""

    name: str
    resolve: Callable[[PlatformHints], Optional[Platform]]


STRATEGIES: tuple[ResolutionStrategy, ...] = (
    ResolutionStrategy("subdir", _match_subdir),
    ResolutionStrategy("platform-arch", _match_platform_arch),
    ResolutionStrategy("platform", _match_platform),
    ResolutionStrategy("name", _match_name),
    ResolutionStrategy("default", _default),
)


def resolve_platform_with_strategy(hints: PlatformHints) -> tuple[Platform, str]:
    """Resolve the platform and report which strategy produced it."""
    for strategy in STRATEGIES:
        platform = strategy.resolve(hints)
        if platform is not None:
            log.debug(f"Resolved platform {platform} for {hints.name} by {strategy.name}")
            return platform, strategy.name
    return Platform.NOARCH, "default"


def resolve_platform(hints: PlatformHints) -> Platform:
    """Resolve the platform of a package from its hints. Never raises, defaults to noarch."""
    platform, _ = resolve_platform_with_strategy(hints)
    return platform


def guess_platform_from_name(name: str) -> Optional[Platform]:
    """Guess a platform from the package name alone, None if the name tells us nothing."""
    if name in KNOWN_LINUX_64_PACKAGES:
        return Platform.LINUX_64
    if name.startswith(NOARCH_NAME_PREFIXES):
        return Platform.NOARCH
    return None


def guess_platform(name: str) -> Platform:
    """Guess a platform from the package name alone, defaulting to noarch."""
    return guess_platform_from_name(name) or Platform.NOARCH
