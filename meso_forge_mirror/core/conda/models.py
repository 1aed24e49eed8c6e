# SPDX-License-Identifier: GPL-3.0-or-later
"""Data models for conda packages, their manifests and repository indexes."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meso_forge_mirror.core.conda.platform import Platform, PlatformHints

# conda writes timestamps in milliseconds, very old packages used seconds
_MAX_SECONDS_TIMESTAMP = 253402300799


def datetime_from_timestamp(value: float) -> datetime:
    """Convert a conda timestamp (milliseconds or seconds since the epoch) to a datetime.

    :raises ValueError: if the timestamp is not a finite value a datetime can hold
    """
    if value > _MAX_SECONDS_TIMESTAMP:
        value = value / 1000
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"timestamp {value!r} is out of range") from e


def timestamp_from_datetime(value: datetime) -> int:
    """Convert a datetime to conda's millisecond timestamp."""
    return int(value.timestamp() * 1000)


class IndexJson(BaseModel):
    """The info/index.json manifest embedded in a conda package.

    Only the fields needed for mirroring are modelled, unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    version: str
    build: str = ""
    build_number: int = 0
    depends: list[str] = Field(default_factory=list)
    license: Optional[str] = None
    subdir: Optional[str] = None
    platform: Optional[str] = None
    arch: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def convert_timestamp(cls, value: object) -> object:
        """Accept conda's numeric timestamps."""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime_from_timestamp(value)
        return value


@dataclass(frozen=True)
class PackageIdentity:
    """The canonical identity of a conda package plus any platform hints found along the way."""

    name: str
    version: str
    build: str
    build_number: int = 0
    depends: tuple[str, ...] = ()
    license: Optional[str] = None
    platform_hint: Optional[str] = None
    subdir_hint: Optional[str] = None
    arch_hint: Optional[str] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def from_index_json(cls, index: IndexJson) -> "PackageIdentity":
        """Build an identity from a parsed manifest."""
        return cls(
            name=index.name,
            version=index.version,
            build=index.build,
            build_number=index.build_number,
            depends=tuple(index.depends),
            license=index.license,
            platform_hint=index.platform,
            subdir_hint=index.subdir,
            arch_hint=index.arch,
            timestamp=index.timestamp,
        )

    def platform_hints(self) -> PlatformHints:
        """Return the hints used for platform resolution."""
        return PlatformHints(
            subdir=self.subdir_hint,
            platform=self.platform_hint,
            arch=self.arch_hint,
            name=self.name,
        )


@dataclass(frozen=True)
class ProcessedPackage:
    """A conda package ready to be placed in a repository."""

    content: bytes = field(repr=False)
    identity: PackageIdentity
    filename: str
    platform: Platform
    size: int
    md5: str
    sha256: str


class PackageRecord(BaseModel):
    """A single entry of repodata.json."""

    build: str
    build_number: int
    depends: list[str]
    license: str
    md5: str
    sha256: str
    size: int
    subdir: str
    name: str
    version: str
    timestamp: Optional[int] = None

    @classmethod
    def from_package(cls, package: ProcessedPackage) -> "PackageRecord":
        """Build the repodata record for a processed package."""
        identity = package.identity
        return cls(
            build=identity.build,
            build_number=identity.build_number,
            depends=list(identity.depends),
            license=identity.license or "",
            md5=package.md5,
            sha256=package.sha256,
            size=package.size,
            subdir=package.platform.value,
            name=identity.name,
            version=identity.version,
            timestamp=(
                timestamp_from_datetime(identity.timestamp) if identity.timestamp else None
            ),
        )


class RepoDataInfo(BaseModel):
    """The info section of repodata.json."""

    subdir: str


class RepoData(BaseModel):
    """A per-platform repodata.json document."""

    info: RepoDataInfo
    packages: dict[str, PackageRecord] = Field(default_factory=dict)

    @classmethod
    def from_packages(cls, platform: Platform, packages: list[ProcessedPackage]) -> "RepoData":
        """Build the index of a platform from all of its packages."""
        return cls(
            info=RepoDataInfo(subdir=platform.value),
            packages={
                package.filename: PackageRecord.from_package(package)
                for package in sorted(packages, key=lambda p: p.filename)
            },
        )

    def to_json(self) -> str:
        """Serialize to pretty-printed JSON."""
        return self.model_dump_json(indent=2)


@dataclass
class PackageStats:
    """Aggregate statistics about processed packages."""

    total_packages: int = 0
    total_size: int = 0
    packages_by_platform: Counter[Platform] = field(default_factory=Counter)

    def add(self, package: ProcessedPackage) -> None:
        """Account for one more package."""
        self.total_packages += 1
        self.total_size += package.size
        self.packages_by_platform[package.platform] += 1

    def summary(self) -> str:
        """Return a human-readable summary."""
        lines = [
            "Package Statistics:",
            f"  Total packages: {self.total_packages}",
            f"  Total size: {self.total_size / 1_000_000:.2f} MB",
            "  Packages by platform:",
        ]
        for platform, count in sorted(self.packages_by_platform.items()):
            lines.append(f"    {platform}: {count}")
        return "\n".join(lines)
