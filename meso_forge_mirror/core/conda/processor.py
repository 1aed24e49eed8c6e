# SPDX-License-Identifier: GPL-3.0-or-later
import dataclasses
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from meso_forge_mirror.core.checksum import ChecksumInfo, md5_hexdigest, sha256_hexdigest
from meso_forge_mirror.core.conda.archive import (
    DEFAULT_EXTRACTORS,
    ManifestExtractor,
    find_extractor,
)
from meso_forge_mirror.core.conda.filename import parse_filename
from meso_forge_mirror.core.conda.models import PackageIdentity, PackageStats, ProcessedPackage
from meso_forge_mirror.core.conda.platform import Platform, resolve_platform_with_strategy
from meso_forge_mirror.core.errors import (
    ChecksumVerificationFailed,
    PackageRejected,
    ParseError,
    UnsupportedFormat,
)

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(tz=timezone.utc)


class PackageStore:
    """Processed packages of one mirroring run, keyed by filename.

    Not thread-safe. A package with the same filename replaces the previous one.
    """

    def __init__(self) -> None:
        self._packages: dict[str, ProcessedPackage] = {}

    def put(self, package: ProcessedPackage) -> None:
        if package.filename in self._packages:
            log.debug(f"Replacing previously processed {package.filename}")
        self._packages[package.filename] = package

    def get(self, filename: str) -> Optional[ProcessedPackage]:
        return self._packages.get(filename)

    def values(self) -> list[ProcessedPackage]:
        return list(self._packages.values())

    def discard(self, filename: str) -> None:
        self._packages.pop(filename, None)

    def clear(self) -> None:
        self._packages.clear()

    def __len__(self) -> int:
        return len(self._packages)

    def __iter__(self) -> Iterator[ProcessedPackage]:
        return iter(self.values())

    def __contains__(self, filename: object) -> bool:
        return filename in self._packages

    def by_platform(self) -> dict[Platform, list[ProcessedPackage]]:
        """Group the stored packages by their resolved platform."""
        grouped: dict[Platform, list[ProcessedPackage]] = defaultdict(list)
        for package in self._packages.values():
            grouped[package.platform].append(package)
        return dict(grouped)

    def for_platform(self, platform: Platform) -> list[ProcessedPackage]:
        """Return the stored packages that belong to a platform."""
        return [p for p in self._packages.values() if p.platform == platform]

    def stats(self) -> PackageStats:
        """Compute aggregate statistics over the stored packages."""
        stats = PackageStats()
        for package in self._packages.values():
            stats.add(package)
        return stats


class PackageProcessor:
    """Turn raw package bytes into ProcessedPackage records."""

    def __init__(
        self,
        store: PackageStore,
        *,
        clock: Clock = utc_now,
        extractors: tuple[ManifestExtractor, ...] = DEFAULT_EXTRACTORS,
    ) -> None:
        """Create a processor.

        :param store: where processed packages are cached
        :param clock: source of the timestamp for packages whose manifest has none
        :param extractors: manifest extractors, one per supported extension
        """
        self.store = store
        self.clock = clock
        self.extractors = extractors

    def process(self, content: bytes, filename: str) -> ProcessedPackage:
        """Extract the identity of a package, resolve its platform and cache the result.

        :raises UnsupportedFormat: if the filename has no conda package extension
        """
        extractor = find_extractor(filename, self.extractors)
        if extractor is None:
            raise UnsupportedFormat(filename)

        identity = self._extract_identity(extractor, content, filename)
        if identity.timestamp is None:
            identity = dataclasses.replace(identity, timestamp=self.clock())

        platform, strategy = resolve_platform_with_strategy(identity.platform_hints())
        log.info(
            f"Processed {filename}: {identity.name} {identity.version} "
            f"(platform {platform} by {strategy})"
        )

        package = ProcessedPackage(
            content=content,
            identity=identity,
            filename=filename,
            platform=platform,
            size=len(content),
            md5=md5_hexdigest(content),
            sha256=sha256_hexdigest(content),
        )
        self.store.put(package)
        return package

    def _extract_identity(
        self, extractor: ManifestExtractor, content: bytes, filename: str
    ) -> PackageIdentity:
        try:
            index = extractor.extract(content, filename)
        except ParseError as e:
            log.warning(f"{e}, falling back to filename parsing")
            return identity_from_filename(filename)

        log.info(f"Read package metadata from {filename}")
        return PackageIdentity.from_index_json(index)


def identity_from_filename(filename: str) -> PackageIdentity:
    """Build a package identity from filename heuristics alone."""
    info = parse_filename(filename)
    return PackageIdentity(
        name=info.name,
        version=info.version,
        build=info.build,
        build_number=info.build_number,
        platform_hint=info.platform,
    )


def validate_package(package: ProcessedPackage) -> None:
    """Check that a package is complete and its stored digests match its content.

    :raises PackageRejected: if the filename, name, version or content is empty
    :raises ChecksumVerificationFailed: if a stored digest doesn't match the content
    """
    if not package.filename:
        raise PackageRejected("Package has an empty filename")
    if not package.identity.name:
        raise PackageRejected(f"Package {package.filename} has an empty name")
    if not package.identity.version:
        raise PackageRejected(f"Package {package.filename} has an empty version")
    if not package.content:
        raise PackageRejected(f"Package {package.filename} is empty")

    for checksum in (ChecksumInfo("md5", package.md5), ChecksumInfo("sha256", package.sha256)):
        if not checksum.matches(package.content):
            raise ChecksumVerificationFailed(package.filename, checksum.algorithm)
