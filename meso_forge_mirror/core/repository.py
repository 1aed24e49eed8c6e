# SPDX-License-Identifier: GPL-3.0-or-later
"""Place processed packages into a target repository.

Every target stores a package at ``<platform>/<filename>`` except the package cache, which
is flat. Local and S3 targets also keep a ``<platform>/repodata.json`` index, rebuilt from
all the packages known for that platform.
"""

import enum
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Union

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from meso_forge_mirror.core.conda.models import PackageStats, ProcessedPackage, RepoData
from meso_forge_mirror.core.conda.platform import Platform
from meso_forge_mirror.core.conda.processor import PackageProcessor, PackageStore, validate_package
from meso_forge_mirror.core.config import get_config
from meso_forge_mirror.core.errors import BaseError, InvalidInput, StorageError
from meso_forge_mirror.core.http_requests import get_upload_session

log = logging.getLogger(__name__)

REPODATA_FILENAME = "repodata.json"
CONDA_PACKAGE_CONTENT_TYPE = "application/x-conda-package"
JSON_CONTENT_TYPE = "application/json"


class TargetType(str, enum.Enum):
    """Kinds of repositories packages can be mirrored to."""

    CACHE = "cache"
    LOCAL = "local"
    S3 = "s3"
    PREFIX_DEV = "prefix-dev"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_string(cls, value: str) -> "TargetType":
        """Parse a target type, accepting the aliases prefix, minio and file.

        :raises InvalidInput: for unknown target types
        """
        value = value.strip().lower()
        value = _TARGET_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise InvalidInput(
                f"Unknown target type: {value}",
                solution=f"Use one of: {valid} (aliases: prefix, minio, file).",
            )


_TARGET_ALIASES = {"prefix": "prefix-dev", "minio": "s3", "file": "local"}


def build_repodata(platform: Platform, packages: list[ProcessedPackage]) -> str:
    """Render the repodata.json document of a platform."""
    return RepoData.from_packages(platform, packages).to_json() + "\n"


def write_repodata(root: Path, platform: Platform, packages: list[ProcessedPackage]) -> Path:
    """Write <root>/<platform>/repodata.json from the given packages.

    :raises StorageError: if the file can't be written
    """
    path = root / platform.value / REPODATA_FILENAME
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(build_repodata(platform, packages))
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e
    log.info(f"Wrote {path} with {len(packages)} package(s)")
    return path


class StorageBackend(Protocol):
    """Where the bytes of processed packages end up."""

    def store(self, package: ProcessedPackage, packages: PackageStore) -> None:
        """Store a package; packages holds everything processed so far, including it."""
        ...

    def finalize(self, packages: PackageStore) -> None:
        """Bring the repository indexes up to date after the last upload."""
        ...


class LocalBackend:
    """A conda channel on the local filesystem."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def store(self, package: ProcessedPackage, packages: PackageStore) -> None:
        path = self.root / package.platform.value / package.filename
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(package.content)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e
        log.info(f"Stored {package.filename} in {path.parent}")
        write_repodata(self.root, package.platform, packages.for_platform(package.platform))

    def finalize(self, packages: PackageStore) -> None:
        for platform, platform_packages in sorted(packages.by_platform().items()):
            write_repodata(self.root, platform, platform_packages)


class CacheBackend:
    """A flat directory of packages for reuse by package managers, without any index."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def store(self, package: ProcessedPackage, packages: PackageStore) -> None:
        path = self.root / package.filename
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(package.content)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e
        log.info(f"Cached {package.filename} in {self.root}")

    def finalize(self, packages: PackageStore) -> None:
        log.debug("Package cache has no index to update")


def parse_s3_url(url: str) -> tuple[str, str]:
    """Split s3://bucket/some/prefix into the bucket and the prefix (without slashes).

    :raises InvalidInput: if there is no bucket
    """
    bucket, _, prefix = url.removeprefix("s3://").partition("/")
    if not bucket:
        raise InvalidInput(
            f"Invalid S3 target: {url!r}", solution="Use the form s3://bucket[/prefix]."
        )
    return bucket, prefix.strip("/")


class S3Backend:
    """A conda channel in an S3-compatible bucket."""

    def __init__(self, url: str, client: Optional[Any] = None) -> None:
        """Create the backend.

        :param url: s3://bucket[/prefix]
        :param client: boto3 S3 client, created from the config when not given
        """
        self.bucket, self.prefix = parse_s3_url(url)
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            config = get_config()
            self._client = boto3.client(
                "s3", region_name=config.s3_region, endpoint_url=config.s3_endpoint
            )
        return self._client

    def key(self, platform: Platform, filename: str) -> str:
        """Return the object key of a file in a platform directory."""
        return "/".join(p for p in (self.prefix, platform.value, filename) if p)

    def _put(self, key: str, body: bytes, content_type: str) -> None:
        log.debug(f"PUT s3://{self.bucket}/{key} ({len(body)} bytes)")
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Cannot upload s3://{self.bucket}/{key}: {e}") from e

    def store(self, package: ProcessedPackage, packages: PackageStore) -> None:
        self._put(
            self.key(package.platform, package.filename),
            package.content,
            CONDA_PACKAGE_CONTENT_TYPE,
        )
        repodata = build_repodata(package.platform, packages.for_platform(package.platform))
        self._put(
            self.key(package.platform, REPODATA_FILENAME),
            repodata.encode(),
            JSON_CONTENT_TYPE,
        )
        log.info(f"Uploaded {package.filename} to s3://{self.bucket} under {package.platform}/")

    def finalize(self, packages: PackageStore) -> None:
        log.info("S3 repodata is updated on every upload")


class PrefixDevBackend:
    """A prefix.dev channel, which builds its own repodata."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = get_upload_session()
        return self._session

    def store(self, package: ProcessedPackage, packages: PackageStore) -> None:
        url = f"{self.base_url}/{package.platform}/{package.filename}"
        log.debug(f"PUT {url}")
        try:
            response = self.session.put(
                url,
                data=package.content,
                headers={"Content-Type": CONDA_PACKAGE_CONTENT_TYPE},
                timeout=get_config().timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(
                f"Failed to upload {package.filename} to prefix.dev: {e}",
                solution="Check the channel URL and your prefix.dev credentials.",
            ) from e
        log.info(f"Uploaded {package.filename} to prefix.dev under {package.platform}/")

    def finalize(self, packages: PackageStore) -> None:
        log.info("prefix.dev generates repodata on its own")


def create_backend(target_type: TargetType, target: str) -> StorageBackend:
    """Create the storage backend for a target."""
    if target_type == TargetType.LOCAL:
        return LocalBackend(target)
    if target_type == TargetType.CACHE:
        return CacheBackend(target)
    if target_type == TargetType.S3:
        return S3Backend(target)
    return PrefixDevBackend(target)


class Repository:
    """Process, validate and store packages into one target."""

    def __init__(
        self,
        target_type: TargetType,
        target: str,
        *,
        backend: Optional[StorageBackend] = None,
        processor: Optional[PackageProcessor] = None,
    ) -> None:
        """Create a repository.

        :param target_type: the kind of target
        :param target: directory, s3:// URL or prefix.dev channel URL
        :param backend: storage backend, derived from target_type and target when not given
        :param processor: package processor, a fresh one with its own store when not given
        """
        self.target_type = target_type
        self.target = target
        self.backend = backend or create_backend(target_type, target)
        self.processor = processor or PackageProcessor(PackageStore())

    @property
    def store(self) -> PackageStore:
        return self.processor.store

    def upload(self, filename: str, content: bytes) -> ProcessedPackage:
        """Process a package and store it in the target.

        :raises UnsupportedFormat: if the file is not a conda package
        :raises PackageRejected: if the package fails validation
        :raises StorageError: if the target can't be written
        """
        package = self.processor.process(content, filename)
        try:
            validate_package(package)
            log.info(f"Uploading {filename} to {self.target_type} target {self.target}")
            self.backend.store(package, self.store)
        except BaseError:
            self.store.discard(filename)
            raise
        return package

    def finalize(self) -> PackageStats:
        """Update the repository indexes and report statistics about what was mirrored."""
        log.info("Finalizing repository structure")
        self.backend.finalize(self.store)
        stats = self.store.stats()
        log.info(stats.summary())
        return stats
