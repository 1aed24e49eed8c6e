# SPDX-License-Identifier: GPL-3.0-or-later
import enum
import logging
from typing import Optional

from meso_forge_mirror.core.errors import InvalidInput
from meso_forge_mirror.core.repository import Repository
from meso_forge_mirror.core.sources import azure, github
from meso_forge_mirror.core.sources.archives import (
    DEFAULT_PACKAGE_PATTERN,
    mirror_from_tarball,
    mirror_from_zip,
)
from meso_forge_mirror.core.sources.general import (
    compile_pattern,
    download_bytes,
    download_packages,
    fetch_package,
    is_remote_url,
    read_local_file,
)

log = logging.getLogger(__name__)


class SourceType(str, enum.Enum):
    """Kinds of package sources."""

    ZIP = "zip"
    ZIP_URL = "zip-url"
    LOCAL = "local"
    URL = "url"
    TGZ = "tgz"
    TGZ_URL = "tgz-url"
    GITHUB = "github"
    AZURE = "azure"

    def __str__(self) -> str:
        return self.value

    @property
    def is_remote(self) -> bool:
        return self in (SourceType.ZIP_URL, SourceType.URL, SourceType.TGZ_URL)


def validate_sources(src_type: SourceType, sources: list[str], src_path: Optional[str]) -> None:
    """Check the source arguments before anything is downloaded.

    :raises InvalidInput: if the arguments don't fit the source type
    """
    if not sources:
        raise InvalidInput("At least one --src is required")
    if len(sources) > 1 and src_type != SourceType.URL:
        raise InvalidInput(
            f"Only one --src can be given for source type {src_type}",
            solution="Pass several --src options only with --src-type url.",
        )
    if src_type in (SourceType.ZIP, SourceType.ZIP_URL) and not src_path:
        raise InvalidInput(f"--src-path is required when --src-type is '{src_type}'")
    if src_path:
        compile_pattern(src_path)
    if src_type == SourceType.GITHUB:
        github.parse_github_repository(sources[0])
    elif src_type == SourceType.AZURE:
        azure.parse_azure_source(sources[0])


def _read_source(source: str, remote: bool) -> bytes:
    if remote:
        log.info(f"Downloading {source}")
        return download_bytes(source)
    log.info(f"Reading local file: {source}")
    return read_local_file(source)


def mirror_single_packages(sources: list[str], repository: Repository) -> None:
    """Mirror packages given one by one as paths or URLs, then update the indexes."""
    remote = [s for s in sources if is_remote_url(s)]
    if len(remote) > 1:
        packages = download_packages(remote)
        packages += [fetch_package(s) for s in sources if not is_remote_url(s)]
    else:
        packages = [fetch_package(s) for s in sources]

    for filename, content in packages:
        log.info(f"Starting mirroring of single package: {filename}")
        repository.upload(filename, content)

    repository.finalize()


def mirror_from_github(source: str, src_path: Optional[str], repository: Repository) -> None:
    """Mirror the conda packages in the artifacts of a GitHub repository."""
    log.info(f"Starting GitHub artifact mirroring from: {source}")
    client = github.GitHubClient()
    owner, repo, artifacts = github.select_artifacts(client, source, src_path)

    for artifact in artifacts:
        if artifact.expired:
            log.warning(f"Artifact {artifact.name!r} has expired, skipping")
            continue
        log.info(
            f"Processing artifact {artifact.name!r} "
            f"(ID: {artifact.id}, Size: {artifact.size_in_bytes} bytes)"
        )
        content = client.download_artifact(owner, repo, artifact.id)
        mirror_from_zip(content, src_path or DEFAULT_PACKAGE_PATTERN, repository)

    log.info("GitHub artifact mirroring completed")


def mirror_from_azure(source: str, src_path: Optional[str], repository: Repository) -> None:
    """Mirror the conda packages in the artifacts of Azure DevOps builds."""
    log.info(f"Starting Azure DevOps artifact mirroring from: {source}")
    organization, project, build_id = azure.parse_azure_source(source)
    client = azure.AzureDevOpsClient()

    for build in azure.select_builds(client, organization, project, build_id, src_path):
        artifacts = client.list_artifacts(organization, project, build)
        artifacts = azure.filter_artifacts_by_name(artifacts, src_path)
        artifacts = azure.filter_downloadable_artifacts(artifacts)
        if not artifacts:
            log.warning(f"No downloadable artifacts found for build {build}")
            continue

        for artifact in artifacts:
            log.info(
                f"Processing artifact {artifact.name!r} "
                f"(ID: {artifact.id}, Type: {artifact.resource.type}) from build {build}"
            )
            content = client.download_artifact(organization, project, build, artifact.name)
            mirror_from_zip(content, src_path or DEFAULT_PACKAGE_PATTERN, repository)

    log.info("Azure DevOps artifact mirroring completed")


def mirror_packages(
    src_type: SourceType,
    sources: list[str],
    src_path: Optional[str],
    repository: Repository,
) -> None:
    """Mirror packages from a source into a repository.

    :param src_type: the kind of source
    :param sources: paths, URLs or source specs; several only for url sources
    :param src_path: regular expression selecting packages (and artifacts for github/azure)
    :param repository: where to mirror the packages
    :raises InvalidInput: if the arguments are invalid
    :raises MirrorFailed: if packages of an archive couldn't be mirrored
    """
    validate_sources(src_type, sources, src_path)
    source = sources[0]
    log.info(f"Processing {src_type} source: {', '.join(sources)}")

    if src_type in (SourceType.ZIP, SourceType.ZIP_URL):
        content = _read_source(source, src_type.is_remote)
        mirror_from_zip(content, src_path or "", repository)
    elif src_type in (SourceType.TGZ, SourceType.TGZ_URL):
        content = _read_source(source, src_type.is_remote)
        mirror_from_tarball(content, repository)
    elif src_type in (SourceType.LOCAL, SourceType.URL):
        mirror_single_packages(sources, repository)
    elif src_type == SourceType.GITHUB:
        mirror_from_github(source, src_path, repository)
    elif src_type == SourceType.AZURE:
        mirror_from_azure(source, src_path, repository)

    log.info("Mirroring completed successfully")
