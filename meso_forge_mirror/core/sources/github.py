# SPDX-License-Identifier: GPL-3.0-or-later
"""GitHub Actions artifacts: listing, filtering, downloading and printing."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import pydantic
import requests
from rich.console import Console
from rich.table import Table

from meso_forge_mirror.core.config import get_config
from meso_forge_mirror.core.errors import InvalidInput, MirrorFailed, NetworkError
from meso_forge_mirror.core.http_requests import get_requests_session
from meso_forge_mirror.core.sources.general import (
    compile_pattern,
    format_size,
    format_time,
    render_models,
)

log = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_URL_PREFIXES = ("https://github.com/", "http://github.com/")


class WorkflowRun(pydantic.BaseModel):
    """The workflow run that produced an artifact."""

    id: int
    repository_id: Optional[int] = None
    head_repository_id: Optional[int] = None
    head_branch: Optional[str] = None
    head_sha: Optional[str] = None


class GitHubArtifact(pydantic.BaseModel):
    """A GitHub Actions artifact."""

    id: int
    name: str
    size_in_bytes: int
    url: str
    archive_download_url: str
    expired: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    workflow_run: Optional[WorkflowRun] = None


class GitHubArtifactsResponse(pydantic.BaseModel):
    """Response of the list artifacts endpoint."""

    total_count: int
    artifacts: list[GitHubArtifact]


def parse_github_repository(source: str) -> tuple[str, str]:
    """Get the owner and repository name out of owner/repo or a github.com URL.

    A trailing #artifact_id is ignored.

    :raises InvalidInput: if the source is neither of the two forms
    """
    source = source.partition("#")[0].strip()
    path = source
    for prefix in GITHUB_URL_PREFIXES:
        if source.startswith(prefix):
            path = source[len(prefix) :]
            break

    owner, _, rest = path.strip("/").partition("/")
    repo = rest.split("/", 1)[0]
    owner, repo = owner.strip(), repo.strip()
    if not owner or not repo:
        raise InvalidInput(
            f"Invalid GitHub repository: {source!r}",
            solution="Expected 'owner/repo' or 'https://github.com/owner/repo'.",
        )
    return owner, repo


def parse_artifact_id(value: str) -> int:
    """Parse a numeric artifact id.

    :raises InvalidInput: if the value is not a non-negative integer
    """
    value = value.strip()
    if not value.isdigit():
        raise InvalidInput(f"Invalid artifact ID: {value!r}. Must be a number.")
    return int(value)


def filter_artifacts_by_name(
    artifacts: list[GitHubArtifact], pattern: Optional[str]
) -> list[GitHubArtifact]:
    """Keep the artifacts whose name matches pattern (a regular expression searched in the name).

    :raises InvalidInput: if the pattern is not a valid regular expression
    """
    if not pattern:
        return artifacts
    regex = compile_pattern(pattern)
    filtered = [a for a in artifacts if regex.search(a.name)]
    log.info(f"Filtered {len(artifacts)} artifacts to {len(filtered)} matching pattern {pattern!r}")
    return filtered


def filter_non_expired_artifacts(artifacts: list[GitHubArtifact]) -> list[GitHubArtifact]:
    """Drop expired artifacts, they can no longer be downloaded."""
    non_expired = [a for a in artifacts if not a.expired]
    if len(non_expired) != len(artifacts):
        log.info(
            f"Filtered out {len(artifacts) - len(non_expired)} expired artifacts, "
            f"{len(non_expired)} remaining"
        )
    return non_expired


def render_artifacts(artifacts: list[GitHubArtifact], encode: str) -> str:
    """Render artifacts as yaml or json."""
    header = (
        "# GitHub Artifacts\n"
        f"# Total artifacts found: {len(artifacts)}\n"
        "# Use --name-filter to filter artifacts by name pattern\n"
        "# Download URLs are available in archive_download_url field\n\n"
    )
    return render_models(artifacts, encode, header)


def artifacts_table(artifacts: list[GitHubArtifact]) -> Table:
    """Build a table with one row per artifact."""
    table = Table(title=f"Found {len(artifacts)} artifacts")
    for column in ("ID", "Name", "Size", "Created", "Expires", "Expired"):
        table.add_column(column, style="bold" if column == "ID" else None)
    for artifact in artifacts:
        table.add_row(
            str(artifact.id),
            artifact.name,
            format_size(artifact.size_in_bytes),
            format_time(artifact.created_at),
            format_time(artifact.expires_at),
            "Yes" if artifact.expired else "No",
        )
    return table


def print_artifacts_info(
    artifacts: list[GitHubArtifact], encode: str, console: Optional[Console] = None
) -> None:
    """Print artifacts as yaml, json or a table."""
    console = console or Console()
    if encode == "table":
        if not artifacts:
            console.print("No artifacts found.")
        else:
            console.print(artifacts_table(artifacts))
        return
    text = render_artifacts(artifacts, encode)
    console.print(text, markup=False, highlight=False, soft_wrap=True)


class GitHubClient:
    """Client for the GitHub Actions artifacts REST API."""

    def __init__(
        self,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
    ) -> None:
        """Create a client.

        :param token: GitHub token, the configured one if not given
        :param session: requests session, a retrying one if not given
        :param api_url: base URL of the REST API
        """
        self.token = token or get_config().github_token
        self.session = session or get_requests_session()
        self.api_url = api_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, url: str, what: str) -> requests.Response:
        log.debug(f"GET {url}")
        try:
            response = self.session.get(
                url, headers=self._headers(), timeout=get_config().timeout_seconds
            )
        except requests.RequestException as e:
            raise NetworkError(f"Failed to {what}: {e}") from e
        if not response.ok:
            raise NetworkError(f"Failed to {what}: {response.status_code} - {response.text}")
        return response

    def _get_model(self, url: str, what: str, model: type[pydantic.BaseModel]) -> Any:
        response = self._get(url, what)
        try:
            return model.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            raise NetworkError(f"Failed to {what}: unexpected response: {e}") from e

    def list_artifacts(self, owner: str, repo: str) -> list[GitHubArtifact]:
        """List the artifacts of a repository."""
        url = f"{self.api_url}/repos/{owner}/{repo}/actions/artifacts"
        response = self._get_model(url, "list GitHub artifacts", GitHubArtifactsResponse)
        log.info(f"Found {response.total_count} artifacts for {owner}/{repo}")
        return response.artifacts

    def get_artifact(self, owner: str, repo: str, artifact_id: int) -> GitHubArtifact:
        """Get a single artifact."""
        url = f"{self.api_url}/repos/{owner}/{repo}/actions/artifacts/{artifact_id}"
        return self._get_model(url, f"get GitHub artifact {artifact_id}", GitHubArtifact)

    def download_artifact(self, owner: str, repo: str, artifact_id: int) -> bytes:
        """Download an artifact as a ZIP file."""
        url = f"{self.api_url}/repos/{owner}/{repo}/actions/artifacts/{artifact_id}/zip"
        content = self._get(url, f"download GitHub artifact {artifact_id}").content
        log.info(f"Downloaded artifact {artifact_id} ({len(content)} bytes) from {owner}/{repo}")
        return content


def select_artifacts(
    client: GitHubClient, source: str, name_filter: Optional[str]
) -> tuple[str, str, list[GitHubArtifact]]:
    """Find the artifacts to mirror for a source of the form owner/repo[#artifact_id].

    Without an artifact id, artifacts are filtered by name and expiry; if there is no name
    filter only the most recently created one is kept.

    :raises InvalidInput: if the source is malformed
    :raises MirrorFailed: if no artifact qualifies
    :raises NetworkError: if the API fails
    """
    owner, repo = parse_github_repository(source)
    log.info(f"Parsed GitHub repository: {owner}/{repo}")

    _, has_id, artifact_id = source.partition("#")
    if has_id:
        artifact = client.get_artifact(owner, repo, parse_artifact_id(artifact_id))
        return owner, repo, [artifact]

    artifacts = filter_artifacts_by_name(client.list_artifacts(owner, repo), name_filter)
    artifacts = filter_non_expired_artifacts(artifacts)
    if not artifacts:
        raise MirrorFailed(
            f"No artifacts found for {owner}/{repo} matching the criteria",
            solution="List the available artifacts with the 'info --github' command.",
        )

    if not name_filter and len(artifacts) > 1:
        log.warning(
            f"Multiple artifacts found ({len(artifacts)}) but no name filter specified. "
            "Processing the most recent one."
        )
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        artifacts = [max(artifacts, key=lambda a: a.created_at or oldest)]

    return owner, repo, artifacts
