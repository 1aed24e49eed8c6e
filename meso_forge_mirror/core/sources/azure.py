# SPDX-License-Identifier: GPL-3.0-or-later
"""Azure DevOps builds and their artifacts: listing, filtering, downloading and printing."""

import logging
from datetime import datetime
from typing import Any, Optional

import pydantic
import requests
from pydantic import ConfigDict, Field
from rich.console import Console
from rich.table import Table

from meso_forge_mirror import APP_NAME
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

AZURE_DEVOPS_URL = "https://dev.azure.com"
AZURE_API_VERSION = "6.0"
MAX_BUILDS = 50
DOWNLOADABLE_ARTIFACT_TYPES = ("container", "filepath")
RESPONSE_PREVIEW_LINES = 30

PAT_GUIDANCE = """\
This appears to be an authentication redirect. Azure DevOps requires a Personal Access Token (PAT).
Create a config file with your PAT:
  {
    "azure_devops_token": "your_pat_here"
  }
or set the AZURE_DEVOPS_TOKEN environment variable.
Get a PAT from https://dev.azure.com/ under Security, Personal Access Tokens."""


class _AzureModel(pydantic.BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ArtifactProperties(_AzureModel):
    """Free-form properties of an artifact resource."""

    root_id: Optional[str] = Field(None, alias="RootId")
    artifactsize: Optional[str] = None
    hash_type: Optional[str] = Field(None, alias="HashType")
    domain_id: Optional[str] = Field(None, alias="DomainId")


class ArtifactResource(_AzureModel):
    """Where the content of an artifact lives."""

    type: str
    data: Optional[str] = None
    properties: Optional[ArtifactProperties] = None
    url: Optional[str] = None
    download_url: Optional[str] = Field(None, alias="downloadUrl")

    @property
    def size(self) -> Optional[int]:
        if self.properties and self.properties.artifactsize:
            try:
                return int(self.properties.artifactsize)
            except ValueError:
                return None
        return None


class AzureDevOpsArtifact(_AzureModel):
    """An artifact published by a build."""

    id: int
    name: str
    source: Optional[str] = None
    resource: ArtifactResource

    def is_downloadable(self) -> bool:
        """Check if the artifact can be downloaded as a ZIP file."""
        return (
            self.resource.type.lower() in DOWNLOADABLE_ARTIFACT_TYPES
            or self.resource.download_url is not None
        )


class BuildDefinition(_AzureModel):
    """The pipeline a build ran."""

    id: int
    name: str
    url: Optional[str] = None


class Project(_AzureModel):
    """An Azure DevOps project."""

    id: str
    name: str
    url: Optional[str] = None


class AzureDevOpsBuild(_AzureModel):
    """A pipeline run."""

    id: int
    build_number: Optional[str] = Field(None, alias="buildNumber")
    status: str
    result: Optional[str] = None
    queue_time: Optional[datetime] = Field(None, alias="queueTime")
    start_time: Optional[datetime] = Field(None, alias="startTime")
    finish_time: Optional[datetime] = Field(None, alias="finishTime")
    url: Optional[str] = None
    definition: BuildDefinition
    project: Project
    source_branch: Optional[str] = Field(None, alias="sourceBranch")
    source_version: Optional[str] = Field(None, alias="sourceVersion")

    @property
    def succeeded(self) -> bool:
        return self.result == "succeeded" and self.status == "completed"


class AzureDevOpsArtifactsResponse(_AzureModel):
    """Response of the build artifacts endpoint."""

    count: int
    value: list[AzureDevOpsArtifact]


class AzureDevOpsBuildsResponse(_AzureModel):
    """Response of the builds endpoint."""

    count: int
    value: list[AzureDevOpsBuild]


def parse_azure_devops_url(source: str) -> tuple[str, str]:
    """Get the organization and project out of org/project or a dev.azure.com URL.

    :raises InvalidInput: if the source is neither of the two forms
    """
    path = source.strip()
    prefix = f"{AZURE_DEVOPS_URL}/"
    if path.startswith(prefix):
        path = path[len(prefix) :]

    organization, _, rest = path.strip("/").partition("/")
    project = rest.split("/", 1)[0]
    organization, project = organization.strip(), project.strip()
    if not organization or not project:
        raise InvalidInput(
            f"Invalid Azure DevOps project: {source!r}",
            solution=(
                "Expected 'organization/project' or "
                "'https://dev.azure.com/organization/project'."
            ),
        )
    return organization, project


def parse_build_id(value: str) -> int:
    """Parse a numeric build id.

    :raises InvalidInput: if the value is not a non-negative integer
    """
    value = value.strip()
    if not value.isdigit():
        raise InvalidInput(f"Invalid build ID: {value!r}. Must be a number.")
    return int(value)


def parse_azure_source(source: str) -> tuple[str, str, Optional[int]]:
    """Parse org/project[#build_id], optionally given as a dev.azure.com URL.

    :return: organization, project and the build id if there is one
    :raises InvalidInput: if the source or the build id is malformed
    """
    project_part, has_id, build_id = source.partition("#")
    organization, project = parse_azure_devops_url(project_part)
    return organization, project, parse_build_id(build_id) if has_id else None


def filter_artifacts_by_name(
    artifacts: list[AzureDevOpsArtifact], pattern: Optional[str]
) -> list[AzureDevOpsArtifact]:
    """Keep the artifacts whose name matches pattern."""
    if not pattern:
        return artifacts
    regex = compile_pattern(pattern)
    filtered = [a for a in artifacts if regex.search(a.name)]
    log.info(f"Filtered {len(artifacts)} artifacts to {len(filtered)} matching pattern {pattern!r}")
    return filtered


def filter_downloadable_artifacts(
    artifacts: list[AzureDevOpsArtifact],
) -> list[AzureDevOpsArtifact]:
    """Keep the artifacts that can be downloaded as files."""
    return [a for a in artifacts if a.is_downloadable()]


def filter_builds_by_description(
    builds: list[AzureDevOpsBuild], pattern: str
) -> list[AzureDevOpsBuild]:
    """Keep the builds whose pipeline (definition) name matches pattern."""
    regex = compile_pattern(pattern)
    filtered = [b for b in builds if regex.search(b.definition.name)]
    log.info(
        f"Filtered {len(builds)} builds to {len(filtered)} builds "
        f"matching description pattern {pattern!r}"
    )
    return filtered


def json_error_message(what: str, text: str, error: Exception) -> tuple[str, str]:
    """Describe a response that couldn't be parsed.

    :return: the error message, with a preview of the response, and a suggested solution
    """
    preview = "\n".join(text.splitlines()[:RESPONSE_PREVIEW_LINES])
    if "<html" in text or "<!DOCTYPE html" in text:
        if "_signin" in text or "login" in text:
            solution = PAT_GUIDANCE
        else:
            solution = (
                "Received HTML instead of JSON. This usually indicates an authentication "
                "or API endpoint issue."
            )
    else:
        solution = "Expected JSON response from Azure DevOps API."
    message = f"Failed to parse {what} response as JSON: {error}\nResponse preview:\n{preview}"
    return message, solution


class AzureDevOpsClient:
    """Client for the Azure DevOps build REST API."""

    def __init__(
        self,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        base_url: str = AZURE_DEVOPS_URL,
    ) -> None:
        """Create a client.

        :param token: personal access token, the configured one if not given
        :param session: requests session, a retrying one if not given
        :param base_url: Azure DevOps server URL
        """
        self.token = token or get_config().azure_devops_token
        self.session = session or get_requests_session()
        self.base_url = base_url.rstrip("/")

    def _builds_url(self, organization: str, project: str) -> str:
        return f"{self.base_url}/{organization}/{project}/_apis/build/builds"

    def _get(self, url: str, params: dict[str, Any], what: str) -> requests.Response:
        params = {**params, "api-version": AZURE_API_VERSION}
        auth = ("", self.token) if self.token else None
        log.debug(f"GET {url} {params}")
        try:
            response = self.session.get(
                url, params=params, auth=auth, timeout=get_config().timeout_seconds
            )
        except requests.RequestException as e:
            raise NetworkError(f"Failed to {what}: {e}") from e
        if not response.ok:
            raise NetworkError(f"Failed to {what}: {response.status_code} - {response.text}")
        return response

    def _get_model(
        self, url: str, params: dict[str, Any], what: str, model: type[pydantic.BaseModel]
    ) -> Any:
        response = self._get(url, params, what)
        try:
            return model.model_validate_json(response.text)
        except pydantic.ValidationError as e:
            message, solution = json_error_message(what, response.text, e)
            raise NetworkError(message, solution=solution) from e

    def list_builds(
        self, organization: str, project: str, definition_id: Optional[int] = None
    ) -> list[AzureDevOpsBuild]:
        """List the most recent completed builds of a project."""
        params: dict[str, Any] = {"$top": MAX_BUILDS, "statusFilter": "completed"}
        if definition_id is not None:
            params["definitions"] = definition_id
        response = self._get_model(
            self._builds_url(organization, project),
            params,
            "list Azure DevOps builds",
            AzureDevOpsBuildsResponse,
        )
        log.info(f"Found {response.count} builds in {organization}/{project}")
        return response.value

    def list_artifacts(
        self, organization: str, project: str, build_id: int
    ) -> list[AzureDevOpsArtifact]:
        """List the artifacts of a build."""
        response = self._get_model(
            f"{self._builds_url(organization, project)}/{build_id}/artifacts",
            {},
            "list Azure DevOps artifacts",
            AzureDevOpsArtifactsResponse,
        )
        log.info(
            f"Found {response.count} artifacts for build {build_id} in {organization}/{project}"
        )
        return response.value

    def download_artifact(
        self, organization: str, project: str, build_id: int, artifact_name: str
    ) -> bytes:
        """Download an artifact as a ZIP file."""
        content = self._get(
            f"{self._builds_url(organization, project)}/{build_id}/artifacts",
            {"artifactName": artifact_name, "$format": "zip"},
            f"download Azure DevOps artifact {artifact_name}",
        ).content
        log.info(
            f"Downloaded artifact {artifact_name} ({len(content)} bytes) "
            f"from build {build_id} in {organization}/{project}"
        )
        return content


def render_artifacts(artifacts: list[AzureDevOpsArtifact], encode: str) -> str:
    """Render build artifacts as yaml or json."""
    header = (
        "# Azure DevOps Artifacts\n"
        f"# Total artifacts found: {len(artifacts)}\n"
        "# Use --name-filter to filter artifacts by name pattern\n"
        "# Download URLs are available in resource.download_url field\n\n"
    )
    return render_models(artifacts, encode, header)


def artifacts_table(artifacts: list[AzureDevOpsArtifact]) -> Table:
    """Build a table with one row per artifact."""
    table = Table(title=f"Found {len(artifacts)} artifacts")
    for column in ("ID", "Name", "Type", "Size", "Source", "Download Available"):
        table.add_column(column)
    for artifact in artifacts:
        size = artifact.resource.size
        table.add_row(
            str(artifact.id),
            artifact.name,
            artifact.resource.type,
            format_size(size) if size is not None else "Unknown",
            artifact.source or "",
            "Yes" if artifact.resource.download_url else "No",
        )
    return table


def mirror_source(organization: str, project: str, build_id: int) -> str:
    """Return the --src value that mirrors a build."""
    return f"{organization}/{project}#{build_id}"


def render_builds(
    builds: list[AzureDevOpsBuild], organization: str, project: str, encode: str
) -> str:
    """Render builds as yaml or json."""
    header = (
        f"# Azure DevOps Builds for {organization}/{project}\n"
        f"# Total builds found: {len(builds)}\n"
        f"# Use '{APP_NAME} mirror --src-type azure --src {organization}/{project}#<build_id>' "
        "to mirror artifacts\n"
        "# Filter with --description-filter to narrow results\n\n"
    )
    return render_models(builds, encode, header)


def builds_table(builds: list[AzureDevOpsBuild], organization: str, project: str) -> Table:
    """Build a table with one row per build."""
    table = Table(title=f"Found {len(builds)} builds for {organization}/{project}")
    columns = (
        "Build ID",
        "Build Number",
        "Status",
        "Result",
        "Definition",
        "Source Branch",
        "Finish Time",
        "Mirror Source",
    )
    for column in columns:
        table.add_column(column)
    for build in builds:
        table.add_row(
            str(build.id),
            build.build_number or "N/A",
            build.status,
            build.result or "N/A",
            build.definition.name,
            build.source_branch or "N/A",
            format_time(build.finish_time, default="In Progress"),
            mirror_source(organization, project, build.id),
        )
    return table


def mirror_examples(builds: list[AzureDevOpsBuild], organization: str, project: str) -> str:
    """Example mirror commands for up to three of the most recent successful builds."""
    lines = []
    for i, build in enumerate([b for b in builds if b.succeeded][:3], start=1):
        src = mirror_source(organization, project, build.id)
        command = f"{APP_NAME} mirror --src-type azure --src {src}"
        description = f"Build {build.id}"
        if build.build_number:
            description += f" ({build.build_number})"
        lines += [
            f"{i}. {description}:",
            "   # Mirror all artifacts:",
            f"   {command}",
            "   # Mirror only conda packages:",
            f"   {command} --src-path 'conda.*'",
            "   # Mirror specific platform packages:",
            f"   {command} --src-path '.*linux-64.*'",
            "",
        ]
    if not lines:
        return ""
    return "\n".join(["Example mirror commands for recent successful builds:", "", *lines])


def print_artifacts_info(
    artifacts: list[AzureDevOpsArtifact], encode: str, console: Optional[Console] = None
) -> None:
    """Print build artifacts as yaml, json or a table."""
    console = console or Console()
    if encode == "table":
        console.print(artifacts_table(artifacts) if artifacts else "No artifacts found.")
        return
    text = render_artifacts(artifacts, encode)
    console.print(text, markup=False, highlight=False, soft_wrap=True)


def print_builds_info(
    builds: list[AzureDevOpsBuild],
    organization: str,
    project: str,
    encode: str,
    console: Optional[Console] = None,
) -> None:
    """Print builds as yaml, json or a table followed by example mirror commands."""
    console = console or Console()
    if encode == "table":
        if not builds:
            console.print("No builds found.")
            return
        console.print(builds_table(builds, organization, project))
        examples = mirror_examples(builds, organization, project)
        if examples:
            console.print()
            console.print(examples, markup=False, highlight=False, soft_wrap=True)
        return
    text = render_builds(builds, organization, project, encode)
    console.print(text, markup=False, highlight=False, soft_wrap=True)


def select_builds(
    client: AzureDevOpsClient,
    organization: str,
    project: str,
    build_id: Optional[int],
    name_filter: Optional[str],
) -> list[int]:
    """Decide which builds to mirror.

    A given build id is used as is. Otherwise recent completed builds are listed; without a
    name filter only the most recent successful one is used.

    :raises MirrorFailed: if the project has no builds
    """
    if build_id is not None:
        log.info(f"Processing specific build ID: {build_id}")
        return [build_id]

    builds = client.list_builds(organization, project)
    if not builds:
        raise MirrorFailed(f"No builds found for {organization}/{project}")

    if name_filter or len(builds) == 1:
        return [b.id for b in builds]

    log.warning(
        f"Multiple builds found ({len(builds)}) but no name filter specified. "
        "Processing the most recent successful build."
    )
    successful = sorted((b.id for b in builds if b.result == "succeeded"), reverse=True)
    if not successful:
        raise MirrorFailed(
            f"No successful builds found for {organization}/{project}",
            solution="Pass a build ID explicitly as organization/project#build_id.",
        )
    return successful[:1]
