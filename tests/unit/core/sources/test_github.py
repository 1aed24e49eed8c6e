# SPDX-License-Identifier: GPL-3.0-or-later
import io
import json
from datetime import datetime, timezone
from typing import Any, Optional
from unittest import mock

import pytest
import requests
import yaml
from rich.console import Console

from meso_forge_mirror.core.config import Config, set_config
from meso_forge_mirror.core.errors import InvalidInput, MirrorFailed, NetworkError
from meso_forge_mirror.core.sources.github import (
    GitHubArtifact,
    GitHubClient,
    filter_artifacts_by_name,
    filter_non_expired_artifacts,
    parse_artifact_id,
    parse_github_repository,
    print_artifacts_info,
    select_artifacts,
)


def _artifact_data(
    artifact_id: int, name: str, expired: bool = False, created_at: Optional[str] = None
) -> dict[str, Any]:
    return {
        "id": artifact_id,
        "name": name,
        "size_in_bytes": 1_234_567,
        "url": f"https://api.github.com/repos/o/r/actions/artifacts/{artifact_id}",
        "archive_download_url": (
            f"https://api.github.com/repos/o/r/actions/artifacts/{artifact_id}/zip"
        ),
        "expired": expired,
        "created_at": created_at or "2024-01-15T10:00:00Z",
        "expires_at": "2024-04-14T10:00:00Z",
        "workflow_run": {"id": 42, "head_branch": "main", "head_sha": "abc123"},
    }


def _artifact(artifact_id: int, name: str, **kwargs: Any) -> GitHubArtifact:
    return GitHubArtifact.model_validate(_artifact_data(artifact_id, name, **kwargs))


def _response(status: int = 200, payload: Any = None, content: bytes = b"") -> mock.Mock:
    response = mock.Mock()
    response.ok = status < 400
    response.status_code = status
    response.text = json.dumps(payload) if payload is not None else ""
    response.json.return_value = payload
    response.content = content
    return response


# --- parsing ---


@pytest.mark.parametrize(
    "source, expected",
    [
        ("owner/repo", ("owner", "repo")),
        ("owner/repo#12345", ("owner", "repo")),
        ("https://github.com/owner/repo", ("owner", "repo")),
        ("https://github.com/owner/repo/", ("owner", "repo")),
        ("https://github.com/owner/repo/actions/runs/1", ("owner", "repo")),
        ("http://github.com/owner/repo", ("owner", "repo")),
    ],
)
def test_parse_github_repository(source: str, expected: tuple[str, str]) -> None:
    assert parse_github_repository(source) == expected


@pytest.mark.parametrize("source", ["owner", "owner/", "/repo", "", "https://github.com/owner"])
def test_parse_github_repository_invalid(source: str) -> None:
    with pytest.raises(InvalidInput, match="Invalid GitHub repository"):
        parse_github_repository(source)


def test_parse_artifact_id() -> None:
    assert parse_artifact_id(" 12345 ") == 12345
    with pytest.raises(InvalidInput, match="Invalid artifact ID: 'latest'"):
        parse_artifact_id("latest")


# --- filters ---


def test_filter_artifacts_by_name() -> None:
    artifacts = [
        _artifact(1, "conda-linux-64"),
        _artifact(2, "conda-osx-arm64"),
        _artifact(3, "docs"),
    ]

    assert [a.id for a in filter_artifacts_by_name(artifacts, "^conda-")] == [1, 2]
    assert filter_artifacts_by_name(artifacts, None) == artifacts


def test_filter_non_expired_artifacts() -> None:
    artifacts = [_artifact(1, "old", expired=True), _artifact(2, "new")]
    assert [a.id for a in filter_non_expired_artifacts(artifacts)] == [2]


# --- GitHubClient ---


def test_client_list_artifacts_sends_token() -> None:
    set_config(Config(github_token="ghp_secret"))
    session = mock.Mock()
    session.get.return_value = _response(
        payload={"total_count": 1, "artifacts": [_artifact_data(7, "conda-packages")]}
    )

    artifacts = GitHubClient(session=session).list_artifacts("owner", "repo")

    assert [a.name for a in artifacts] == ["conda-packages"]
    assert artifacts[0].created_at == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
    url = session.get.call_args.args[0]
    headers = session.get.call_args.kwargs["headers"]
    assert url == "https://api.github.com/repos/owner/repo/actions/artifacts"
    assert headers["Authorization"] == "Bearer ghp_secret"
    assert headers["X-GitHub-Api-Version"] == "2022-11-28"


def test_client_without_token() -> None:
    session = mock.Mock()
    session.get.return_value = _response(payload={"total_count": 0, "artifacts": []})

    GitHubClient(session=session).list_artifacts("owner", "repo")

    assert "Authorization" not in session.get.call_args.kwargs["headers"]


def test_client_http_error() -> None:
    session = mock.Mock()
    session.get.return_value = _response(status=404, payload={"message": "Not Found"})

    with pytest.raises(NetworkError, match="Failed to list GitHub artifacts: 404"):
        GitHubClient(session=session).list_artifacts("owner", "repo")


def test_client_connection_error() -> None:
    session = mock.Mock()
    session.get.side_effect = requests.ConnectionError("no route to host")

    with pytest.raises(NetworkError, match="no route to host"):
        GitHubClient(session=session).get_artifact("owner", "repo", 1)


def test_client_unexpected_response() -> None:
    session = mock.Mock()
    session.get.return_value = _response(payload={"unexpected": True})

    with pytest.raises(NetworkError, match="unexpected response"):
        GitHubClient(session=session).list_artifacts("owner", "repo")


def test_client_download_artifact() -> None:
    session = mock.Mock()
    session.get.return_value = _response(content=b"PK\x03\x04zip")

    content = GitHubClient(token="t", session=session).download_artifact("owner", "repo", 99)

    assert content == b"PK\x03\x04zip"
    assert session.get.call_args.args[0] == (
        "https://api.github.com/repos/owner/repo/actions/artifacts/99/zip"
    )


# --- select_artifacts ---


def test_select_artifacts_by_id() -> None:
    client = mock.Mock()
    client.get_artifact.return_value = _artifact(12345, "conda-packages")

    owner, repo, artifacts = select_artifacts(client, "owner/repo#12345", None)

    assert (owner, repo) == ("owner", "repo")
    assert [a.id for a in artifacts] == [12345]
    client.get_artifact.assert_called_once_with("owner", "repo", 12345)
    client.list_artifacts.assert_not_called()


def test_select_artifacts_invalid_id() -> None:
    with pytest.raises(InvalidInput, match="Invalid artifact ID"):
        select_artifacts(mock.Mock(), "owner/repo#abc", None)


def test_select_artifacts_most_recent_without_filter() -> None:
    client = mock.Mock()
    client.list_artifacts.return_value = [
        _artifact(1, "older", created_at="2024-01-01T00:00:00Z"),
        _artifact(2, "newest", created_at="2024-03-01T00:00:00Z"),
        _artifact(3, "expired", expired=True, created_at="2024-06-01T00:00:00Z"),
    ]

    _, _, artifacts = select_artifacts(client, "owner/repo", None)

    assert [a.name for a in artifacts] == ["newest"]


def test_select_artifacts_all_matching_with_filter() -> None:
    client = mock.Mock()
    client.list_artifacts.return_value = [
        _artifact(1, "conda-linux-64"),
        _artifact(2, "conda-osx-arm64"),
        _artifact(3, "test-results"),
    ]

    _, _, artifacts = select_artifacts(client, "owner/repo", "conda")

    assert [a.id for a in artifacts] == [1, 2]


def test_select_artifacts_none_left() -> None:
    client = mock.Mock()
    client.list_artifacts.return_value = [_artifact(1, "conda", expired=True)]

    with pytest.raises(MirrorFailed, match="No artifacts found for owner/repo"):
        select_artifacts(client, "owner/repo", None)


# --- printing ---


def _console() -> Console:
    return Console(file=io.StringIO(), width=200)


def test_print_artifacts_yaml() -> None:
    console = _console()

    print_artifacts_info([_artifact(1, "conda-packages")], "yaml", console=console)

    output = console.file.getvalue()
    assert output.startswith("# GitHub Artifacts\n# Total artifacts found: 1\n")
    data = yaml.safe_load(output)
    assert data[0]["name"] == "conda-packages"
    assert data[0]["archive_download_url"].endswith("/1/zip")


def test_print_artifacts_json() -> None:
    console = _console()

    print_artifacts_info([_artifact(1, "conda-packages")], "json", console=console)

    assert json.loads(console.file.getvalue())[0]["id"] == 1


def test_print_artifacts_table() -> None:
    console = _console()

    print_artifacts_info([_artifact(1, "conda-packages")], "table", console=console)

    output = console.file.getvalue()
    assert "conda-packages" in output
    assert "1.2M" in output
    assert "2024-01-15 10:00 UTC" in output


def test_print_no_artifacts_table() -> None:
    console = _console()
    print_artifacts_info([], "table", console=console)
    assert console.file.getvalue() == "No artifacts found.\n"
