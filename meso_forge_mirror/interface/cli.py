# SPDX-License-Identifier: GPL-3.0-or-later
import enum
import functools
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from meso_forge_mirror import APP_NAME
from meso_forge_mirror.core.config import (
    DEFAULT_CONFIG_FILE,
    Config,
    default_cache_dir,
    set_config,
)
from meso_forge_mirror.core.errors import BaseError, InvalidInput
from meso_forge_mirror.core.mirror import SourceType, mirror_packages
from meso_forge_mirror.core.repository import Repository, TargetType
from meso_forge_mirror.core.sources import azure, github

app = typer.Typer(
    name=APP_NAME,
    help="Mirror conda packages from CI artifacts, archives and URLs to conda repositories.",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
log = logging.getLogger(__name__)

LOG_FORMAT = "%(message)s"


class LogLevel(str, enum.Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Encoding(str, enum.Enum):
    YAML = "yaml"
    JSON = "json"
    TABLE = "table"


CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    exists=True,
    dir_okay=False,
    readable=True,
    help="Read configuration from this JSON file.",
)


def handle_errors(cmd: Callable[..., None]) -> Callable[..., None]:
    """Decorate a CLI command function with an error handler.

    All errors will be logged at ERROR level before exiting.
    Expected errors will be printed in a friendlier format rather than showing the whole traceback,
    and the process exits with the exit code of the error class.
    """

    def log_error(error: Exception) -> None:
        log.error("%s: %s", type(error).__name__, str(error).replace("\n", r"\n"))

    @functools.wraps(cmd)
    def cmd_with_error_handling(*args: Any, **kwargs: Any) -> None:
        try:
            cmd(*args, **kwargs)
        except BaseError as e:
            log_error(e)
            print(f"Error: {type(e).__name__}: {e.friendly_msg()}", file=sys.stderr)
            raise typer.Exit(e.exit_code)
        except Exception as e:
            log_error(e)
            raise

    return cmd_with_error_handling


def setup_logging(level: LogLevel) -> None:
    """Send the application's log records to stderr."""
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="[%X]"))

    logger = logging.getLogger(APP_NAME.replace("-", "_"))
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level.value)


def load_config(path: Optional[Path]) -> None:
    """Make the config file (or the default config) the current config."""
    if path is None:
        set_config(Config())
        return
    log.debug(f"Loading config from {path}")
    set_config(Config.load_from_file(path))


@app.callback()
def main(
    log_level: LogLevel = typer.Option(
        LogLevel.INFO.value,
        "--log-level",
        case_sensitive=False,
        help="Set log level.",
    ),
) -> None:
    """Mirror conda packages into conda channels or the local package cache."""
    setup_logging(log_level)


def resolve_target(target_type: TargetType, target: Optional[str]) -> str:
    """Return the target location, defaulting to the package cache directory for 'cache'.

    :raises InvalidInput: if --tgt is given for 'cache' or missing for the other targets
    """
    if target_type == TargetType.CACHE:
        if target is not None:
            raise InvalidInput(
                "--tgt cannot be set when --tgt-type is 'cache'",
                solution=(
                    "The cache stores individual packages in the rattler cache directory "
                    "automatically."
                ),
            )
        return str(default_cache_dir())

    if not target:
        raise InvalidInput(
            f"--tgt is required for --tgt-type '{target_type}'",
            solution="Repository targets (local, s3, prefix-dev) need a path or URL.",
        )
    return target


@app.command()
@handle_errors
def mirror(
    src_type: SourceType = typer.Option(
        SourceType.LOCAL.value,
        "--src-type",
        help=(
            "zip (local zip), zip-url (remote zip), local (local conda package), "
            "url (remote conda package), tgz (local tarball), tgz-url (remote tarball), "
            "github (GitHub artifacts), azure (Azure DevOps artifacts)."
        ),
    ),
    src: list[str] = typer.Option(
        ...,
        "--src",
        help="Source path, URL, owner/repo[#artifact_id] or org/project[#build_id]. "
        "Can be repeated for --src-type url.",
    ),
    src_path: Optional[str] = typer.Option(
        None,
        "--src-path",
        help="Regular expression selecting the packages (and artifacts) to mirror. "
        "Required for zip and zip-url.",
    ),
    tgt_type: str = typer.Option(
        TargetType.CACHE.value,
        "--tgt-type",
        help="'cache' stores individual packages for reuse, "
        "'local', 's3' and 'prefix-dev' create conda repositories.",
    ),
    tgt: Optional[str] = typer.Option(
        None,
        "--tgt",
        help="Target path or URL. Determined automatically for 'cache'.",
    ),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Mirror packages from a source to a target repository."""
    log.info("Starting package mirroring")
    target_type = TargetType.from_string(tgt_type)
    target = resolve_target(target_type, tgt)
    load_config(config)

    repository = Repository(target_type, target)
    mirror_packages(src_type, src, src_path, repository)


def github_info(
    repository: str, name_filter: Optional[str], exclude_expired: bool, encode: Encoding
) -> None:
    log.info(f"Getting GitHub artifact information for repository: {repository}")
    owner, repo = github.parse_github_repository(repository)
    client = github.GitHubClient()

    artifacts = github.filter_artifacts_by_name(client.list_artifacts(owner, repo), name_filter)
    if exclude_expired:
        artifacts = github.filter_non_expired_artifacts(artifacts)
    github.print_artifacts_info(artifacts, encode.value)


def azure_info(
    source: str,
    build_id: Optional[int],
    name_filter: Optional[str],
    description_filter: Optional[str],
    encode: Encoding,
) -> None:
    organization, project, source_build_id = azure.parse_azure_source(source)
    client = azure.AzureDevOpsClient()
    build_id = build_id if build_id is not None else source_build_id

    if build_id is not None:
        log.info(
            f"Getting Azure DevOps artifacts for build {build_id} in {organization}/{project}"
        )
        artifacts = client.list_artifacts(organization, project, build_id)
        artifacts = azure.filter_artifacts_by_name(artifacts, name_filter)
        azure.print_artifacts_info(artifacts, encode.value)
        return

    log.info(f"Getting Azure DevOps builds for {organization}/{project}")
    builds = client.list_builds(organization, project)
    if description_filter:
        builds = azure.filter_builds_by_description(builds, description_filter)
    if name_filter:
        log.warning(
            "--name-filter is ignored when listing builds (no --build-id specified). "
            "Use --description-filter to filter builds."
        )
    azure.print_builds_info(builds, organization, project, encode.value)


@app.command()
@handle_errors
def info(
    github_repo: Optional[str] = typer.Option(
        None, "--github", help="GitHub repository as 'owner/repo' or a GitHub URL."
    ),
    azure_project: Optional[str] = typer.Option(
        None, "--azure", help="Azure DevOps project as 'org/project[#build_id]' or a URL."
    ),
    build_id: Optional[int] = typer.Option(
        None, "--build-id", min=0, help="Azure DevOps build ID. Lists recent builds if not set."
    ),
    name_filter: Optional[str] = typer.Option(
        None, "--name-filter", help="Filter artifacts by name (regular expression)."
    ),
    description_filter: Optional[str] = typer.Option(
        None,
        "--description-filter",
        help="Filter Azure DevOps builds by pipeline name (regular expression).",
    ),
    encode: Encoding = typer.Option(Encoding.YAML.value, "--encode", help="Output format."),
    exclude_expired: bool = typer.Option(
        True, "--exclude-expired/--include-expired", help="Hide expired GitHub artifacts."
    ),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Show the artifacts (or builds) available for mirroring."""
    if github_repo and azure_project:
        raise InvalidInput("Cannot specify both --github and --azure. Choose one.")
    if not github_repo and not azure_project:
        raise InvalidInput(
            "Must specify either --github (for GitHub) or --azure (for Azure DevOps)."
        )
    load_config(config)

    if github_repo:
        github_info(github_repo, name_filter, exclude_expired, encode)
    else:
        azure_info(azure_project or "", build_id, name_filter, description_filter, encode)


@app.command()
@handle_errors
def init(
    output: Path = typer.Option(
        Path(DEFAULT_CONFIG_FILE), "--output", "-o", dir_okay=False, help="Config file to write."
    ),
) -> None:
    """Write a configuration file with the default settings."""
    log.info(f"Initializing configuration file at: {output}")
    try:
        Config().save_to_file(output)
    except OSError as e:
        raise InvalidInput(f"Cannot write config file {output}: {e}") from e
    log.info("Configuration file created successfully")
