# SPDX-License-Identifier: GPL-3.0-or-later
import asyncio
import json
import logging
import re
import tempfile
from datetime import datetime
from os import PathLike
from pathlib import Path
from typing import Optional, Sequence, Union
from urllib.parse import unquote, urlparse

import aiohttp
import aiohttp_retry
import pydantic
import requests
import yaml
from requests.auth import AuthBase

from meso_forge_mirror.core.config import get_config
from meso_forge_mirror.core.errors import InvalidInput, NetworkError
from meso_forge_mirror.core.http_requests import get_async_retry_options, get_requests_session

log = logging.getLogger(__name__)

FILE_URL_PREFIX = "file://"


def is_remote_url(source: str) -> bool:
    """Check if source is an http(s) URL."""
    return urlparse(source).scheme in ("http", "https")


def extract_package_name(url: str) -> str:
    """Return the last path segment of a URL or path, ignoring any query string.

    :raises InvalidInput: if the URL has no final path segment
    """
    path = urlparse(url).path if "://" in url else url.split("?", 1)[0]
    name = unquote(path.rstrip("/").rpartition("/")[2])
    if not name:
        raise InvalidInput(f"Cannot determine a package name from {url!r}")
    return name


def local_path(source: str) -> Path:
    """Turn a file:// URL or a plain path into a Path."""
    if source.startswith(FILE_URL_PREFIX):
        return Path(unquote(urlparse(source).path))
    return Path(source).expanduser()


def read_local_file(source: str) -> bytes:
    """Read a file given as a path or a file:// URL.

    :raises InvalidInput: if the file can't be read
    """
    path = local_path(source)
    log.debug(f"Reading {path}")
    try:
        return path.read_bytes()
    except OSError as e:
        raise InvalidInput(f"Cannot read {path}: {e}") from e


def download_bytes(
    url: str,
    auth: Optional[Union[AuthBase, tuple[str, str]]] = None,
    headers: Optional[dict[str, str]] = None,
    session: Optional[requests.Session] = None,
) -> bytes:
    """
    Download the content of a URL into memory.

    :param url: URL to download
    :param auth: Authentication for the URL
    :param headers: Extra request headers
    :param session: Session to use, a new retrying session if not given
    :raise NetworkError: If download failed
    """
    session = session or get_requests_session()
    timeout = get_config().timeout_seconds
    log.debug(f"GET {url} (timeout: {timeout}s)")
    try:
        resp = session.get(url, auth=auth, headers=headers, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise NetworkError(f"Could not download {url}: {e}") from e
    return resp.content


def fetch_package(source: str) -> tuple[str, bytes]:
    """Get a single package from a URL, a file:// URL or a path.

    :return: the package filename and its content
    """
    name = extract_package_name(source)
    if is_remote_url(source):
        log.info(f"Downloading {name} from {source}")
        return name, download_bytes(source)
    return name, read_local_file(source)


async def _async_download_binary_file(
    session: aiohttp_retry.RetryClient,
    url: str,
    download_path: Union[str, PathLike[str]],
    chunk_size: int = 8192,
) -> None:
    """
    Download a binary file from a URL using asyncio.

    :param session: Aiohttp interface for making HTTP requests.
    :param url: URL for file download
    :param download_path: File path location
    :param chunk_size: Chunk size param for Response.content.read()
    :raise NetworkError: If download failed
    """
    try:
        timeout = aiohttp.ClientTimeout(total=get_config().timeout_seconds)

        log.debug(f"aiohttp GET {url} (timeout: {timeout.total}s)")
        async with session.get(url, timeout=timeout, raise_for_status=True) as resp:
            with open(download_path, "wb") as f:
                while True:
                    chunk = await resp.content.read(chunk_size)
                    if not chunk:
                        break
                    f.write(chunk)

    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exception:
        log.error(f"Unsuccessful download: {url}")
        # "from None" since we have the exception context in the logs
        raise NetworkError(
            f"Could not download {url}: {exception.__class__.__name__}: {exception}"
        ) from None

    log.debug(f"Download completed - {url}")


async def async_download_files(
    files_to_download: dict[str, Union[str, PathLike[str]]],
    concurrency_limit: int,
) -> None:
    """Download files concurrently.

    :param files_to_download: Dict of URLs to download with the paths to save them to
    :param concurrency_limit: Max number of concurrent downloads
    :raise NetworkError: If any download failed, the remaining ones are cancelled
    """
    retry_client = aiohttp_retry.RetryClient(
        retry_options=get_async_retry_options(),
        # respect proxy settings and .netrc
        trust_env=True,
    )

    async with retry_client as session:
        tasks: set[asyncio.Task] = set()

        for url, download_path in files_to_download.items():
            if len(tasks) >= concurrency_limit:
                # Wait for some download to finish before adding a new one
                done, tasks = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                try:
                    await asyncio.gather(*done)
                except NetworkError:
                    for t in tasks:
                        t.cancel()
                    raise

            tasks.add(asyncio.create_task(_async_download_binary_file(session, url, download_path)))

        await asyncio.gather(*tasks)


def download_packages(urls: list[str]) -> list[tuple[str, bytes]]:
    """Download several packages concurrently, bounded by max_concurrent_downloads.

    :return: filename and content of each package, in the order of urls
    """
    names = [extract_package_name(url) for url in urls]
    with tempfile.TemporaryDirectory(prefix="meso-forge-mirror-") as tmp:
        paths = {url: Path(tmp, f"{i}-{name}") for i, (url, name) in enumerate(zip(urls, names))}
        log.info(f"Downloading {len(urls)} packages")
        asyncio.run(async_download_files(paths, get_config().max_concurrent_downloads))
        return [(name, paths[url].read_bytes()) for url, name in zip(urls, names)]


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a user-provided regular expression.

    :raises InvalidInput: if the pattern is not a valid regular expression
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidInput(f"Invalid regular expression {pattern!r}: {e}") from e


def format_size(size: int) -> str:
    """Format a byte count with K/M suffixes (decimal units)."""
    if size > 1_000_000:
        return f"{size / 1_000_000:.1f}M"
    if size > 1_000:
        return f"{size / 1_000:.1f}K"
    return str(size)


def format_time(value: Optional[datetime], default: str = "") -> str:
    """Format a timestamp for table output."""
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else default


def render_models(models: Sequence[pydantic.BaseModel], encode: str, header: str = "") -> str:
    """Render API records as yaml (preceded by a comment header) or pretty-printed json.

    :raises InvalidInput: for unsupported formats
    """
    data = [m.model_dump(mode="json") for m in models]
    if encode == "yaml":
        return header + yaml.safe_dump(data, sort_keys=False)
    if encode == "json":
        return json.dumps(data, indent=2)
    raise InvalidInput(
        f"Unsupported output format: {encode}", solution="Supported formats: yaml, json, table."
    )
