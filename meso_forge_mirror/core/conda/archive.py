# SPDX-License-Identifier: GPL-3.0-or-later
"""Read the info/index.json manifest out of conda package archives.

Each package format has its own extractor, selected by filename extension.
"""

import io
import json
import logging
import tarfile
from typing import Optional, Protocol

from pydantic import ValidationError

from meso_forge_mirror.core.conda.models import IndexJson
from meso_forge_mirror.core.errors import ParseError

log = logging.getLogger(__name__)

INDEX_JSON_PATH = "info/index.json"


class ManifestExtractor(Protocol):
    """Extract the manifest of a package, raising ParseError if that isn't possible."""

    extension: str

    def extract(self, content: bytes, filename: str) -> IndexJson:
        """Return the parsed manifest of the package."""
        ...


def parse_index_json(raw: bytes, filename: str) -> IndexJson:
    """Parse the raw bytes of an info/index.json file.

    :raises ParseError: if the document is not JSON or misses required fields
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"{INDEX_JSON_PATH} of {filename} is not valid JSON: {e}") from e

    try:
        return IndexJson.model_validate(data)
    except ValidationError as e:
        loc = e.errors()[0]["loc"]
        msg = e.errors()[0]["msg"]
        raise ParseError(f"{INDEX_JSON_PATH} of {filename} is not valid: '{loc}: {msg}'") from e


class TarBz2ManifestExtractor:
    """Extractor for the legacy bzip2-compressed tarball format."""

    extension = ".tar.bz2"

    def extract(self, content: bytes, filename: str) -> IndexJson:
        """Find info/index.json among the tarball members and parse it."""
        try:
            with tarfile.open(fileobj=io.BytesIO(content), mode="r:bz2") as tar:
                for member in tar:
                    if member.isfile() and member.name.lstrip("./") == INDEX_JSON_PATH:
                        fileobj = tar.extractfile(member)
                        if fileobj is None:
                            break
                        return parse_index_json(fileobj.read(), filename)
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ParseError(f"Cannot read {filename} as a bzip2 tarball: {e}") from e

        raise ParseError(f"{INDEX_JSON_PATH} not found in {filename}")


class CondaManifestExtractor:
    """Extractor for the .conda format (a zip of zstd-compressed tarballs).

    Decoding the inner zstd tarball is not supported, packages in this format always
    fall back to filename heuristics.
    """

    extension = ".conda"

    def extract(self, content: bytes, filename: str) -> IndexJson:
        """Always raises ParseError."""
        raise ParseError(f"Reading the manifest of .conda packages is not supported ({filename})")


DEFAULT_EXTRACTORS: tuple[ManifestExtractor, ...] = (
    TarBz2ManifestExtractor(),
    CondaManifestExtractor(),
)


def find_extractor(
    filename: str, extractors: tuple[ManifestExtractor, ...] = DEFAULT_EXTRACTORS
) -> Optional[ManifestExtractor]:
    """Return the extractor handling the file's extension, None for non-conda files."""
    return next((e for e in extractors if filename.endswith(e.extension)), None)
