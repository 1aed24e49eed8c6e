# SPDX-License-Identifier: GPL-3.0-or-later
"""Builders for in-memory conda packages and archives."""

import io
import json
import tarfile
import zipfile
from datetime import datetime, timezone
from typing import Any, Optional

FIXED_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _add_file(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    tar.addfile(info, io.BytesIO(content))


def make_tar_bz2_package(index: Optional[dict[str, Any]] = None, raw_index: bytes = b"") -> bytes:
    """Build a minimal .tar.bz2 conda package.

    :param index: content of info/index.json, omitted from the package if None
    :param raw_index: raw bytes to use as info/index.json instead of index
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:bz2") as tar:
        _add_file(tar, "info/about.json", b"{}")
        if index is not None:
            _add_file(tar, "info/index.json", json.dumps(index).encode())
        elif raw_index:
            _add_file(tar, "info/index.json", raw_index)
        _add_file(tar, "bin/tool", b"#!/bin/sh\necho hello\n")
    return buffer.getvalue()


def make_zip(files: dict[str, bytes]) -> bytes:
    """Build a ZIP file with the given member paths and contents."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for path, content in files.items():
            archive.writestr(path, content)
    return buffer.getvalue()


def make_tgz(files: dict[str, bytes]) -> bytes:
    """Build a gzipped tarball with the given member paths and contents."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for path, content in files.items():
            _add_file(tar, path, content)
    return buffer.getvalue()
