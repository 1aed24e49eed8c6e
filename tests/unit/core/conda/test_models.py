# SPDX-License-Identifier: GPL-3.0-or-later
import json
from datetime import datetime, timezone
from typing import Any

import pytest

from meso_forge_mirror.core.conda.models import (
    IndexJson,
    PackageIdentity,
    PackageRecord,
    RepoData,
    datetime_from_timestamp,
    timestamp_from_datetime,
)
from meso_forge_mirror.core.conda.platform import Platform, PlatformHints
from meso_forge_mirror.core.conda.processor import PackageProcessor
from tests.utils import make_tar_bz2_package


@pytest.mark.parametrize(
    "value, expected",
    [
        (1700000000000, datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)),
        (1700000000, datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)),
    ],
)
def test_datetime_from_timestamp(value: int, expected: datetime) -> None:
    assert datetime_from_timestamp(value) == expected


def test_timestamp_from_datetime() -> None:
    dt = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert timestamp_from_datetime(dt) == 1700000000000


def test_index_json_ignores_unknown_fields() -> None:
    index = IndexJson.model_validate(
        {"name": "a", "version": "1", "noarch": "python", "track_features": ""}
    )
    assert index.build == ""
    assert index.depends == []


def test_identity_platform_hints(linux_index: dict[str, Any]) -> None:
    identity = PackageIdentity.from_index_json(IndexJson.model_validate(linux_index))

    assert identity.depends == ("libgcc-ng >=12",)
    assert identity.platform_hints() == PlatformHints(subdir="linux-64", name="mytool")


def test_package_record_from_package(
    processor: PackageProcessor, linux_index: dict[str, Any]
) -> None:
    package = processor.process(make_tar_bz2_package(linux_index), "mytool-1.2.3-h1234_0.tar.bz2")

    record = PackageRecord.from_package(package)

    assert record.model_dump() == {
        "build": "h1234_0",
        "build_number": 0,
        "depends": ["libgcc-ng >=12"],
        "license": "MIT",
        "md5": package.md5,
        "sha256": package.sha256,
        "size": package.size,
        "subdir": "linux-64",
        "name": "mytool",
        "version": "1.2.3",
        "timestamp": 1700000000000,
    }


def test_package_record_without_license(processor: PackageProcessor) -> None:
    package = processor.process(b"bytes", "okd-install-4.14.0-h1_0.conda")

    record = PackageRecord.from_package(package)

    assert record.license == ""
    assert record.depends == []
    assert record.timestamp == 1705320000000


def test_repodata_is_sorted_by_filename(processor: PackageProcessor) -> None:
    packages = [
        processor.process(b"b", "kubectl-1.29.0-h2_0.conda"),
        processor.process(b"a", "helm-3.14.0-h1_0.conda"),
    ]

    repodata = json.loads(RepoData.from_packages(Platform.LINUX_64, packages).to_json())

    assert repodata["info"] == {"subdir": "linux-64"}
    assert list(repodata["packages"]) == ["helm-3.14.0-h1_0.conda", "kubectl-1.29.0-h2_0.conda"]


def test_empty_repodata() -> None:
    repodata = json.loads(RepoData.from_packages(Platform.NOARCH, []).to_json())
    assert repodata == {"info": {"subdir": "noarch"}, "packages": {}}
