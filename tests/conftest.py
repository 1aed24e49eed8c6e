# SPDX-License-Identifier: GPL-3.0-or-later
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from meso_forge_mirror.core.conda.processor import PackageProcessor, PackageStore
from meso_forge_mirror.core.config import set_config
from meso_forge_mirror.core.repository import LocalBackend, Repository, TargetType
from tests.utils import FIXED_TIME


@pytest.fixture(autouse=True)
def reset_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test with the default config and no tokens from the environment."""
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("AZURE_DEVOPS_TOKEN", raising=False)
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_TIME


@pytest.fixture
def processor(fixed_clock: Callable[[], datetime]) -> PackageProcessor:
    return PackageProcessor(PackageStore(), clock=fixed_clock)


@pytest.fixture
def local_repository(tmp_path: Path, processor: PackageProcessor) -> Repository:
    """A local conda channel in a temporary directory."""
    target = tmp_path / "channel"
    return Repository(
        TargetType.LOCAL, str(target), backend=LocalBackend(target), processor=processor
    )


@pytest.fixture
def linux_index() -> dict[str, Any]:
    return {
        "name": "mytool",
        "version": "1.2.3",
        "build": "h1234_0",
        "build_number": 0,
        "depends": ["libgcc-ng >=12"],
        "license": "MIT",
        "subdir": "linux-64",
        "timestamp": 1700000000000,
    }
