# SPDX-License-Identifier: GPL-3.0-or-later
import hashlib
from typing import NamedTuple

SUPPORTED_ALGORITHMS = ("md5", "sha256")


class ChecksumInfo(NamedTuple):
    """A checksum algorithm and a hex digest."""

    algorithm: str
    hexdigest: str

    @classmethod
    def of(cls, algorithm: str, content: bytes) -> "ChecksumInfo":
        """Compute the checksum of content with the given algorithm."""
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        return cls(algorithm, hashlib.new(algorithm, content).hexdigest())

    def matches(self, content: bytes) -> bool:
        """Check whether content hashes to this digest."""
        return ChecksumInfo.of(self.algorithm, content).hexdigest == self.hexdigest


def md5_hexdigest(content: bytes) -> str:
    """Return the MD5 hex digest of content."""
    return ChecksumInfo.of("md5", content).hexdigest


def sha256_hexdigest(content: bytes) -> str:
    """Return the SHA-256 hex digest of content."""
    return ChecksumInfo.of("sha256", content).hexdigest
