# SPDX-License-Identifier: GPL-3.0-or-later
import textwrap
from typing import ClassVar, Iterable

from meso_forge_mirror import APP_NAME

_argument_not_specified = "__argument_not_specified__"

_exit_codes: dict[str, int] = {
    "BaseError": 1,
    "UsageError": 2,
    "InvalidInput": 4,
    "UnsupportedFormat": 5,
    "NetworkError": 6,
    "ParseError": 7,
    "PackageRejected": 8,
    "ChecksumVerificationFailed": 9,
    "StorageError": 10,
    "MirrorFailed": 11,
}
if len(_exit_codes) != len(set(_exit_codes.values())):
    raise ValueError("Duplicate exit codes found")


class BaseError(Exception):
    """Root of the error hierarchy. Don't raise this directly, use more specific error types."""

    exit_code: ClassVar[int] = 1
    default_solution: ClassVar[str | None] = None

    def __init__(
        self,
        reason: str,
        *,
        solution: str | None = _argument_not_specified,
    ) -> None:
        """Initialize BaseError.

        :param reason: explain what went wrong
        :param solution: politely suggest a potential solution to the user
        """
        super().__init__(reason)
        if solution == _argument_not_specified:
            self.solution = self.default_solution
        else:
            self.solution = solution

    def __init_subclass__(cls) -> None:
        class_name = cls.__name__
        if class_name not in _exit_codes:
            raise ValueError(f"No exit code found for {class_name}")
        cls.exit_code = _exit_codes[class_name]
        super().__init_subclass__()

    def friendly_msg(self) -> str:
        """Return the user-friendly representation of this error."""
        msg = str(self)
        if self.solution:
            msg += f"\n{textwrap.indent(self.solution, prefix='  ')}"
        return msg


class UsageError(BaseError):
    """Generic error for "the mirror tool was used incorrectly." Prefer more specific errors."""


class InvalidInput(UsageError):
    """User input was invalid (CLI arguments, regular expressions, config files, source specs)."""


class UnsupportedFormat(UsageError):
    """The file is not a conda package (neither .conda nor .tar.bz2)."""

    def __init__(
        self,
        filename: str,
        *,
        solution: str | None = _argument_not_specified,
    ) -> None:
        """Initialize UnsupportedFormat.

        :param filename: Name of the rejected file
        :param solution: politely suggest a potential solution to the user
        """
        super().__init__(f"File {filename!r} is not a conda package", solution=solution)

    default_solution = "Only files with .conda or .tar.bz2 extensions can be mirrored."


class NetworkError(BaseError):
    """Downloading a file or talking to a REST API failed, even after retrying."""

    default_solution = (
        "The error might be intermittent, please try again.\n"
        "If the service requires authentication, make sure a token is configured."
    )


class ParseError(BaseError):
    """Package metadata could not be decoded.

    Raised by manifest extractors, the package processor recovers from it by falling back
    to filename heuristics.
    """


class PackageRejected(BaseError):
    """A processed package failed validation and will not be uploaded."""

    def __init__(self, reason: str, *, solution: str | None = None) -> None:
        """Initialize a PackageRejected error.

        :param reason: explain why we rejected the package
        :param solution: politely suggest a potential solution to the user
        """
        super().__init__(reason, solution=solution)


class ChecksumVerificationFailed(PackageRejected):
    """The stored digest of a package does not match its content."""

    def __init__(self, filename: str, algorithm: str) -> None:
        """Initialize ChecksumVerificationFailed.

        :param filename: Name of the package that failed checksum verification
        :param algorithm: The digest algorithm that mismatched
        """
        super().__init__(
            f"{algorithm.upper()} checksum mismatch for {filename}",
            solution="Verify that the file has not been corrupted in transit.",
        )


class StorageError(BaseError):
    """Writing to the target repository failed (filesystem, S3 or prefix.dev)."""

    default_solution = (
        "Check that the target exists and that you have permission to write to it."
    )


class MirrorFailed(BaseError):
    """Some (or all) packages of an archive could not be mirrored."""

    def __init__(
        self,
        reason: str,
        failures: Iterable[str] = (),
        *,
        solution: str | None = _argument_not_specified,
    ) -> None:
        """Initialize MirrorFailed.

        :param reason: summary of what went wrong
        :param failures: one line per failed package or per scanned archive path
        :param solution: politely suggest a potential solution to the user
        """
        self.failures = list(failures)
        if self.failures:
            reason += "\n" + "\n".join(
                f"  {i}: {failure}" for i, failure in enumerate(self.failures, start=1)
            )
        super().__init__(reason, solution=solution)

    default_solution = (
        f"Check the log above for details. Packages that {APP_NAME} mirrored successfully "
        "are kept in the target."
    )
