"""Failures that abort a coverage run.

Every step of the pipeline is fatal on error.  Library code raises one of
these; the CLI entry point turns them into an ``Error: ...`` line and an
exit status.
"""

from __future__ import annotations

import signal
from typing import List, Optional, Sequence


def describe_returncode(returncode: int) -> str:
    """Human-readable exit status ("status 3", "signal SIGSEGV")."""
    if returncode < 0:
        try:
            return f"signal {signal.Signals(-returncode).name}"
        except (ValueError, AttributeError):
            return f"signal {-returncode}"
    return f"status {returncode}"


class CoverageRunError(Exception):
    """Base class for every failure that aborts a run."""

    default_exit_code = 1

    def __init__(self, message: str, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step

    @property
    def exit_code(self) -> int:
        return self.default_exit_code


class StepFailedError(CoverageRunError):
    """An external command exited non-zero."""

    def __init__(
        self,
        message: str,
        argv: Sequence[str],
        returncode: int,
        step: Optional[str] = None,
    ) -> None:
        super().__init__(message, step=step)
        self.argv: List[str] = list(argv)
        self.returncode = returncode

    @property
    def exit_code(self) -> int:
        # Same convention as a shell: killed by signal N -> 128 + N.
        if self.returncode < 0:
            return 128 - self.returncode
        return self.returncode or 1


class BuildError(StepFailedError):
    """cargo failed to compile a test target (or to clean)."""


class TestBinaryError(StepFailedError):
    """An instrumented test binary exited non-zero."""

    __test__ = False


class CoverageToolError(StepFailedError):
    """lcov failed to capture, merge or extract."""


class ReportError(StepFailedError):
    """genhtml failed to render the report."""


class ArtifactNotFoundError(CoverageRunError):
    """The build reported no test executable."""


class SourceTreeError(CoverageRunError):
    """The source root is missing or holds no matching files."""


class StepTimeoutError(CoverageRunError):
    """A child process outlived the configured timeout."""

    default_exit_code = 124

    def __init__(
        self,
        message: str,
        argv: Sequence[str],
        timeout: Optional[float],
        step: Optional[str] = None,
    ) -> None:
        super().__init__(message, step=step)
        self.argv: List[str] = list(argv)
        self.timeout = timeout


class ToolNotFoundError(CoverageRunError):
    """An external executable could not be started."""

    default_exit_code = 127


class ConfigLoadError(CoverageRunError, ValueError):
    """Raised when config loading or parsing fails."""
