"""Blocking execution of external commands.

One child at a time: ``run`` returns only after the child has exited.
``subprocess.run`` kills the child if the wait is interrupted, so Ctrl-C
on the orchestrator never leaves a build or test binary behind.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Union

from mesacov.errors import StepTimeoutError, ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Runs commands with an explicit cwd and environment.

    stdout and stderr are inherited so tool diagnostics reach the terminal
    untouched, unless ``capture_stdout`` asks for stdout to be collected.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Union[str, Path],
        env: Mapping[str, str],
        capture_stdout: bool = False,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        logger.debug("exec: %s (cwd=%s)", shlex.join(argv), cwd)
        started = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd),
                env=dict(env),
                stdout=subprocess.PIPE if capture_stdout else None,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(f"could not start {argv[0]!r}: {exc.strerror}") from exc
        except subprocess.TimeoutExpired as exc:
            raise StepTimeoutError(
                f"{shlex.join(argv)} timed out after {self.timeout}s",
                argv=argv,
                timeout=self.timeout,
            ) from exc

        elapsed = round(time.monotonic() - started, 3)
        logger.debug("exit %s after %.3fs: %s", proc.returncode, elapsed, argv[0])
        return CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            duration_seconds=elapsed,
        )
