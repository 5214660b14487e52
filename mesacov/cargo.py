"""cargo command lines and build-output parsing.

Test executables are taken from cargo's JSON message stream
(``--message-format=json``) instead of globbing ``target/debug`` for a
name prefix.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

from mesacov.config import CoverageConfig

logger = logging.getLogger(__name__)

LIB_KINDS = frozenset({"lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"})


class TargetKind(str, Enum):
    LIB = "lib"
    TESTS = "tests"


def build_command(config: CoverageConfig, kind: TargetKind) -> List[str]:
    """``cargo rustc`` invocation that builds the instrumented test binary."""
    argv = [config.cargo, "rustc"]
    if config.all_features:
        argv.append("--all-features")
    if kind is TargetKind.LIB:
        argv += ["--profile", "test", "--lib"]
    else:
        argv += ["--test", config.integration_test]
    argv.append("--message-format=json")
    return argv


def clean_command(config: CoverageConfig) -> List[str]:
    return [config.cargo, "clean"]


def _matches(message: dict, kind: TargetKind, integration_test: str) -> bool:
    profile = message.get("profile") or {}
    if not profile.get("test"):
        return False
    target = message.get("target") or {}
    kinds = set(target.get("kind") or [])
    if kind is TargetKind.LIB:
        return bool(kinds & LIB_KINDS)
    return "test" in kinds and target.get("name") == integration_test


def _messages(stdout: str) -> Iterator[dict]:
    """JSON objects from cargo's stdout; plain-text lines are skipped."""
    for raw in stdout.splitlines():
        line = raw.strip()
        if not line.startswith("{"):
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping unparsable cargo message: %.80s", line)
            continue
        if isinstance(message, dict):
            yield message


def compiler_diagnostics(stdout: str) -> List[str]:
    """Rendered rustc diagnostics (errors, warnings) from cargo's JSON output.

    With ``--message-format=json`` these never reach the terminal on their
    own; the caller has to print them.
    """
    rendered: List[str] = []
    for message in _messages(stdout):
        if message.get("reason") != "compiler-message":
            continue
        text = (message.get("message") or {}).get("rendered")
        if text:
            rendered.append(text)
    return rendered


def find_test_executable(
    stdout: str,
    kind: TargetKind,
    integration_test: str = "tests",
) -> Optional[Path]:
    """Return the test executable reported in cargo's JSON output.

    Lines that are not JSON objects (cargo can interleave plain text when a
    wrapper prints to stdout) are skipped.  If several matching artifacts
    are reported the last one wins, as that is the one cargo finished last.
    """
    found: Optional[Path] = None
    for message in _messages(stdout):
        if message.get("reason") != "compiler-artifact":
            continue
        executable = message.get("executable")
        if not executable or not _matches(message, kind, integration_test):
            continue
        found = Path(executable)
    return found


def dep_info_path(executable: Path) -> Path:
    """The ``.d`` dependency file cargo writes next to a test executable."""
    return executable.with_name(executable.stem + ".d")
