"""lcov and genhtml command lines."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Union

from mesacov.config import CoverageConfig

PathLike = Union[str, Path]


def common_options(config: CoverageConfig) -> List[str]:
    """Options shared by every lcov call: gcov shim, branch coverage, assert exclusion."""
    options = ["--gcov-tool", config.gcov_tool]
    for rc in config.lcov_rc:
        options += ["--rc", rc]
    return options


def capture_command(config: CoverageConfig, output: PathLike) -> List[str]:
    return [
        config.lcov,
        *common_options(config),
        "--capture",
        "--directory", ".",
        "--base-directory", ".",
        "-o", str(output),
    ]


def merge_command(config: CoverageConfig, inputs: Sequence[PathLike], output: PathLike) -> List[str]:
    if not inputs:
        raise ValueError("merge needs at least one tracefile")
    argv = [config.lcov, *common_options(config)]
    for tracefile in inputs:
        argv += ["--add-tracefile", str(tracefile)]
    argv += ["-o", str(output)]
    return argv


def extract_command(
    config: CoverageConfig,
    tracefile: PathLike,
    patterns: Sequence[str],
    output: PathLike,
) -> List[str]:
    if not patterns:
        raise ValueError("extract needs at least one pattern")
    return [
        config.lcov,
        *common_options(config),
        "--extract", str(tracefile),
        *patterns,
        "-o", str(output),
    ]


def genhtml_command(config: CoverageConfig, tracefile: PathLike, output_dir: PathLike) -> List[str]:
    argv = [
        config.genhtml,
        "--branch-coverage",
        "--demangle-cpp",
        "--legend",
        str(tracefile),
        "-o", str(output_dir),
    ]
    if config.genhtml_ignore_errors:
        argv += ["--ignore-errors", ",".join(config.genhtml_ignore_errors)]
    return argv


def source_patterns(source_root: Path, glob: str = "*.rs") -> List[str]:
    """Absolute paths of every source file under *source_root*, sorted.

    lcov --extract keeps a record only if its SF path matches one of these.
    """
    return sorted(str(p) for p in source_root.rglob(glob) if p.is_file())
