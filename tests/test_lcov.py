"""Tests for mesacov.lcov command lines."""

from __future__ import annotations

import pytest

from mesacov.config import CoverageConfig
from mesacov.lcov import (
    capture_command,
    extract_command,
    genhtml_command,
    merge_command,
    source_patterns,
)

LCOVOPT = [
    "--gcov-tool", "./util/llvm-gcov",
    "--rc", "lcov_branch_coverage=1",
    "--rc", "lcov_excl_line=assert",
]


def test_capture():
    assert capture_command(CoverageConfig(), "mesabox.info") == [
        "lcov", *LCOVOPT,
        "--capture", "--directory", ".", "--base-directory", ".",
        "-o", "mesabox.info",
    ]


def test_merge():
    assert merge_command(CoverageConfig(), ["mesabox.info", "tests.info"], "coverage.info") == [
        "lcov", *LCOVOPT,
        "--add-tracefile", "mesabox.info",
        "--add-tracefile", "tests.info",
        "-o", "coverage.info",
    ]


def test_merge_requires_inputs():
    with pytest.raises(ValueError):
        merge_command(CoverageConfig(), [], "coverage.info")


def test_extract():
    argv = extract_command(CoverageConfig(), "coverage.info", ["/w/src/a.rs", "/w/src/b.rs"],
                           "final.info")
    assert argv == [
        "lcov", *LCOVOPT,
        "--extract", "coverage.info", "/w/src/a.rs", "/w/src/b.rs",
        "-o", "final.info",
    ]


def test_extract_requires_patterns():
    with pytest.raises(ValueError):
        extract_command(CoverageConfig(), "coverage.info", [], "final.info")


def test_genhtml():
    assert genhtml_command(CoverageConfig(), "final.info", "target/coverage/") == [
        "genhtml", "--branch-coverage", "--demangle-cpp", "--legend",
        "final.info", "-o", "target/coverage/",
        "--ignore-errors", "source",
    ]


def test_genhtml_without_ignore_errors():
    argv = genhtml_command(CoverageConfig(genhtml_ignore_errors=[]), "final.info", "out")
    assert "--ignore-errors" not in argv


def test_custom_rc_and_gcov_tool():
    config = CoverageConfig(gcov_tool="gcov-13", lcov_rc=["branch_coverage=1"])
    argv = capture_command(config, "x.info")
    assert argv[1:5] == ["--gcov-tool", "gcov-13", "--rc", "branch_coverage=1"]


def test_source_patterns(project):
    patterns = source_patterns(project / "src")
    assert patterns == sorted([
        str(project / "src" / "lib.rs"),
        str(project / "src" / "posix" / "sh" / "builtin" / "mod.rs"),
    ])


def test_source_patterns_skips_other_extensions(project):
    (project / "src" / "notes.txt").write_text("", encoding="utf-8")
    assert all(p.endswith(".rs") for p in source_patterns(project / "src"))
