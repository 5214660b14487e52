#!/usr/bin/env python3
"""Summarise an lcov tracefile and optionally enforce coverage thresholds.

Exit code 0 = pass, 1 = a threshold was not met (or the tracefile is
unreadable / empty).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from mesacov.reports.coverage import (
    TracefileSummary,
    build_coverage_report,
    files_outside,
    parse_tracefile,
    write_coverage_report,
)


def check_thresholds(
    summary: TracefileSummary,
    min_line: Optional[float],
    min_branch: Optional[float],
) -> List[str]:
    """Return one message per threshold that is not met."""
    failures: List[str] = []
    if min_line is not None and summary.line_coverage_pct < min_line:
        failures.append(
            f"line coverage {summary.line_coverage_pct:.1f}% is below {min_line:.1f}% "
            f"(-{min_line - summary.line_coverage_pct:.1f}%)"
        )
    if min_branch is not None and summary.branch_coverage_pct < min_branch:
        failures.append(
            f"branch coverage {summary.branch_coverage_pct:.1f}% is below {min_branch:.1f}% "
            f"(-{min_branch - summary.branch_coverage_pct:.1f}%)"
        )
    return failures


def print_summary(summary: TracefileSummary, source_root: Optional[Path]) -> None:
    print("=" * 80)
    for filename in sorted(summary.files):
        fc = summary.files[filename]
        display = filename
        if source_root is not None:
            try:
                display = Path(filename).relative_to(source_root).as_posix()
            except ValueError:
                pass
        print(f"  {display:40s} {fc.line_coverage_pct:5.1f}% line, "
              f"{fc.branch_coverage_pct:5.1f}% branch")
    print("=" * 80)
    print(f"Files:     {len(summary.files)}")
    print(f"Lines:     {summary.lines_hit}/{summary.lines_found} ({summary.line_coverage_pct:.1f}%)")
    print(f"Branches:  {summary.branches_hit}/{summary.branches_found} "
          f"({summary.branch_coverage_pct:.1f}%)")
    print(f"Functions: {summary.functions_hit}/{summary.functions_found}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mesacov summary",
        description="Print per-file and total coverage from an lcov tracefile.",
    )
    parser.add_argument("tracefile", help="lcov tracefile (e.g. final.info)")
    parser.add_argument(
        "--source-root",
        help="Show paths relative to this directory and flag files outside it",
    )
    parser.add_argument(
        "--base-directory",
        help="Directory relative SF paths are resolved against "
        "(default: the directory holding the tracefile)",
    )
    parser.add_argument(
        "--fail-under-line",
        type=float,
        default=None,
        help="Exit 1 if total line coverage is below this percentage",
    )
    parser.add_argument(
        "--fail-under-branch",
        type=float,
        default=None,
        help="Exit 1 if total branch coverage is below this percentage",
    )
    parser.add_argument(
        "--output-dir",
        help="Also write coverage_summary.json/.md into this directory",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    tracefile = Path(args.tracefile)
    if not tracefile.is_file():
        print(f"Error: tracefile not found: {tracefile}", file=sys.stderr)
        return 1

    source_root = Path(args.source_root).resolve() if args.source_root else None
    base_dir = Path(args.base_directory) if args.base_directory else tracefile.parent
    summary = parse_tracefile(tracefile, base_dir.resolve())
    if not summary.files:
        print(f"Error: no coverage records in {tracefile}", file=sys.stderr)
        return 1

    print_summary(summary, source_root)

    if source_root is not None:
        stray = files_outside(summary, source_root)
        if stray:
            print(f"\nWarning: {len(stray)} file(s) outside {source_root}:")
            for filename in stray:
                print(f"  {filename}")

    if args.output_dir:
        report = build_coverage_report(summary, tracefile=str(tracefile), source_root=source_root)
        paths = write_coverage_report(report, Path(args.output_dir))
        print(f"\nSummary written: {paths['json']}")

    failures = check_thresholds(summary, args.fail_under_line, args.fail_under_branch)
    if failures:
        print("\nCOVERAGE REQUIREMENTS NOT MET")
        for message in failures:
            print(f"  {message}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
