#!/usr/bin/env python3
"""Run the full coverage workflow for the mesabox workspace.

Steps:
1. Cleanup (stale .info/.gcda/.gcno files, cargo clean)
2. Unit tests: build instrumented, run, capture -> mesabox.info
3. cargo clean
4. Integration tests: build instrumented, run, capture -> tests.info
5. Merge -> coverage.info, extract src/ -> final.info
6. genhtml -> target/coverage/

Stops at the first failing step and exits with that step's status.
"""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from mesacov.config import CoverageConfig, load_config
from mesacov.errors import CoverageRunError
from mesacov.pipeline import CoveragePipeline, State, Transition
from mesacov.process import ProcessRunner
from mesacov.reports.coverage import build_coverage_report, write_coverage_report
from mesacov.reports.manifest import build_run_manifest, write_run_manifest

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def _now_utc() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _short_uuid() -> str:
    return uuid.uuid4().hex[:8]


def _make_runner(config: CoverageConfig) -> ProcessRunner:
    return ProcessRunner(timeout=config.timeout_seconds)


def _print_step(index: int, total: int, transition: Transition) -> None:
    print(f"\n[{index}/{total}] {transition.step.replace('_', ' ')}...")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mesacov run",
        description="Build, run and measure the mesabox test suites, then render an HTML report.",
    )
    parser.add_argument(
        "--config",
        help="Path to a mesacov.yaml config file (default: $MESACOV_CONFIG or ./mesacov.yaml)",
    )
    parser.add_argument(
        "--project-root",
        help="Project directory to run in (default: current directory)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-command timeout in seconds (default: none)",
    )
    parser.add_argument(
        "--no-manifest",
        action="store_true",
        help="Do not write run_manifest.json",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the commands each step would run without executing anything",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.timeout is not None:
        overrides["timeout_seconds"] = args.timeout
    if args.no_manifest:
        overrides["write_manifest"] = False
    return overrides


def _print_plan(pipeline: CoveragePipeline) -> None:
    config = pipeline.config
    print("DRY RUN - would run in:", config.project_root)
    print("Child environment:")
    for key, value in config.env_overrides().items():
        print(f"  {key}={value}")
    planned = pipeline.describe()
    for index, transition, commands in planned:
        print(f"\n[{index}/{len(planned)}] {transition.step} "
              f"({transition.source.value} -> {transition.target.value})")
        for command in commands:
            print(f"  $ {command}")


def _write_artifacts(
    pipeline: CoveragePipeline,
    run_id: str,
    started_at: str,
    argv: List[str],
    error: Optional[CoverageRunError],
    interrupted: bool,
) -> Optional[str]:
    config = pipeline.config
    if not config.write_manifest:
        return None

    if pipeline.state is State.RENDERED:
        status = "succeeded"
    elif interrupted:
        status = "interrupted"
    else:
        status = "failed"

    output_paths = {
        "project_root": str(config.project_root),
        "unit_tracefile": config.unit_tracefile,
        "integration_tracefile": config.integration_tracefile,
        "merged_tracefile": config.merged_tracefile,
        "final_tracefile": config.final_tracefile,
        "report_dir": config.report_dir,
    }
    manifest = build_run_manifest(
        run_id=run_id,
        started_at=started_at,
        command_name="run",
        argv=argv,
        status=status,
        final_state=pipeline.state.value,
        steps=[record.to_dict() for record in pipeline.records],
        output_paths=output_paths,
        failed_step=pipeline.failed_step,
        error=str(error) if error is not None else None,
        effective_config=config.to_dict(),
        project_root=config.project_root,
    )
    try:
        return write_run_manifest(manifest, config.resolve(config.report_dir))
    except OSError as exc:
        logger.warning("Could not write run manifest: %s", exc)
        return None


def _report_summary(pipeline: CoveragePipeline, run_id: str) -> None:
    config = pipeline.config
    try:
        summary = pipeline.summarize()
    except (OSError, CoverageRunError) as exc:
        logger.warning("Could not summarise %s: %s", config.final_tracefile, exc)
        return

    print(f"  Files:     {len(summary.files)}")
    print(f"  Lines:     {summary.lines_hit}/{summary.lines_found} ({summary.line_coverage_pct:.1f}%)")
    print(f"  Branches:  {summary.branches_hit}/{summary.branches_found} "
          f"({summary.branch_coverage_pct:.1f}%)")
    print(f"  Functions: {summary.functions_hit}/{summary.functions_found}")

    if config.write_manifest:
        report = build_coverage_report(
            summary,
            tracefile=config.final_tracefile,
            source_root=config.source_root,
            run_id=run_id,
        )
        try:
            write_coverage_report(report, config.resolve(config.report_dir))
        except OSError as exc:
            logger.warning("Could not write coverage summary: %s", exc)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(
            config_path=args.config,
            project_root=args.project_root,
            overrides=_cli_overrides(args),
        )
    except CoverageRunError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return exc.exit_code

    if args.dry_run:
        pipeline = CoveragePipeline(config, runner=_make_runner(config))
        try:
            _print_plan(pipeline)
        except CoverageRunError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return exc.exit_code
        return 0

    pipeline = CoveragePipeline(config, runner=_make_runner(config), on_step=_print_step)
    run_id = _short_uuid()
    started_at = _now_utc()
    error: Optional[CoverageRunError] = None
    interrupted = False
    exit_code = 0

    print(f"Coverage run {run_id} in {config.project_root}")
    try:
        pipeline.run()
    except CoverageRunError as exc:
        error = exc
        exit_code = exc.exit_code
        print(f"\nError: step '{exc.step}' failed: {exc}", file=sys.stderr)
    except KeyboardInterrupt:
        interrupted = True
        exit_code = EXIT_INTERRUPTED
        print(f"\nInterrupted during step '{pipeline.failed_step}'.", file=sys.stderr)

    if exit_code == 0:
        report_dir = Path(config.report_dir)
        print(f"\n{'=' * 60}")
        print("COVERAGE REPORT COMPLETE")
        print(f"{'=' * 60}")
        print(f"  Report:    {config.resolve(report_dir) / 'index.html'}")
        _report_summary(pipeline, run_id)

    manifest_path = _write_artifacts(
        pipeline, run_id, started_at, list(argv or []), error, interrupted
    )
    if manifest_path:
        print(f"  Manifest:  {manifest_path}")

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
