"""The coverage run as an explicit state machine.

``TRANSITIONS`` is the single source of step ordering: each entry moves the
pipeline from one state to the next by running one step.  There is no
branching and no retry; the first failing step moves the pipeline to
``State.ABORTED`` and the error propagates to the caller.

Child processes go through an injectable runner (``ProcessRunner`` by
default), so ordering and fail-fast behaviour can be exercised with a fake.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from mesacov import cargo, lcov
from mesacov.cargo import TargetKind
from mesacov.config import CoverageConfig
from mesacov.errors import (
    ArtifactNotFoundError,
    BuildError,
    CoverageRunError,
    CoverageToolError,
    ReportError,
    SourceTreeError,
    StepFailedError,
    TestBinaryError,
    describe_returncode,
)
from mesacov.process import CommandResult, ProcessRunner
from mesacov.reports.coverage import TracefileSummary, files_outside, parse_tracefile

logger = logging.getLogger(__name__)


class State(str, Enum):
    PENDING = "pending"
    CLEANED = "cleaned"
    UNIT_BUILT = "unit_built"
    UNIT_CAPTURED = "unit_captured"
    CACHE_RESET = "cache_reset"
    INTEGRATION_BUILT = "integration_built"
    INTEGRATION_CAPTURED = "integration_captured"
    MERGED = "merged"
    FILTERED = "filtered"
    RENDERED = "rendered"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({State.RENDERED, State.ABORTED})


@dataclass(frozen=True)
class Transition:
    source: State
    step: str
    target: State


TRANSITIONS: Tuple[Transition, ...] = (
    Transition(State.PENDING, "cleanup", State.CLEANED),
    Transition(State.CLEANED, "unit_tests", State.UNIT_BUILT),
    Transition(State.UNIT_BUILT, "capture_unit", State.UNIT_CAPTURED),
    Transition(State.UNIT_CAPTURED, "reset_cache", State.CACHE_RESET),
    Transition(State.CACHE_RESET, "integration_tests", State.INTEGRATION_BUILT),
    Transition(State.INTEGRATION_BUILT, "capture_integration", State.INTEGRATION_CAPTURED),
    Transition(State.INTEGRATION_CAPTURED, "merge", State.MERGED),
    Transition(State.MERGED, "filter", State.FILTERED),
    Transition(State.FILTERED, "render", State.RENDERED),
)


def _now_utc() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class StepRecord:
    name: str
    started_at: str
    finished_at: Optional[str] = None
    status: str = "running"
    commands: List[List[str]] = field(default_factory=list)
    returncodes: List[int] = field(default_factory=list)
    durations: List[float] = field(default_factory=list)

    def finish(self, status: str) -> None:
        self.status = status
        self.finished_at = _now_utc()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


StepCallback = Callable[[int, int, Transition], None]


class CoveragePipeline:
    """Runs the coverage workflow for one project root."""

    def __init__(
        self,
        config: CoverageConfig,
        runner: Optional[ProcessRunner] = None,
        base_env: Optional[Mapping[str, str]] = None,
        on_step: Optional[StepCallback] = None,
    ) -> None:
        self.config = config
        self.runner = runner if runner is not None else ProcessRunner(timeout=config.timeout_seconds)
        self.env = config.child_env(base_env)
        self.on_step = on_step
        self.state = State.PENDING
        self.records: List[StepRecord] = []
        self.failed_step: Optional[str] = None
        self.executables: Dict[TargetKind, Path] = {}
        self._current: Optional[StepRecord] = None

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def step_actions(self) -> Dict[str, Callable[[], Any]]:
        cfg = self.config
        return {
            "cleanup": self.cleanup,
            "unit_tests": lambda: self.build_and_run(TargetKind.LIB),
            "capture_unit": lambda: self.capture(cfg.unit_tracefile),
            "reset_cache": self.reset_cache,
            "integration_tests": lambda: self.build_and_run(TargetKind.TESTS),
            "capture_integration": lambda: self.capture(cfg.integration_tracefile),
            "merge": lambda: self.merge(
                [cfg.unit_tracefile, cfg.integration_tracefile], cfg.merged_tracefile
            ),
            "filter": lambda: self.filter(
                cfg.merged_tracefile, cfg.final_tracefile, self.source_root()
            ),
            "render": lambda: self.render(cfg.final_tracefile, cfg.report_dir),
        }

    def run(self) -> State:
        """Run every step in ``TRANSITIONS`` order; raise on the first failure."""
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"pipeline already ran (state={self.state.value})")

        actions = self.step_actions()
        total = len(TRANSITIONS)
        for index, transition in enumerate(TRANSITIONS, start=1):
            if self.state is not transition.source:
                raise RuntimeError(
                    f"step {transition.step!r} expects state {transition.source.value}, "
                    f"pipeline is in {self.state.value}"
                )
            if self.on_step is not None:
                self.on_step(index, total, transition)

            record = StepRecord(name=transition.step, started_at=_now_utc())
            self.records.append(record)
            self._current = record
            try:
                actions[transition.step]()
            except CoverageRunError as exc:
                if exc.step is None:
                    exc.step = transition.step
                self._abort(record, "failed")
                logger.error("Step %s failed: %s", transition.step, exc)
                raise
            except KeyboardInterrupt:
                self._abort(record, "interrupted")
                logger.warning("Interrupted during step %s", transition.step)
                raise
            except Exception:
                self._abort(record, "failed")
                raise
            finally:
                self._current = None

            record.finish("ok")
            self.state = transition.target
            logger.info("Step %s done -> %s", transition.step, self.state.value)

        return self.state

    def _abort(self, record: StepRecord, status: str) -> None:
        record.finish(status)
        self.failed_step = record.name
        self.state = State.ABORTED

    def _exec(
        self,
        argv: Sequence[str],
        error_cls: Type[StepFailedError],
        what: str,
        capture_stdout: bool = False,
        check: bool = True,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        if self._current is not None:
            self._current.commands.append(argv)
        result = self.runner.run(
            argv,
            cwd=self.config.project_root,
            env=self.env,
            capture_stdout=capture_stdout,
        )
        if self._current is not None:
            self._current.returncodes.append(result.returncode)
            self._current.durations.append(result.duration_seconds)
        if check:
            self._check(result, error_cls, what)
        return result

    @staticmethod
    def _check(result: CommandResult, error_cls: Type[StepFailedError], what: str) -> None:
        if result.returncode != 0:
            raise error_cls(
                f"{what} exited with {describe_returncode(result.returncode)}",
                argv=result.argv,
                returncode=result.returncode,
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def cleanup(self) -> List[Path]:
        """Delete stale tracefiles and gcov data, then ``cargo clean``."""
        root = self.config.project_root
        removed: List[Path] = []
        for pattern in self.config.cleanup_patterns:
            for path in sorted(root.glob(pattern)):
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
                removed.append(path)
        if removed:
            logger.info("Removed %d stale artifact(s)", len(removed))
        self.reset_cache()
        return removed

    def reset_cache(self) -> None:
        self._exec(cargo.clean_command(self.config), BuildError, "cargo clean")

    def build_and_run(self, kind: TargetKind) -> Path:
        """Build the instrumented test binary for *kind* and run it."""
        kind = TargetKind(kind)
        what = f"cargo build ({kind.value})"
        result = self._exec(
            cargo.build_command(self.config, kind),
            BuildError,
            what,
            capture_stdout=True,
            check=False,
        )
        # JSON output swallows rustc's diagnostics; pass them on before failing.
        for rendered in cargo.compiler_diagnostics(result.stdout):
            sys.stderr.write(rendered if rendered.endswith("\n") else rendered + "\n")
        sys.stderr.flush()
        self._check(result, BuildError, what)

        executable = cargo.find_test_executable(
            result.stdout, kind, self.config.integration_test
        )
        if executable is None:
            raise ArtifactNotFoundError(
                f"cargo reported no test executable for target {kind.value!r}"
            )
        if not executable.is_absolute():
            executable = self.config.resolve(executable)
        self.executables[kind] = executable

        # The coverage tool must not see the dependency file.
        dep_info = cargo.dep_info_path(executable)
        if dep_info.exists():
            dep_info.unlink()
            logger.debug("Removed %s", dep_info)

        logger.info("Running %s", executable)
        self._exec([str(executable)], TestBinaryError, f"test binary {executable.name}")
        return executable

    def capture(self, output_path: str) -> None:
        self._exec(
            lcov.capture_command(self.config, output_path),
            CoverageToolError,
            f"lcov capture ({output_path})",
        )

    def merge(self, inputs: Sequence[str], output_path: str) -> None:
        self._exec(
            lcov.merge_command(self.config, inputs, output_path),
            CoverageToolError,
            f"lcov merge ({output_path})",
        )

    def filter(self, input_path: str, output_path: str, include_root: Path) -> None:
        """Keep only records for source files under *include_root*."""
        patterns = lcov.source_patterns(include_root, self.config.source_glob)
        if not patterns:
            raise SourceTreeError(
                f"no {self.config.source_glob} files under {include_root}"
            )
        logger.debug("Extracting %d source file(s) under %s", len(patterns), include_root)
        self._exec(
            lcov.extract_command(self.config, input_path, patterns, output_path),
            CoverageToolError,
            f"lcov extract ({output_path})",
        )

    def render(self, input_path: str, output_dir: str) -> None:
        self._exec(
            lcov.genhtml_command(self.config, input_path, output_dir),
            ReportError,
            "genhtml",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def source_root(self) -> Path:
        """The project's own source tree, as an absolute path."""
        root = self.config.source_root
        if not root.is_dir():
            raise SourceTreeError(f"source directory not found: {root}")
        return root

    def summarize(self) -> TracefileSummary:
        """Parse the final tracefile and warn about records outside the source root."""
        root = self.source_root()
        summary = parse_tracefile(
            self.config.resolve(self.config.final_tracefile), self.config.project_root
        )
        logger.info(
            "Coverage: %d file(s), lines %d/%d, branches %d/%d, functions %d/%d",
            len(summary.files),
            summary.lines_hit, summary.lines_found,
            summary.branches_hit, summary.branches_found,
            summary.functions_hit, summary.functions_found,
        )
        stray = files_outside(summary, root)
        if stray:
            logger.warning(
                "%d file(s) outside %s survived the filter: %s",
                len(stray), root, ", ".join(stray[:5]),
            )
        return summary

    def describe(self) -> List[Tuple[int, Transition, List[str]]]:
        """Commands each step would run, for ``--dry-run``."""
        cfg = self.config
        lib_exe = "<unit test executable reported by cargo>"
        tests_exe = "<integration test executable reported by cargo>"
        clean = shlex.join(cargo.clean_command(cfg))
        commands: Dict[str, List[str]] = {
            "cleanup": [f"rm -rf {' '.join(cfg.cleanup_patterns)}", clean],
            "unit_tests": [
                shlex.join(cargo.build_command(cfg, TargetKind.LIB)),
                f"rm {lib_exe}.d",
                lib_exe,
            ],
            "capture_unit": [shlex.join(lcov.capture_command(cfg, cfg.unit_tracefile))],
            "reset_cache": [clean],
            "integration_tests": [
                shlex.join(cargo.build_command(cfg, TargetKind.TESTS)),
                f"rm {tests_exe}.d",
                tests_exe,
            ],
            "capture_integration": [
                shlex.join(lcov.capture_command(cfg, cfg.integration_tracefile))
            ],
            "merge": [
                shlex.join(
                    lcov.merge_command(
                        cfg, [cfg.unit_tracefile, cfg.integration_tracefile], cfg.merged_tracefile
                    )
                )
            ],
            "filter": [self._describe_filter()],
            "render": [shlex.join(lcov.genhtml_command(cfg, cfg.final_tracefile, cfg.report_dir))],
        }
        return [
            (index, transition, commands[transition.step])
            for index, transition in enumerate(TRANSITIONS, start=1)
        ]

    def _describe_filter(self) -> str:
        cfg = self.config
        root = cfg.source_root
        patterns = lcov.source_patterns(root, cfg.source_glob) if root.is_dir() else []
        if not patterns:
            return f"<no {cfg.source_glob} files under {root}>"
        argv = lcov.extract_command(cfg, cfg.merged_tracefile, patterns, cfg.final_tracefile)
        return shlex.join(argv)
