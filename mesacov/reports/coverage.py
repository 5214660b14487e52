"""Coverage summary built from an lcov tracefile.

Reads the ``SF``/``DA``/``BRDA``/``FNF``/``FNH`` records of a tracefile and
produces per-file and total line, branch and function coverage.  Used after
rendering to summarise ``final.info`` and by ``mesacov summary``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

REPORT_VERSION = "1.0.0"
SUMMARY_JSON_NAME = "coverage_summary.json"
SUMMARY_MD_NAME = "coverage_summary.md"


def _pct(hit: int, found: int) -> float:
    if found == 0:
        return 0.0
    return round(hit / found * 100, 2)


@dataclass
class FileCoverage:
    filename: str
    lines: Dict[int, int] = field(default_factory=dict)
    branches: Dict[Tuple[int, int, int], int] = field(default_factory=dict)
    functions_found: int = 0
    functions_hit: int = 0

    @property
    def lines_found(self) -> int:
        return len(self.lines)

    @property
    def lines_hit(self) -> int:
        return sum(1 for hits in self.lines.values() if hits > 0)

    @property
    def branches_found(self) -> int:
        return len(self.branches)

    @property
    def branches_hit(self) -> int:
        return sum(1 for taken in self.branches.values() if taken > 0)

    @property
    def line_coverage_pct(self) -> float:
        return _pct(self.lines_hit, self.lines_found)

    @property
    def branch_coverage_pct(self) -> float:
        return _pct(self.branches_hit, self.branches_found)


@dataclass
class TracefileSummary:
    files: Dict[str, FileCoverage] = field(default_factory=dict)

    @property
    def lines_found(self) -> int:
        return sum(f.lines_found for f in self.files.values())

    @property
    def lines_hit(self) -> int:
        return sum(f.lines_hit for f in self.files.values())

    @property
    def branches_found(self) -> int:
        return sum(f.branches_found for f in self.files.values())

    @property
    def branches_hit(self) -> int:
        return sum(f.branches_hit for f in self.files.values())

    @property
    def functions_found(self) -> int:
        return sum(f.functions_found for f in self.files.values())

    @property
    def functions_hit(self) -> int:
        return sum(f.functions_hit for f in self.files.values())

    @property
    def line_coverage_pct(self) -> float:
        return _pct(self.lines_hit, self.lines_found)

    @property
    def branch_coverage_pct(self) -> float:
        return _pct(self.branches_hit, self.branches_found)


def _split_fields(payload: str, count: int) -> Optional[List[str]]:
    parts = payload.split(",")
    if len(parts) < count:
        return None
    return parts


def parse_tracefile(path: Path, base_dir: Optional[Path] = None) -> TracefileSummary:
    """Parse an lcov tracefile.

    Records for the same source file are merged, keeping the highest hit
    count per line and branch.  Relative ``SF`` paths are resolved against
    *base_dir* when given: the directory lcov ran in (``--base-directory .``),
    which is the project root rather than the source tree.  Unknown record
    types and malformed lines are ignored.
    """
    summary = TracefileSummary()
    current: Optional[FileCoverage] = None

    with open(path, encoding="utf-8", errors="replace") as handle:
        for raw in handle:
            line = raw.strip()
            if not line:
                continue

            if line.startswith("SF:"):
                filename = line[3:]
                if base_dir is not None and not Path(filename).is_absolute():
                    filename = str(base_dir / filename)
                current = summary.files.setdefault(filename, FileCoverage(filename=filename))
            elif line == "end_of_record":
                current = None
            elif current is None:
                continue
            elif line.startswith("DA:"):
                parts = _split_fields(line[3:], 2)
                if parts is None:
                    continue
                try:
                    line_no, hits = int(parts[0]), int(parts[1])
                except ValueError:
                    continue
                current.lines[line_no] = max(current.lines.get(line_no, 0), hits)
            elif line.startswith("BRDA:"):
                parts = _split_fields(line[5:], 4)
                if parts is None:
                    continue
                try:
                    key = (int(parts[0]), int(parts[1]), int(parts[2]))
                    taken = 0 if parts[3] == "-" else int(parts[3])
                except ValueError:
                    continue
                current.branches[key] = max(current.branches.get(key, 0), taken)
            elif line.startswith("FNF:"):
                try:
                    current.functions_found = max(current.functions_found, int(line[4:]))
                except ValueError:
                    continue
            elif line.startswith("FNH:"):
                try:
                    current.functions_hit = max(current.functions_hit, int(line[4:]))
                except ValueError:
                    continue

    return summary


def files_outside(summary: TracefileSummary, root: Path) -> List[str]:
    """Source files in *summary* that do not live under *root*."""
    root = root.resolve()
    outside = []
    for filename in sorted(summary.files):
        try:
            Path(filename).resolve().relative_to(root)
        except ValueError:
            outside.append(filename)
    return outside


def build_coverage_report(
    summary: TracefileSummary,
    tracefile: str,
    source_root: Optional[Path] = None,
    run_id: str = "",
) -> Dict[str, Any]:
    """Build a JSON-serialisable coverage summary dict."""
    files = []
    for filename in sorted(summary.files):
        fc = summary.files[filename]
        display = filename
        if source_root is not None:
            try:
                display = Path(filename).relative_to(source_root).as_posix()
            except ValueError:
                pass
        files.append(
            {
                "file": display,
                "lines_found": fc.lines_found,
                "lines_hit": fc.lines_hit,
                "line_coverage_pct": fc.line_coverage_pct,
                "branches_found": fc.branches_found,
                "branches_hit": fc.branches_hit,
                "branch_coverage_pct": fc.branch_coverage_pct,
                "functions_found": fc.functions_found,
                "functions_hit": fc.functions_hit,
            }
        )

    return {
        "report_version": REPORT_VERSION,
        "run_id": run_id,
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        "tracefile": tracefile,
        "source_root": str(source_root) if source_root is not None else None,
        "totals": {
            "files": len(summary.files),
            "lines_found": summary.lines_found,
            "lines_hit": summary.lines_hit,
            "line_coverage_pct": summary.line_coverage_pct,
            "branches_found": summary.branches_found,
            "branches_hit": summary.branches_hit,
            "branch_coverage_pct": summary.branch_coverage_pct,
            "functions_found": summary.functions_found,
            "functions_hit": summary.functions_hit,
        },
        "files": files,
    }


def write_coverage_report(
    report: Dict[str, Any],
    output_dir: Path,
    write_markdown: bool = True,
) -> Dict[str, str]:
    """Write the summary JSON (and optionally Markdown) to *output_dir*.

    Returns dict of written file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    json_path = output_dir / SUMMARY_JSON_NAME
    json_path.write_text(json.dumps(report, indent=2, sort_keys=True), encoding="utf-8")

    paths: Dict[str, str] = {"json": json_path.as_posix()}

    if write_markdown:
        md_path = output_dir / SUMMARY_MD_NAME
        md_path.write_text(render_markdown(report), encoding="utf-8")
        paths["md"] = md_path.as_posix()

    return paths


def render_markdown(report: Dict[str, Any]) -> str:
    totals = report["totals"]
    lines: List[str] = []
    lines.append("# Coverage Summary")
    lines.append("")
    if report.get("run_id"):
        lines.append(f"- **Run ID**: {report['run_id']}")
    lines.append(f"- **Tracefile**: {report['tracefile']}")
    lines.append(f"- **Generated**: {report['generated_at']}")
    lines.append(
        f"- **Lines**: {totals['lines_hit']}/{totals['lines_found']} "
        f"({totals['line_coverage_pct']:.1f}%)"
    )
    lines.append(
        f"- **Branches**: {totals['branches_hit']}/{totals['branches_found']} "
        f"({totals['branch_coverage_pct']:.1f}%)"
    )
    lines.append(f"- **Functions**: {totals['functions_hit']}/{totals['functions_found']}")
    lines.append("")

    if report["files"]:
        lines.append("| File | Lines | Line % | Branches | Branch % |")
        lines.append("| --- | ---: | ---: | ---: | ---: |")
        for row in report["files"]:
            lines.append(
                f"| {row['file']} | {row['lines_hit']}/{row['lines_found']} "
                f"| {row['line_coverage_pct']:.1f} "
                f"| {row['branches_hit']}/{row['branches_found']} "
                f"| {row['branch_coverage_pct']:.1f} |"
            )
    else:
        lines.append("_No source files in tracefile._")
    lines.append("")
    return "\n".join(lines)
