"""Run artifacts written next to the HTML report.

Provides:
- Coverage summary parsed from the final tracefile (coverage.py)
- Run Manifest (manifest.py)
"""

from mesacov.reports.coverage import build_coverage_report, parse_tracefile
from mesacov.reports.manifest import build_run_manifest

__all__ = ["build_coverage_report", "build_run_manifest", "parse_tracefile"]
