"""Module entrypoint for mesacov.

Usage: python -m mesacov [command] [options]

With no command (or only options) the full coverage run is started.
"""

from __future__ import annotations

import sys
from typing import Optional

from tools.cli.coverage_run import main as run_main
from tools.cli.coverage_summary import main as summary_main


def print_usage() -> None:
    """Print CLI usage information."""
    print("mesacov - coverage runs for the mesabox workspace")
    print("")
    print("Usage: mesacov [command] [options]")
    print("       python -m mesacov [command] [options]")
    print("")
    print("Commands:")
    print("  run       Clean, build, test, capture, merge, filter and render (default)")
    print("  plan      Print the commands a run would execute (same as run --dry-run)")
    print("  summary   Summarise an lcov tracefile, optionally enforcing thresholds")
    print("")
    print("Options:")
    print("  -h, --help        Show this help message")
    print("  --version         Show version information")
    print("")
    print("Examples:")
    print("  mesacov")
    print("  mesacov run --timeout 1800 --log-level INFO")
    print("  mesacov plan")
    print("  mesacov summary final.info --source-root src --fail-under-line 80")


def print_version() -> None:
    """Print version information."""
    from mesacov import __version__
    print(f"mesacov {__version__}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entrypoint."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        return run_main([])

    command = argv[0]

    if command in ("-h", "--help"):
        print_usage()
        return 0

    if command in ("-v", "--version"):
        print_version()
        return 0

    if command == "run":
        return run_main(argv[1:])
    if command == "plan":
        return run_main(["--dry-run", *argv[1:]])
    if command == "summary":
        return summary_main(argv[1:])

    # Bare options go to the default command.
    if command.startswith("-"):
        return run_main(argv)

    print(f"Unknown command: {command}")
    print_usage()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
