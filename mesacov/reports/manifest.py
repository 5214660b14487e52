"""Run Manifest builder.

Produces a JSON manifest capturing run provenance: timing, command,
final pipeline state, the failing step (if any), every command executed,
config hash, and version information.
"""

from __future__ import annotations

import hashlib
import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import mesacov

MANIFEST_VERSION = "1.0.0"
MANIFEST_NAME = "run_manifest.json"


def _now_utc() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _duration_seconds(started: str, finished: str) -> float:
    """Compute seconds between two ISO timestamps."""
    try:
        t0 = datetime.fromisoformat(started)
        t1 = datetime.fromisoformat(finished)
        return round((t1 - t0).total_seconds(), 3)
    except (ValueError, TypeError):
        return 0.0


def _git_commit(cwd: Optional[Path] = None) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True, text=True, timeout=5,
            cwd=str(cwd) if cwd is not None else None,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass
    return None


def stable_config_hash(config: Dict[str, Any]) -> str:
    """SHA-256 of deterministically-serialised config dict."""
    canonical = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_run_manifest(
    run_id: str,
    started_at: str,
    command_name: str,
    argv: List[str],
    status: str,
    final_state: str,
    steps: List[Dict[str, Any]],
    output_paths: Dict[str, str],
    failed_step: Optional[str] = None,
    error: Optional[str] = None,
    effective_config: Optional[Dict[str, Any]] = None,
    finished_at: Optional[str] = None,
    project_root: Optional[Path] = None,
) -> Dict[str, Any]:
    """Build a Run Manifest dict.

    Parameters
    ----------
    run_id : str
        Unique run identifier.
    started_at : str
        ISO-8601 timestamp when the run started.
    command_name : str
        CLI command name (e.g. "run").
    argv : list[str]
        CLI arguments as given.
    status : str
        "succeeded", "failed" or "interrupted".
    final_state : str
        Pipeline state the run ended in.
    steps : list[dict]
        One record per step attempted, in order.
    output_paths : dict
        Mapping of path labels to filesystem paths.
    failed_step : str | None
        Name of the step that aborted the run.
    error : str | None
        Error message of the aborting failure.
    effective_config : dict | None
        Config dict to hash.
    finished_at : str | None
        ISO-8601 timestamp when the run finished.  If ``None``,
        ``_now_utc()`` is used.
    project_root : Path | None
        Directory whose git commit is recorded.
    """
    fin = finished_at or _now_utc()
    duration = _duration_seconds(started_at, fin)

    config_hash = ""
    if effective_config:
        config_hash = stable_config_hash(effective_config)

    manifest = {
        "manifest_version": MANIFEST_VERSION,
        "run_id": run_id,
        "started_at": started_at,
        "finished_at": fin,
        "duration_seconds": duration,
        "command_name": command_name,
        "argv": argv,
        "status": status,
        "final_state": final_state,
        "failed_step": failed_step,
        "error": error,
        "steps": steps,
        "output_paths": output_paths,
        "effective_config_hash_sha256": config_hash,
        "mesacov_version": mesacov.__version__,
        "git_commit": _git_commit(project_root),
    }
    return manifest


def write_run_manifest(
    manifest: Dict[str, Any],
    output_dir: Path,
) -> str:
    """Write ``run_manifest.json`` to *output_dir* and return the path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / MANIFEST_NAME
    path.write_text(json.dumps(manifest, indent=2, sort_keys=True), encoding="utf-8")
    return str(path)
