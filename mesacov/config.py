"""Coverage run configuration.

Defaults reproduce the mesabox coverage workflow exactly.  A YAML file
(``mesacov.yaml`` in the project root, ``$MESACOV_CONFIG`` or ``--config``)
may override any field; CLI flags are applied on top of that.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from mesacov.errors import ConfigLoadError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MESACOV_CONFIG"
DEFAULT_CONFIG_NAME = "mesacov.yaml"

DEFAULT_COVERAGE_OPTIONS = (
    "-Zprofile -Copt-level=1 -Clink-dead-code -Ccodegen-units=1 -Zno-landing-pads"
)
DEFAULT_RUSTC_WRAPPER = "./util/cov-rustc"
DEFAULT_GCOV_TOOL = "./util/llvm-gcov"
DEFAULT_LCOV_RC = ("lcov_branch_coverage=1", "lcov_excl_line=assert")
DEFAULT_CLEANUP_PATTERNS = ("*.info", "*.gcda", "*.gcno")


@dataclass
class CoverageConfig:
    """Everything a coverage run needs to know.

    Relative paths are interpreted against ``project_root``, which is also
    the working directory of every child process.
    """

    project_root: Path = field(default_factory=Path.cwd)

    # tools
    cargo: str = "cargo"
    lcov: str = "lcov"
    genhtml: str = "genhtml"
    gcov_tool: str = DEFAULT_GCOV_TOOL

    # instrumentation (child environment only)
    coverage_options: str = DEFAULT_COVERAGE_OPTIONS
    rustc_wrapper: str = DEFAULT_RUSTC_WRAPPER
    incremental: bool = False

    # build targets
    all_features: bool = True
    integration_test: str = "tests"

    # lcov
    lcov_rc: List[str] = field(default_factory=lambda: list(DEFAULT_LCOV_RC))
    source_dir: str = "src"
    source_glob: str = "*.rs"

    # artifacts
    cleanup_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_CLEANUP_PATTERNS))
    unit_tracefile: str = "mesabox.info"
    integration_tracefile: str = "tests.info"
    merged_tracefile: str = "coverage.info"
    final_tracefile: str = "final.info"
    report_dir: str = "target/coverage"
    genhtml_ignore_errors: List[str] = field(default_factory=lambda: ["source"])

    # run behaviour
    timeout_seconds: Optional[float] = None
    write_manifest: bool = True

    def env_overrides(self) -> Dict[str, str]:
        """Variables injected into every child process."""
        return {
            "COVERAGE_OPTIONS": self.coverage_options,
            "RUSTC_WRAPPER": self.rustc_wrapper,
            "CARGO_INCREMENTAL": "1" if self.incremental else "0",
        }

    def child_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment for child processes; ``os.environ`` is never modified."""
        env = dict(os.environ if base is None else base)
        env.update(self.env_overrides())
        return env

    def resolve(self, relative: Union[str, Path]) -> Path:
        return self.project_root / relative

    @property
    def source_root(self) -> Path:
        return self.resolve(self.source_dir).resolve()

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["project_root"] = str(self.project_root)
        return data


_FIELDS = {f.name: f for f in dataclasses.fields(CoverageConfig)}
_LIST_FIELDS = {"lcov_rc", "cleanup_patterns", "genhtml_ignore_errors"}
_BOOL_FIELDS = {"incremental", "all_features", "write_manifest"}


def _coerce(name: str, value: Any) -> Any:
    if name == "project_root":
        if not isinstance(value, (str, Path)):
            raise ConfigLoadError(f"project_root must be a path, got {type(value).__name__}")
        return Path(value)
    if name in _LIST_FIELDS:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigLoadError(f"{name} must be a list of strings")
        return list(value)
    if name in _BOOL_FIELDS:
        if not isinstance(value, bool):
            raise ConfigLoadError(f"{name} must be true or false, got {value!r}")
        return value
    if name == "timeout_seconds":
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigLoadError(f"timeout_seconds must be a positive number, got {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ConfigLoadError(f"{name} must be a string, got {type(value).__name__}")
    return value


def apply_overrides(config: CoverageConfig, overrides: Mapping[str, Any]) -> CoverageConfig:
    """Return a copy of *config* with *overrides* validated and applied."""
    unknown = sorted(set(overrides) - set(_FIELDS))
    if unknown:
        raise ConfigLoadError(f"unknown config key(s): {', '.join(unknown)}")
    changes = {name: _coerce(name, value) for name, value in overrides.items()}
    return dataclasses.replace(config, **changes)


def load_yaml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML mapping from *path*.

    Raises:
        ConfigLoadError: If the file is missing, not valid YAML, or not a mapping.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"config file not found: {p}") from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"config file is not valid YAML ({p}): {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"config file must contain a mapping, got {type(data).__name__}: {p}"
        )
    return data


def find_config_file(
    explicit: Optional[Union[str, Path]] = None,
    project_root: Optional[Path] = None,
) -> Optional[Path]:
    """Pick the config file: explicit path, then $MESACOV_CONFIG, then mesacov.yaml."""
    if explicit:
        return Path(explicit)
    from_env = os.getenv(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    candidate = (project_root or Path.cwd()) / DEFAULT_CONFIG_NAME
    if candidate.is_file():
        return candidate
    return None


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    project_root: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> CoverageConfig:
    """Build the effective config: defaults < config file < *overrides*.

    A ``project_root`` given in the file is resolved against the file's
    directory; an explicit *project_root* argument wins over the file.
    """
    root = Path(project_root).resolve() if project_root is not None else None
    config = CoverageConfig(project_root=root or Path.cwd().resolve())

    path = find_config_file(config_path, root)
    if path is not None:
        file_values = load_yaml_config(path)
        logger.debug("Loaded config from %s: %s", path, sorted(file_values))
        config = apply_overrides(config, file_values)
        if root is None and "project_root" in file_values:
            config.project_root = (path.parent / config.project_root).resolve()
        elif root is not None:
            config.project_root = root

    if overrides:
        config = apply_overrides(config, overrides)
    return config
