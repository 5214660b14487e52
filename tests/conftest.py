from __future__ import annotations

from pathlib import Path

import pytest

from mesacov.config import CoverageConfig
from tests._fake_toolchain import FakeToolchain


_ISOLATED_ENV_VARS = (
    "MESACOV_CONFIG",
    "COVERAGE_OPTIONS",
    "RUSTC_WRAPPER",
    "CARGO_INCREMENTAL",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A minimal mesabox-shaped checkout."""
    root = (tmp_path / "mesabox").resolve()
    (root / "src" / "posix" / "sh" / "builtin").mkdir(parents=True)
    (root / "tests" / "posix").mkdir(parents=True)
    (root / "util").mkdir()
    (root / "Cargo.toml").write_text('[package]\nname = "mesabox"\n', encoding="utf-8")
    (root / "src" / "lib.rs").write_text("pub fn f() {}\n", encoding="utf-8")
    (root / "src" / "posix" / "sh" / "builtin" / "mod.rs").write_text("", encoding="utf-8")
    (root / "tests" / "posix" / "sleep.rs").write_text("", encoding="utf-8")
    return root


@pytest.fixture
def config(project: Path) -> CoverageConfig:
    return CoverageConfig(project_root=project)


@pytest.fixture
def toolchain(project: Path) -> FakeToolchain:
    return FakeToolchain(project)
