"""Tests for mesacov.config: defaults, YAML loading and precedence."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from mesacov.config import (
    CONFIG_ENV_VAR,
    CoverageConfig,
    apply_overrides,
    find_config_file,
    load_config,
    load_yaml_config,
)
from mesacov.errors import ConfigLoadError


class TestDefaults:
    def test_env_overrides(self):
        assert CoverageConfig().env_overrides() == {
            "COVERAGE_OPTIONS": (
                "-Zprofile -Copt-level=1 -Clink-dead-code -Ccodegen-units=1 -Zno-landing-pads"
            ),
            "RUSTC_WRAPPER": "./util/cov-rustc",
            "CARGO_INCREMENTAL": "0",
        }

    def test_artifact_names(self):
        config = CoverageConfig()
        assert config.unit_tracefile == "mesabox.info"
        assert config.integration_tracefile == "tests.info"
        assert config.merged_tracefile == "coverage.info"
        assert config.final_tracefile == "final.info"
        assert config.report_dir == "target/coverage"
        assert config.cleanup_patterns == ["*.info", "*.gcda", "*.gcno"]
        assert config.timeout_seconds is None

    def test_child_env_copies_base(self):
        base = {"PATH": "/bin"}
        env = CoverageConfig().child_env(base)
        assert env["PATH"] == "/bin"
        assert env["CARGO_INCREMENTAL"] == "0"
        assert base == {"PATH": "/bin"}

    def test_child_env_does_not_touch_os_environ(self):
        CoverageConfig().child_env()
        assert "RUSTC_WRAPPER" not in os.environ

    def test_incremental_flag(self):
        assert CoverageConfig(incremental=True).env_overrides()["CARGO_INCREMENTAL"] == "1"

    def test_source_root_is_absolute(self, project):
        config = CoverageConfig(project_root=project)
        assert config.source_root == project / "src"
        assert config.source_root.is_absolute()

    def test_to_dict_serialises_root(self, project):
        data = CoverageConfig(project_root=project).to_dict()
        assert data["project_root"] == str(project)
        assert data["lcov_rc"] == ["lcov_branch_coverage=1", "lcov_excl_line=assert"]


class TestApplyOverrides:
    def test_unknown_key(self):
        with pytest.raises(ConfigLoadError, match="unknown config key"):
            apply_overrides(CoverageConfig(), {"colour": "blue"})

    def test_returns_copy(self):
        original = CoverageConfig()
        updated = apply_overrides(original, {"cargo": "/opt/cargo"})
        assert updated.cargo == "/opt/cargo"
        assert original.cargo == "cargo"

    def test_string_promoted_to_list(self):
        config = apply_overrides(CoverageConfig(), {"cleanup_patterns": "*.profraw"})
        assert config.cleanup_patterns == ["*.profraw"]

    @pytest.mark.parametrize(
        "key,value",
        [
            ("incremental", "yes"),
            ("timeout_seconds", -1),
            ("timeout_seconds", True),
            ("lcov_rc", [1, 2]),
            ("cargo", 5),
        ],
    )
    def test_invalid_values(self, key, value):
        with pytest.raises(ConfigLoadError):
            apply_overrides(CoverageConfig(), {key: value})

    def test_timeout_coerced_to_float(self):
        assert apply_overrides(CoverageConfig(), {"timeout_seconds": 60}).timeout_seconds == 60.0

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            apply_overrides(CoverageConfig(), {"nope": 1})


class TestLoadYaml:
    def test_mapping(self, tmp_path):
        path = tmp_path / "mesacov.yaml"
        path.write_text("report_dir: out/html\ntimeout_seconds: 900\n", encoding="utf-8")
        assert load_yaml_config(path) == {"report_dir": "out/html", "timeout_seconds": 900}

    def test_bom_tolerated(self, tmp_path):
        path = tmp_path / "mesacov.yaml"
        path.write_bytes(b"\xef\xbb\xbfcargo: cargo-nightly\n")
        assert load_yaml_config(path) == {"cargo": "cargo-nightly"}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "mesacov.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_config(path) == {}

    def test_missing(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="not found"):
            load_yaml_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "mesacov.yaml"
        path.write_text("cargo: [unterminated\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="not valid YAML"):
            load_yaml_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "mesacov.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_yaml_config(path)


class TestLoadConfig:
    def test_defaults_without_file(self, project):
        config = load_config(project_root=project)
        assert config.project_root == project
        assert config.final_tracefile == "final.info"

    def test_project_file_picked_up(self, project):
        (project / "mesacov.yaml").write_text("report_dir: out/html\n", encoding="utf-8")
        assert load_config(project_root=project).report_dir == "out/html"

    def test_env_var_names_file(self, project, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.yaml"
        path.write_text("genhtml: genhtml-2\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert find_config_file(None, project) == path
        assert load_config(project_root=project).genhtml == "genhtml-2"

    def test_explicit_path_beats_env(self, project, tmp_path, monkeypatch):
        env_file = tmp_path / "env.yaml"
        env_file.write_text("cargo: from-env\n", encoding="utf-8")
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text("cargo: from-flag\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(env_file))
        assert load_config(config_path=explicit, project_root=project).cargo == "from-flag"

    def test_overrides_beat_file(self, project):
        (project / "mesacov.yaml").write_text("timeout_seconds: 10\n", encoding="utf-8")
        config = load_config(project_root=project, overrides={"timeout_seconds": 99})
        assert config.timeout_seconds == 99.0

    def test_file_project_root_relative_to_file(self, tmp_path, project):
        path = tmp_path / "mesacov.yaml"
        path.write_text("project_root: mesabox\n", encoding="utf-8")
        config = load_config(config_path=path)
        assert config.project_root == project

    def test_explicit_root_beats_file_root(self, tmp_path, project):
        path = tmp_path / "mesacov.yaml"
        path.write_text("project_root: /somewhere/else\n", encoding="utf-8")
        config = load_config(config_path=path, project_root=project)
        assert config.project_root == project

    def test_missing_explicit_file(self, project):
        with pytest.raises(ConfigLoadError):
            load_config(config_path=project / "nope.yaml", project_root=project)

    def test_no_file_found(self, tmp_path):
        assert find_config_file(None, tmp_path) is None

    def test_cwd_default(self, project, monkeypatch):
        monkeypatch.chdir(project)
        assert load_config().project_root == Path(project).resolve()
