"""Tests for mesacov.process.ProcessRunner against real child processes."""

from __future__ import annotations

import os
import sys

import pytest

from mesacov.errors import StepTimeoutError, ToolNotFoundError
from mesacov.process import ProcessRunner


def _env(**extra):
    env = dict(os.environ)
    env.update(extra)
    return env


class TestProcessRunner:
    def test_returncode(self, tmp_path):
        result = ProcessRunner().run(
            [sys.executable, "-c", "import sys; sys.exit(3)"], cwd=tmp_path, env=_env()
        )
        assert result.returncode == 3
        assert not result.ok

    def test_success(self, tmp_path):
        result = ProcessRunner().run([sys.executable, "-c", "pass"], cwd=tmp_path, env=_env())
        assert result.ok
        assert result.stdout == ""
        assert result.duration_seconds >= 0

    def test_captures_stdout_when_asked(self, tmp_path):
        result = ProcessRunner().run(
            [sys.executable, "-c", "print('hello')"],
            cwd=tmp_path,
            env=_env(),
            capture_stdout=True,
        )
        assert result.stdout.strip() == "hello"

    def test_uses_given_env(self, tmp_path):
        result = ProcessRunner().run(
            [sys.executable, "-c", "import os; print(os.environ['CARGO_INCREMENTAL'])"],
            cwd=tmp_path,
            env=_env(CARGO_INCREMENTAL="0"),
            capture_stdout=True,
        )
        assert result.stdout.strip() == "0"
        assert os.environ.get("CARGO_INCREMENTAL") is None

    def test_uses_given_cwd(self, tmp_path):
        result = ProcessRunner().run(
            [sys.executable, "-c", "import os; print(os.getcwd())"],
            cwd=tmp_path,
            env=_env(),
            capture_stdout=True,
        )
        assert os.path.samefile(result.stdout.strip(), tmp_path)

    def test_timeout(self, tmp_path):
        runner = ProcessRunner(timeout=0.5)
        with pytest.raises(StepTimeoutError) as excinfo:
            runner.run(
                [sys.executable, "-c", "import time; time.sleep(30)"], cwd=tmp_path, env=_env()
            )
        assert excinfo.value.exit_code == 124
        assert excinfo.value.timeout == 0.5

    def test_missing_tool(self, tmp_path):
        with pytest.raises(ToolNotFoundError) as excinfo:
            ProcessRunner().run(
                [str(tmp_path / "no-such-tool")], cwd=tmp_path, env=_env()
            )
        assert excinfo.value.exit_code == 127
        assert "no-such-tool" in str(excinfo.value)
