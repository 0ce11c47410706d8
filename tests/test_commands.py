"""Tests for shell command execution."""
import sys

from upgrade_factory.commands import EXIT_NOT_FOUND, EXIT_TIMEOUT, run_command

PY = f'"{sys.executable}"'


class TestRunCommand:
    def test_success(self, tmp_path):
        result = run_command(f"{PY} -c \"print('hello')\"", cwd=tmp_path, timeout=30)
        assert result.ok
        assert result.exit_code == 0
        assert result.stdout.strip() == "hello"
        assert result.duration >= 0

    def test_failure_exit_code(self, tmp_path):
        result = run_command(f"{PY} -c \"import sys; sys.exit(3)\"", cwd=tmp_path, timeout=30)
        assert not result.ok
        assert result.exit_code == 3

    def test_stderr_in_output(self, tmp_path):
        result = run_command(
            f"{PY} -c \"import sys; sys.stderr.write('warn: peer dep')\"", cwd=tmp_path, timeout=30
        )
        assert "warn: peer dep" in result.output

    def test_timeout(self, tmp_path):
        result = run_command(f"{PY} -c \"import time; time.sleep(3)\"", cwd=tmp_path, timeout=1)
        assert result.timed_out
        assert result.exit_code == EXIT_TIMEOUT
        assert not result.ok

    def test_missing_cwd(self, tmp_path):
        result = run_command("echo hi", cwd=tmp_path / "does-not-exist", timeout=5)
        assert result.exit_code == EXIT_NOT_FOUND
        assert not result.ok
