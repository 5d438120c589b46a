"""
Shoal - Command Runner Tests
"""

import asyncio

import pytest

from shoal.runner.command import CommandResult, CommandRunner, CommandSpawnError, CommandStatus


class TestCommandRunner:
    """Test running real subprocesses."""

    @pytest.mark.asyncio
    async def test_captures_stdout(self):
        """Test a successful command returns its output."""
        result = await CommandRunner().run(["sh", "-c", "echo hello"], timeout=5)

        assert result.status == CommandStatus.EXITED
        assert result.exit_code == 0
        assert result.success is True
        assert result.stdout == "hello\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        """Test a non-zero exit is reported, not raised."""
        result = await CommandRunner().run(["sh", "-c", "exit 3"], timeout=5)

        assert result.exited is True
        assert result.exit_code == 3
        assert result.success is False

    @pytest.mark.asyncio
    async def test_captures_stderr(self):
        """Test stderr is captured separately."""
        result = await CommandRunner().run(["sh", "-c", "echo oops >&2"], timeout=5)

        assert result.stdout == ""
        assert result.stderr == "oops\n"

    @pytest.mark.asyncio
    async def test_timeout_terminates(self):
        """Test an overrunning command is terminated."""
        runner = CommandRunner(kill_after=2.0)
        result = await runner.run(["sleep", "10"], timeout=0.2)

        assert result.status == CommandStatus.TIMED_OUT
        assert result.exit_code is None
        assert result.exited is False

    @pytest.mark.asyncio
    async def test_ignored_term_is_killed(self):
        """Test a command ignoring SIGTERM is killed after the grace period."""
        runner = CommandRunner(kill_after=0.2)
        result = await runner.run(["sh", "-c", "trap '' TERM; sleep 10"], timeout=0.2)

        assert result.status == CommandStatus.KILLED
        assert result.exit_code is None

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        """Test a missing binary is a spawn error."""
        with pytest.raises(CommandSpawnError):
            await CommandRunner().run(["/nonexistent/shoal-plugin"], timeout=5)

    @pytest.mark.asyncio
    async def test_permission_denied(self, tmp_path):
        """Test a non-executable file is a spawn error."""
        script = tmp_path / "plugin.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)

        with pytest.raises(CommandSpawnError):
            await CommandRunner().run([str(script)], timeout=5)

    @pytest.mark.asyncio
    async def test_empty_command(self):
        """Test an empty argument vector is a spawn error."""
        with pytest.raises(CommandSpawnError):
            await CommandRunner().run([], timeout=5)


class TestCommandResult:
    """Test CommandResult helpers."""

    def test_lines_drops_blank(self):
        """Test lines() skips blank lines."""
        result = CommandResult(CommandStatus.EXITED, 0, stdout="a\n\n  \nb\n")

        assert result.lines() == ["a", "b"]


class TestCommandRunnerBounds:
    """Test the runner never waits past timeout plus kill-after."""

    @pytest.mark.asyncio
    async def test_background_child_holding_pipes_is_terminated(self):
        """Test a child left running after the shell exits is signalled too."""
        loop = asyncio.get_running_loop()
        runner = CommandRunner(kill_after=0.5)

        started = loop.time()
        result = await runner.run(["sh", "-c", "sleep 6 & exit 0"], timeout=0.5)
        elapsed = loop.time() - started

        assert elapsed < 3.0
        assert result.status in (CommandStatus.TIMED_OUT, CommandStatus.KILLED)
        assert result.exit_code is None

    @pytest.mark.asyncio
    async def test_nul_byte_in_arguments(self):
        """Test an argument the OS cannot accept is a spawn error."""
        with pytest.raises(CommandSpawnError):
            await CommandRunner().run(["sh", "\0x"], timeout=5)
