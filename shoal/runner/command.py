"""
Shoal - Command Runner

Runs one external plugin command with a hard timeout. A command that
overruns its timeout is sent SIGTERM, then SIGKILL once the kill-after
grace period has also elapsed. Signals go to the whole process group so
that shell wrappers do not leave orphaned children holding the pipes open.
"""

import asyncio
import os
import signal
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_KILL_AFTER = 5.0


class CommandStatus(str, Enum):
    """How a command run ended."""
    EXITED = "exited"
    TIMED_OUT = "timed_out"
    KILLED = "killed"


class CommandSpawnError(Exception):
    """The command could not be started at all."""
    pass


@dataclass
class CommandResult:
    """Outcome of a single command run."""
    status: CommandStatus
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""

    @property
    def exited(self) -> bool:
        return self.status == CommandStatus.EXITED

    @property
    def success(self) -> bool:
        return self.exited and self.exit_code == 0

    def lines(self) -> List[str]:
        """Split stdout into lines, dropping blank ones."""
        return [line for line in self.stdout.splitlines() if line.strip()]


class CommandRunner:
    """Executes commands with timeout and kill-after policy."""

    def __init__(
        self,
        kill_after: float = DEFAULT_KILL_AFTER,
        term_signal: int = signal.SIGTERM,
    ):
        self.kill_after = kill_after
        self.term_signal = term_signal

    async def run(
        self,
        args: Sequence[str],
        timeout: float,
        name: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Raises:
            CommandSpawnError: if the binary is missing or not executable,
                or the argument vector is empty or invalid (e.g. contains NUL).
        """
        if not args:
            raise CommandSpawnError("command execute failed: empty command")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise CommandSpawnError(f"command execute failed: {e}") from e

        communicate = asyncio.ensure_future(process.communicate())
        status = CommandStatus.EXITED

        try:
            try:
                stdout, stderr = await asyncio.wait_for(asyncio.shield(communicate), timeout)
            except asyncio.TimeoutError:
                status = CommandStatus.TIMED_OUT
                logger.warning("Command timed out, terminating", plugin=name, timeout=timeout)
                self._signal(process, self.term_signal)
                try:
                    stdout, stderr = await asyncio.wait_for(
                        asyncio.shield(communicate), self.kill_after
                    )
                except asyncio.TimeoutError:
                    status = CommandStatus.KILLED
                    logger.warning("Command ignored termination, killing", plugin=name)
                    self._signal(process, signal.SIGKILL)
                    stdout, stderr = await self._reap(communicate, name)
        except asyncio.CancelledError:
            self._signal(process, signal.SIGKILL)
            communicate.cancel()
            raise

        result = CommandResult(
            status=status,
            exit_code=process.returncode if status == CommandStatus.EXITED else None,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

        if result.stderr.strip():
            logger.warning("Command stderr", plugin=name, stderr=result.stderr.strip())

        return result

    async def _reap(self, communicate: asyncio.Future, name: Optional[str]) -> Tuple[bytes, bytes]:
        """Wait one more grace period for the pipes to close after SIGKILL."""
        try:
            return await asyncio.wait_for(asyncio.shield(communicate), self.kill_after)
        except asyncio.TimeoutError:
            # Something outside the process group still holds the pipes.
            logger.error("Command output not released after kill, abandoning", plugin=name)
            communicate.cancel()
            return b"", b""

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, signum: int) -> None:
        """Send a signal to the process group, falling back to the process.

        The group is signalled even when the leader already exited, since
        background children left behind keep the group alive.
        """
        try:
            os.killpg(process.pid, signum)
        except ProcessLookupError:
            pass
        except PermissionError:
            if process.returncode is None:
                process.send_signal(signum)
