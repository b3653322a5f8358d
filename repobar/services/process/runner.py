"""Asynchronous subprocess execution in collected and line-streaming modes."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from common.config.config import GIT_COMMAND_TIMEOUT

logger = logging.getLogger(__name__)

# Synthetic exit codes, reported on the same channel as real ones
LAUNCH_FAILURE_EXIT_CODE = 127
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def launch_failed(self) -> bool:
        return self.exit_code == LAUNCH_FAILURE_EXIT_CODE


class CommandRunner:
    """Launches external commands without blocking the event loop.

    No retries happen here; callers decide what a failure means.
    """

    def __init__(self, timeout: Optional[float] = GIT_COMMAND_TIMEOUT):
        """Initialize the runner.

        Args:
            timeout: Seconds before a running command is killed (None disables)
        """
        self.timeout = timeout

    async def _spawn(self, command: str, args: Sequence[str], cwd: Optional[str]):
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )

    @staticmethod
    async def _reap(process, argv: Sequence[str]) -> None:
        """Kill a child whose caller was cancelled and wait for it to exit."""
        if process.returncode is None:
            logger.debug(f"Cancelled {' '.join(argv)}, killing child")
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    async def run(
        self, command: str, args: Sequence[str], cwd: Optional[str] = None
    ) -> CommandResult:
        """Run a command and collect its complete output.

        Args:
            command: Executable name or path
            args: Argument vector (without the executable)
            cwd: Working directory

        Returns:
            CommandResult; a missing binary yields LAUNCH_FAILURE_EXIT_CODE and
            a timeout yields TIMEOUT_EXIT_CODE
        """
        argv = [command, *args]
        try:
            process = await self._spawn(command, args, cwd)
        except OSError as e:
            logger.error(f"Failed to launch {' '.join(argv)}: {e}")
            return CommandResult(LAUNCH_FAILURE_EXIT_CODE, "", str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(f"Command {' '.join(argv)} timed out after {self.timeout}s")
            return CommandResult(TIMEOUT_EXIT_CODE, "", f"timed out after {self.timeout}s")
        except asyncio.CancelledError:
            await self._reap(process, argv)
            raise

        result = CommandResult(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        logger.debug(f"{' '.join(argv)} exited with {result.exit_code}")
        return result

    async def run_streaming(
        self,
        command: str,
        args: Sequence[str],
        on_line: Callable[[str], None],
        cwd: Optional[str] = None,
        on_stderr: Optional[Callable[[str], None]] = None,
    ) -> int:
        """Run a command and deliver stdout one line at a time.

        Args:
            command: Executable name or path
            args: Argument vector (without the executable)
            on_line: Called with each stdout line, newline stripped
            cwd: Working directory
            on_stderr: Called once with the collected stderr after exit

        Returns:
            Exit code (synthetic codes as in run())
        """
        argv = [command, *args]
        try:
            process = await self._spawn(command, args, cwd)
        except OSError as e:
            logger.error(f"Failed to launch {' '.join(argv)}: {e}")
            if on_stderr:
                on_stderr(str(e))
            return LAUNCH_FAILURE_EXIT_CODE

        stderr_chunks: List[bytes] = []

        async def _read_stdout() -> None:
            async for raw in process.stdout:
                on_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))

        async def _drain_stderr() -> None:
            stderr_chunks.append(await process.stderr.read())

        try:
            await asyncio.wait_for(
                asyncio.gather(_read_stdout(), _drain_stderr(), process.wait()),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(f"Command {' '.join(argv)} timed out after {self.timeout}s")
            if on_stderr:
                on_stderr(f"timed out after {self.timeout}s")
            return TIMEOUT_EXIT_CODE
        except asyncio.CancelledError:
            await self._reap(process, argv)
            raise

        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        if on_stderr:
            on_stderr(stderr)
        if process.returncode != 0:
            logger.warning(f"{' '.join(argv)} exited with {process.returncode}: {stderr.strip()}")
        return process.returncode
