"""Pytest configuration for tests.

Sets up Python path and fixtures for all tests.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Add project root to Python path so imports work correctly
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from repobar.services.process.runner import CommandResult  # noqa: E402

STATUS_ARGS = ("status", "--porcelain=v1", "--untracked-files=all")
UPSTREAM_ARGS = ("rev-parse", "--abbrev-ref", "@{upstream}")
AHEAD_BEHIND_ARGS = ("rev-list", "--left-right", "--count", "HEAD...@{upstream}")


class FakeRunner:
    """In-memory stand-in for CommandRunner keyed by argument vector."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, ...]] = []
        self.responses: Dict[Tuple[str, ...], CommandResult] = {}
        self.default = CommandResult(0, "", "")

    def respond(self, args: Sequence[str], stdout: str = "", stderr: str = "", exit_code: int = 0) -> None:
        self.responses[tuple(args)] = CommandResult(exit_code, stdout, stderr)

    def count(self, args: Sequence[str]) -> int:
        return self.calls.count(tuple(args))

    async def run(self, command: str, args: Sequence[str], cwd: Optional[str] = None) -> CommandResult:
        self.calls.append(tuple(args))
        return self.responses.get(tuple(args), self.default)

    async def run_streaming(self, command, args, on_line, cwd=None, on_stderr=None) -> int:
        result = await self.run(command, args, cwd)
        for line in result.stdout.splitlines():
            on_line(line)
        if on_stderr:
            on_stderr(result.stderr)
        return result.exit_code


class MemoryCredentialStore:
    """Credential store kept in a plain attribute."""

    def __init__(self, token: Optional[str] = None) -> None:
        self.token = token
        self.deleted = 0

    def get_token(self) -> Optional[str]:
        return self.token

    def set_token(self, token: str) -> None:
        self.token = token

    def delete_token(self) -> None:
        self.deleted += 1
        self.token = None


@pytest.fixture
def fake_runner():
    """Runner answering like a clean repository on branch main without upstream."""
    runner = FakeRunner()
    runner.respond(["rev-parse", "--is-inside-work-tree"], stdout="true\n")
    runner.respond(["branch", "--show-current"], stdout="main\n")
    runner.respond(UPSTREAM_ARGS, stderr="fatal: no upstream configured for branch 'main'\n", exit_code=128)
    return runner


@pytest.fixture
def git_repo(tmp_path):
    """A directory that looks like a working tree (has a .git directory)."""
    (tmp_path / ".git").mkdir()
    return tmp_path


@pytest.fixture
def memory_store():
    return MemoryCredentialStore()
