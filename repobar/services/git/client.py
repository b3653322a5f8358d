"""Git operations for one working tree, expressed as argument vectors.

This module contains functions for:
- Repository validation and branch lookup
- Porcelain status and ahead/behind counts
- Staging, unstaging, commits and pushes
- Per-file diffs (staged, unstaged, untracked)
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from common.config.config import GIT_BINARY
from repobar.errors import InvocationError
from repobar.services.process.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

GIT_METADATA_DIR = ".git"
NULL_DEVICE = "/dev/null"
NO_UPSTREAM_MARKERS = ("no upstream", "does not point to a branch", "unknown revision")


def has_git_metadata(path: Path) -> bool:
    """True when the path contains a .git directory (or a worktree's .git file)."""
    return (path / GIT_METADATA_DIR).exists()


def resolve_git_dir(path: Path) -> Path:
    """Locate the metadata directory, following ``gitdir:`` files of linked worktrees."""
    marker = path / GIT_METADATA_DIR
    if marker.is_file():
        content = marker.read_text(encoding="utf-8").strip()
        if content.startswith("gitdir:"):
            target = Path(content[len("gitdir:") :].strip())
            return target if target.is_absolute() else (path / target).resolve()
    return marker


class GitClient:
    """Runs git commands against a working tree and raises InvocationError on failure."""

    def __init__(self, runner: Optional[CommandRunner] = None, git_binary: str = GIT_BINARY):
        self.runner = runner or CommandRunner()
        self.git_binary = git_binary

    async def _git(self, cwd: Path, args: Sequence[str], ok_codes: Tuple[int, ...] = (0,)) -> CommandResult:
        result = await self.runner.run(self.git_binary, list(args), cwd=str(cwd))
        if result.exit_code not in ok_codes:
            raise InvocationError([self.git_binary, *args], result.exit_code, result.stderr or result.stdout)
        return result

    async def is_repository(self, path: Path) -> bool:
        """Check that the path is inside a git work tree."""
        if not path.is_dir() or not has_git_metadata(path):
            return False
        result = await self.runner.run(
            self.git_binary, ["rev-parse", "--is-inside-work-tree"], cwd=str(path)
        )
        if result.launch_failed:
            raise InvocationError([self.git_binary, "rev-parse"], result.exit_code, result.stderr)
        return result.ok and result.stdout.strip() == "true"

    async def current_branch(self, path: Path) -> str:
        """Current branch name, empty when HEAD is detached."""
        result = await self._git(path, ["branch", "--show-current"])
        return result.stdout.strip()

    async def status_lines(self, path: Path) -> List[str]:
        """Porcelain status lines, streamed from the tool."""
        lines: List[str] = []
        stderr: List[str] = []
        args = ["status", "--porcelain=v1", "--untracked-files=all"]
        exit_code = await self.runner.run_streaming(
            self.git_binary, args, lines.append, cwd=str(path), on_stderr=stderr.append
        )
        if exit_code != 0:
            raise InvocationError([self.git_binary, *args], exit_code, "".join(stderr))
        return [line for line in lines if line]

    async def upstream(self, path: Path) -> Optional[str]:
        """Upstream tracking branch, None when the branch has none."""
        result = await self.runner.run(
            self.git_binary, ["rev-parse", "--abbrev-ref", "@{upstream}"], cwd=str(path)
        )
        if result.ok:
            return result.stdout.strip() or None
        if result.launch_failed:
            raise InvocationError([self.git_binary, "rev-parse"], result.exit_code, result.stderr)
        stderr = result.stderr.lower()
        if not any(marker in stderr for marker in NO_UPSTREAM_MARKERS):
            logger.warning(f"Upstream lookup failed for {path}: {result.stderr.strip()}")
        # Absence of an upstream (or an unborn branch) is not an error
        return None

    async def ahead_behind(self, path: Path) -> Tuple[Optional[str], int, int]:
        """Commits ahead of and behind the upstream.

        Returns:
            Tuple of (upstream, ahead, behind); (None, 0, 0) without an upstream
        """
        upstream = await self.upstream(path)
        if upstream is None:
            return None, 0, 0
        result = await self._git(path, ["rev-list", "--left-right", "--count", "HEAD...@{upstream}"])
        parts = result.stdout.split()
        if len(parts) != 2 or not all(part.isdigit() for part in parts):
            logger.warning(f"Unexpected rev-list output for {path}: {result.stdout!r}")
            return upstream, 0, 0
        return upstream, int(parts[0]), int(parts[1])

    async def stage(self, path: Path, file_path: str) -> None:
        await self._git(path, ["add", "--", file_path])
        logger.info(f"Staged {file_path}")

    async def unstage(self, path: Path, file_path: str) -> None:
        await self._git(path, ["restore", "--staged", "--", file_path])
        logger.info(f"Unstaged {file_path}")

    async def stage_all(self, path: Path) -> None:
        await self._git(path, ["add", "--all"])

    async def unstage_all(self, path: Path) -> None:
        await self._git(path, ["restore", "--staged", "--", "."])

    async def commit(self, path: Path, message: str) -> str:
        """Commit staged changes and return the new commit sha."""
        await self._git(path, ["commit", "-m", message])
        result = await self._git(path, ["rev-parse", "HEAD"])
        sha = result.stdout.strip()
        logger.info(f"Committed {sha[:7]} in {path}")
        return sha

    async def push(self, path: Path) -> None:
        await self._git(path, ["push"])
        logger.info(f"Git push successful for {path}")

    async def diff(self, path: Path, file_path: str, staged: bool = False, untracked: bool = False) -> str:
        """Raw unified diff for one file.

        Untracked files are compared against the null device; ``--no-index``
        exits with 1 when the files differ, which is the expected outcome.
        """
        if untracked:
            result = await self._git(
                path, ["diff", "--no-color", "--no-index", "--", NULL_DEVICE, file_path], ok_codes=(0, 1)
            )
            return result.stdout
        args = ["diff", "--no-color"]
        if staged:
            args.append("--cached")
        args.extend(["--", file_path])
        result = await self._git(path, args)
        return result.stdout
