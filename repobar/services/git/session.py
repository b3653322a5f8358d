"""
Repository session: one working tree's branch, status and upstream counts.

The session is the boundary toward the UI. Every failure is classified,
stored in ``last_error`` and emitted as an ErrorRaised event; the previous
snapshot stays visible. Refreshes are single-flight: a trigger arriving while
a refresh is in flight is dropped, not queued.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Tuple

from common.config.config import DIFF_MAX_LINES
from repobar.errors import InvocationError, RepoBarError, ValidationError
from repobar.events import ObservableModel, RefreshCompleted
from repobar.services.git.client import GitClient, has_git_metadata
from repobar.services.git.diff_parser import parse_diff
from repobar.services.git.models import Diff, StatusSnapshot
from repobar.services.git.status_parser import parse_status

logger = logging.getLogger(__name__)


class RepositorySession(ObservableModel):
    """Observable state of a single repository plus the operations that mutate it."""

    def __init__(self, git: Optional[GitClient] = None, diff_max_lines: int = DIFF_MAX_LINES):
        """Initialize an empty session.

        Args:
            git: Git client used for every tool invocation
            diff_max_lines: Default truncation threshold for get_diff
        """
        super().__init__()
        self.git = git or GitClient()
        self.diff_max_lines = diff_max_lines

        self.path = ""
        self.branch = ""
        self.is_valid_repo = False
        self.status = StatusSnapshot()
        self.ahead_count = 0
        self.behind_count = 0
        self.upstream: Optional[str] = None
        self.is_refreshing = False
        self.last_error: Optional[RepoBarError] = None
        self.has_conflict_markers = False

        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_error = False
        self._diff_cache: Dict[Tuple[str, bool], str] = {}

    # ------------------------------------------------------------------
    # Repository selection
    # ------------------------------------------------------------------

    async def set_path(self, path: str) -> bool:
        """Switch to another repository.

        All fields are hard-reset (not merged) and any in-flight refresh of
        the previous repository is cancelled before the new one is validated.

        Returns:
            True if the path is a valid repository and was refreshed
        """
        self._cancel_refresh()
        self._diff_cache.clear()
        resolved = str(Path(path).expanduser().resolve()) if path else ""
        self._update(
            path=resolved,
            branch="",
            is_valid_repo=False,
            status=StatusSnapshot(),
            ahead_count=0,
            behind_count=0,
            upstream=None,
            is_refreshing=False,
            last_error=None,
            has_conflict_markers=False,
        )

        if not resolved or not has_git_metadata(Path(resolved)):
            self._report_error(ValidationError(f"Not a git repository: {path}"))
            return False

        try:
            valid = await self.git.is_repository(Path(resolved))
        except InvocationError as e:
            self._report_error(e)
            return False

        if self.path != resolved:
            # Superseded by another set_path while validating
            return False
        if not valid:
            self._report_error(ValidationError(f"Not a git repository: {path}"))
            return False

        logger.info(f"Opened repository {resolved}")
        self._update(is_valid_repo=True)
        await self.refresh()
        return True

    async def close(self) -> None:
        task = self._refresh_task
        self._cancel_refresh()
        if task is not None:
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Refresh orchestration
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Reload branch, status and ahead/behind counts.

        Returns:
            True if a cycle ran and succeeded; False if the call was dropped
            because another refresh is in flight, or the cycle failed
        """
        if self.is_refreshing:
            logger.debug(f"Refresh already in flight for {self.path}; dropping trigger")
            return False
        if not self.path:
            return False

        task = asyncio.get_running_loop().create_task(self._refresh_cycle(Path(self.path)))
        self._refresh_task = task
        task.add_done_callback(self._on_refresh_done)
        self._update(is_refreshing=True)

        await asyncio.wait({task})
        if task.cancelled():
            return False
        return task.result()

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
            self._update(is_refreshing=False)

    def _cancel_refresh(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and not task.done():
            logger.debug(f"Cancelling in-flight refresh for {self.path}")
            task.cancel()

    async def _refresh_cycle(self, path: Path) -> bool:
        try:
            if not await self.git.is_repository(path):
                self._refresh_error = True
                self._update(is_valid_repo=False)
                self._report_error(ValidationError(f"Not a git repository: {path}"))
                return False

            branch, lines, (upstream, ahead, behind) = await asyncio.gather(
                self.git.current_branch(path),
                self.git.status_lines(path),
                self.git.ahead_behind(path),
            )
        except InvocationError as e:
            self._refresh_error = True
            self._report_error(e)
            return False

        status = parse_status(lines)
        self._diff_cache.clear()
        fields = dict(
            is_valid_repo=True,
            branch=branch,
            status=status,
            upstream=upstream,
            ahead_count=ahead,
            behind_count=behind,
        )
        if not status.conflicted:
            fields["has_conflict_markers"] = False
        if self._refresh_error:
            # Only clear errors this refresh loop produced itself
            self._refresh_error = False
            fields["last_error"] = None
        self._update(**fields)
        self.emit(RefreshCompleted(self, status))
        return True

    async def _refresh_after_mutation(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            # The running cycle may have read status before the mutation
            await asyncio.wait({task})
        await self.refresh()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _require_repository(self) -> Optional[Path]:
        if not self.path or not self.is_valid_repo:
            self._report_error(ValidationError("No valid repository selected"))
            return None
        return Path(self.path)

    async def _mutate(self, operation: Callable[[Path], Awaitable[object]]) -> Tuple[bool, object]:
        path = self._require_repository()
        if path is None:
            return False, None
        try:
            result = await operation(path)
        except InvocationError as e:
            self._report_error(e)
            return False, None
        self._refresh_error = False
        self._update(last_error=None)
        await self._refresh_after_mutation()
        return True, result

    async def stage(self, file_path: str) -> bool:
        if not file_path:
            self._report_error(ValidationError("No file given to stage"))
            return False
        ok, _ = await self._mutate(lambda path: self.git.stage(path, file_path))
        return ok

    async def unstage(self, file_path: str) -> bool:
        if not file_path:
            self._report_error(ValidationError("No file given to unstage"))
            return False
        ok, _ = await self._mutate(lambda path: self.git.unstage(path, file_path))
        return ok

    async def stage_all(self) -> bool:
        ok, _ = await self._mutate(self.git.stage_all)
        return ok

    async def unstage_all(self) -> bool:
        if not self.status.staged:
            self._report_error(ValidationError("Nothing staged"))
            return False
        ok, _ = await self._mutate(self.git.unstage_all)
        return ok

    async def commit(self, message: str) -> str:
        """Commit the staged files.

        Returns:
            The new commit sha, or an empty string on failure
        """
        if not message or not message.strip():
            self._report_error(ValidationError("Commit message cannot be empty"))
            return ""
        if not self.status.staged:
            self._report_error(ValidationError("Nothing staged to commit"))
            return ""
        ok, sha = await self._mutate(lambda path: self.git.commit(path, message))
        return sha if ok else ""

    async def push(self) -> bool:
        if self.upstream is None:
            self._report_error(ValidationError("Current branch has no upstream"))
            return False
        if self.ahead_count <= 0:
            self._report_error(ValidationError("Nothing to push"))
            return False
        ok, _ = await self._mutate(self.git.push)
        return ok

    # ------------------------------------------------------------------
    # Diffs
    # ------------------------------------------------------------------

    async def get_diff(
        self,
        file_path: str,
        staged: bool = False,
        show_full: bool = False,
        max_lines: Optional[int] = None,
    ) -> Optional[Diff]:
        """Diff of one file, truncated to max_lines unless show_full is set.

        Requesting the full diff reparses the cached text of the previous
        request, so the tool is not invoked again until the next refresh.
        """
        path = self._require_repository()
        if path is None:
            return None

        key = (file_path, staged)
        text = self._diff_cache.get(key) if show_full else None
        if text is None:
            untracked = not staged and self.status.is_untracked(file_path)
            try:
                text = await self.git.diff(path, file_path, staged=staged, untracked=untracked)
            except InvocationError as e:
                self._report_error(e)
                return None
            self._diff_cache[key] = text

        diff = parse_diff(
            text,
            file_path=file_path,
            max_lines=self.diff_max_lines if max_lines is None else max_lines,
            show_full=show_full,
        )
        if diff.has_conflict_markers:
            self._update(has_conflict_markers=True)
        return diff
