"""Debounced "needs refresh" signal from .git watch events and a periodic timer."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from common.config.config import REFRESH_POLL_INTERVAL, WATCH_DEBOUNCE_SECONDS
from repobar.events import PropertyChanged
from repobar.services.git.client import resolve_git_dir
from repobar.services.git.session import RepositorySession

logger = logging.getLogger(__name__)

CONTROL_FILES = {
    "HEAD",
    "index",
    "ORIG_HEAD",
    "FETCH_HEAD",
    "MERGE_HEAD",
    "CHERRY_PICK_HEAD",
    "REBASE_HEAD",
    "packed-refs",
}


def is_relevant_path(git_dir: Path, raw_path: str) -> bool:
    """True for control files whose change can alter branch, status or upstream counts."""
    try:
        relative = Path(raw_path).relative_to(git_dir)
    except ValueError:
        return False
    if not relative.parts or relative.name.endswith(".lock"):
        return False
    top = relative.parts[0]
    if top == "objects":
        return False
    return top == "refs" or (len(relative.parts) == 1 and top in CONTROL_FILES)


class GitDirEventHandler(FileSystemEventHandler):
    """Forwards relevant watchdog events; runs on the observer thread."""

    def __init__(self, git_dir: Path, notify: Callable[[str], None]):
        super().__init__()
        self.git_dir = git_dir
        self.notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Atomic writes land as index.lock -> index moves; check the destination too
        for raw_path in (event.src_path, getattr(event, "dest_path", "")):
            if raw_path and is_relevant_path(self.git_dir, str(raw_path)):
                self.notify(str(raw_path))
                return


class ChangeDetector:
    """Feeds a RepositorySession with debounced refresh requests.

    Watch events and the periodic fallback are OR-combined: whichever fires
    first starts a quiet window of ``debounce`` seconds, after which one
    refresh is requested. Missed watch events are caught within one poll
    interval.
    """

    def __init__(
        self,
        session: RepositorySession,
        poll_interval: float = REFRESH_POLL_INTERVAL,
        debounce: float = WATCH_DEBOUNCE_SECONDS,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.session = session
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.observer_factory = observer_factory
        self.trigger_count = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._signal: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._observer = None
        self._watched_dir: Optional[Path] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._joins: Set[asyncio.Future] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def watched_dir(self) -> Optional[Path]:
        return self._watched_dir

    async def start(self) -> None:
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._signal = asyncio.Event()
        self._unsubscribe = self.session.on_change("path", self._on_path_changed)
        self._watch(self.session.path)
        self._task = self._loop.create_task(self._run())
        logger.info(f"Change detection started (poll every {self.poll_interval}s)")

    async def stop(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self._stop_observer()
        if self._joins:
            await asyncio.gather(*self._joins)
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    def notify(self, reason: str = "") -> None:
        """Request a refresh; safe to call from any thread."""
        if self._loop is None or self._signal is None or self._loop.is_closed():
            return
        logger.debug(f"Change detected: {reason}")
        self._loop.call_soon_threadsafe(self._signal.set)

    def _on_path_changed(self, event: PropertyChanged) -> None:
        self._watch(event.new_value)

    def _watch(self, repo_path: str) -> None:
        self._stop_observer()
        if not repo_path:
            return
        git_dir = resolve_git_dir(Path(repo_path))
        if not git_dir.is_dir():
            return
        try:
            observer = self.observer_factory()
            observer.schedule(GitDirEventHandler(git_dir, self.notify), str(git_dir), recursive=True)
            observer.start()
        except Exception as e:
            logger.warning(f"File watching unavailable for {git_dir}, polling only: {e}")
            return
        self._observer = observer
        self._watched_dir = git_dir

    def _stop_observer(self) -> None:
        observer = self._observer
        self._observer = None
        self._watched_dir = None
        if observer is None:
            return
        observer.stop()
        # Joining blocks; keep it off the loop thread
        joining = self._loop.run_in_executor(None, observer.join, 1)
        self._joins.add(joining)
        joining.add_done_callback(self._joins.discard)

    async def _settle(self) -> None:
        while True:
            self._signal.clear()
            try:
                await asyncio.wait_for(self._signal.wait(), timeout=self.debounce)
            except asyncio.TimeoutError:
                return

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._signal.wait(), timeout=self.poll_interval)
                reason = "watch"
            except asyncio.TimeoutError:
                reason = "poll"
            await self._settle()
            self.trigger_count += 1
            logger.debug(f"Refresh requested by {reason} for {self.session.path}")
            try:
                await self.session.refresh()
            except Exception:
                logger.exception(f"Background refresh failed for {self.session.path}")
