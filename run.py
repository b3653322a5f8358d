#!/usr/bin/env python3
"""
Entry point script to run the repobar engine headless.

Watches one repository and logs its state on every refresh:
    python run.py /path/to/repo

Environment variables:
    REPOBAR_REPO: Repository path when no argument is given (default: cwd)
    LOG_LEVEL: Logging level (default: INFO)
    APP_LOG_FILE: Optional log file, appended to
"""
import os
import sys
import asyncio

from repobar.app import RepoBarEngine, configure_logging
from repobar.events import ErrorRaised, RefreshCompleted


def _log_refresh(event: RefreshCompleted) -> None:
    session = event.source
    status = event.status
    print(
        f"[{session.branch or 'detached'}] "
        f"staged={len(status.staged)} unstaged={len(status.unstaged)} untracked={len(status.untracked)} "
        f"ahead={session.ahead_count} behind={session.behind_count}"
    )


def _log_error(event: ErrorRaised) -> None:
    print(f"error: {event.error}", file=sys.stderr)


async def main(path: str) -> int:
    engine = RepoBarEngine()
    engine.session.subscribe(RefreshCompleted, _log_refresh)
    engine.session.subscribe(ErrorRaised, _log_error)
    await engine.start()
    try:
        if not await engine.open_repository(path):
            return 1
        await asyncio.Event().wait()
    finally:
        await engine.close()
    return 0


if __name__ == "__main__":
    configure_logging()
    repo_path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("REPOBAR_REPO", os.getcwd())
    try:
        sys.exit(asyncio.run(main(repo_path)))
    except KeyboardInterrupt:
        sys.exit(0)
