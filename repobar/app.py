"""
Engine wiring: builds the services from configuration and owns their lifecycle.
"""

import logging
import sys
from typing import List, Optional

import httpx

from common.config.config import APP_LOG_FILE, LOG_LEVEL
from repobar.services.git.change_detector import ChangeDetector
from repobar.services.git.client import GitClient
from repobar.services.git.session import RepositorySession
from repobar.services.github.api.client import GitHubAPIClient
from repobar.services.github.api.issues import IssueClient
from repobar.services.github.auth.credential_store import CredentialStore
from repobar.services.github.auth.device_flow import AuthSession
from repobar.services.process.runner import CommandRunner

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = LOG_LEVEL, log_file: Optional[str] = APP_LOG_FILE) -> None:
    """Configure root logging to stdout and, when set, an append-mode file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


class RepoBarEngine:
    """One repository session plus GitHub sign-in and issues, wired together."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        store: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        observer_factory=None,
    ):
        self.runner = runner or CommandRunner()
        self.git = GitClient(self.runner)
        self.session = RepositorySession(self.git)
        if observer_factory is not None:
            self.detector = ChangeDetector(self.session, observer_factory=observer_factory)
        else:
            self.detector = ChangeDetector(self.session)
        self.auth = AuthSession(store=store, transport=transport)
        self.api = GitHubAPIClient(
            self.auth.bearer_token,
            base_url=self.auth.api_url,
            api_version=self.auth.api_version,
            timeout=self.auth.timeout,
            transport=transport,
        )
        self.issues = IssueClient(self.auth, self.api)

    async def start(self) -> None:
        """Restore a stored sign-in and begin watching for repository changes."""
        if await self.auth.restore():
            logger.info(f"Restored GitHub session for {self.auth.username or 'unknown user'}")
        await self.detector.start()

    async def open_repository(self, path: str) -> bool:
        self.issues.invalidate_cache()
        return await self.session.set_path(path)

    async def close(self) -> None:
        await self.detector.stop()
        await self.session.close()
        await self.auth.close()
        logger.info("Engine stopped")
