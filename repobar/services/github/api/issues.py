"""
Issue and comment operations against the GitHub REST API.

Every operation maps to one authenticated call. Calls made while signed out,
or with missing required fields, are rejected locally without touching the
network. Failures are stored in ``last_error`` and emitted, never raised.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from repobar.errors import ApiError, ApiErrorCategory, RateLimitInfo, RepoBarError, ValidationError
from repobar.events import ObservableModel
from repobar.services.github.api.client import GitHubAPIClient
from repobar.services.github.models.types import (
    Comment,
    Issue,
    IssuePage,
    IssueState,
    StateReason,
    is_pull_request,
)

if TYPE_CHECKING:
    from repobar.services.github.auth.device_flow import AuthSession

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 30
MAX_PER_PAGE = 100
LIST_STATES = {"open", "closed", "all"}


class IssueClient(ObservableModel):
    """Issue browsing and editing with an in-memory cache keyed by issue number."""

    def __init__(self, auth: "AuthSession", api: Optional[GitHubAPIClient] = None):
        """Initialize the client.

        Args:
            auth: Session providing the token and the authenticated state
            api: REST client (built from the session's token when omitted)
        """
        super().__init__()
        self.auth = auth
        self.api = api or GitHubAPIClient(
            auth.bearer_token,
            base_url=auth.api_url,
            api_version=auth.api_version,
            timeout=auth.timeout,
            transport=auth.transport,
        )
        self.last_error: Optional[RepoBarError] = None
        self.rate_limit: Optional[RateLimitInfo] = None

        self._cache: Dict[int, Issue] = {}
        self._cache_repo: Optional[str] = None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def invalidate_cache(self) -> None:
        if self._cache:
            logger.debug(f"Dropping {len(self._cache)} cached issues of {self._cache_repo}")
        self._cache.clear()
        self._cache_repo = None

    def cached_issue(self, number: int) -> Optional[Issue]:
        return self._cache.get(number)

    def _select_repo(self, owner: str, repo: str) -> None:
        slug = f"{owner}/{repo}"
        if self._cache_repo != slug:
            self.invalidate_cache()
            self._cache_repo = slug

    def _store(self, issue: Issue) -> Issue:
        cached = self._cache.get(issue.number)
        if cached is not None and cached.comments_loaded and not issue.comments_loaded:
            # Keep lazily loaded comments across list refreshes
            issue = issue.model_copy(update={"comments": cached.comments, "comments_loaded": True})
        self._cache[issue.number] = issue
        return issue

    # ------------------------------------------------------------------
    # Boundary helpers
    # ------------------------------------------------------------------

    def _check(self, owner: str, repo: str, **required: Any) -> bool:
        """Local preconditions; reports a ValidationError and returns False on failure."""
        if not self.auth.is_authenticated:
            self._report_error(ValidationError("Sign in to GitHub first"))
            return False
        if not owner or not repo:
            self._report_error(ValidationError("Repository owner and name are required"))
            return False
        for name, value in required.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                self._report_error(ValidationError(f"{name.replace('_', ' ').capitalize()} is required"))
                return False
        self._select_repo(owner, repo)
        return True

    async def _call(self, method: str, path: str, data: Optional[Dict[str, Any]] = None,
                    params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        try:
            result = await self.api.request(method, path, data=data, params=params)
        except ApiError as e:
            self._update(rate_limit=e.rate_limit or self.api.last_rate_limit)
            if e.api_category is ApiErrorCategory.RATE_LIMITED:
                logger.warning(f"Rate limited; quota resets in {e.rate_limit.seconds_until_reset() if e.rate_limit else '?'}s")
            self._report_error(e)
            return None
        self._update(rate_limit=self.api.last_rate_limit, last_error=None)
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_issues(
        self,
        owner: str,
        repo: str,
        state: str = "open",
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
    ) -> Optional[IssuePage]:
        """List one page of issues; callers accumulate pages.

        ``has_more`` is inferred from a full page (no total-count header).
        Pull requests are filtered out after that inference.
        """
        if state not in LIST_STATES:
            self._report_error(ValidationError(f"Unknown issue state filter: {state}"))
            return None
        if page < 1 or not 1 <= per_page <= MAX_PER_PAGE:
            self._report_error(ValidationError("Invalid page or page size"))
            return None
        if not self._check(owner, repo):
            return None

        data = await self._call(
            "GET",
            f"repos/{owner}/{repo}/issues",
            params={"state": state, "page": page, "per_page": per_page},
        )
        if data is None:
            return None

        raw_items: List[Dict[str, Any]] = data if isinstance(data, list) else []
        issues = [self._store(Issue.from_api(item)) for item in raw_items if not is_pull_request(item)]
        return IssuePage(issues=issues, page=page, per_page=per_page, has_more=len(raw_items) == per_page)

    async def get_issue(self, owner: str, repo: str, number: int) -> Optional[Issue]:
        if not self._check(owner, repo, number=number):
            return None
        data = await self._call("GET", f"repos/{owner}/{repo}/issues/{number}")
        if data is None:
            return None
        return self._store(Issue.from_api(data))

    async def load_comments(self, owner: str, repo: str, number: int) -> Optional[List[Comment]]:
        """Fetch comments and attach them to the cached issue."""
        if not self._check(owner, repo, number=number):
            return None
        data = await self._call(
            "GET", f"repos/{owner}/{repo}/issues/{number}/comments", params={"per_page": MAX_PER_PAGE}
        )
        if data is None:
            return None
        comments = [Comment.from_api(item) for item in data] if isinstance(data, list) else []
        cached = self._cache.get(number)
        if cached is not None:
            self._cache[number] = cached.model_copy(
                update={
                    "comments": comments,
                    "comments_count": max(cached.comments_count, len(comments)),
                    "comments_loaded": True,
                }
            )
        return comments

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str = "",
        labels: Optional[List[str]] = None,
    ) -> Optional[Issue]:
        if not self._check(owner, repo, title=title):
            return None
        payload: Dict[str, Any] = {"title": title.strip(), "body": body}
        if labels:
            payload["labels"] = labels
        data = await self._call("POST", f"repos/{owner}/{repo}/issues", data=payload)
        if data is None:
            return None
        issue = self._store(Issue.from_api(data))
        logger.info(f"Created issue #{issue.number} in {owner}/{repo}")
        return issue

    async def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> Optional[Issue]:
        if title is not None and not title.strip():
            self._report_error(ValidationError("Title is required"))
            return None
        payload: Dict[str, Any] = {}
        if title is not None:
            payload["title"] = title.strip()
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = labels
        if not payload:
            self._report_error(ValidationError("Nothing to update"))
            return None
        return await self._patch_issue(owner, repo, number, payload, "Updated")

    async def close_issue(
        self, owner: str, repo: str, number: int, reason: str = StateReason.COMPLETED.value
    ) -> Optional[Issue]:
        if reason not in {r.value for r in StateReason}:
            self._report_error(ValidationError(f"Unknown close reason: {reason}"))
            return None
        payload = {"state": IssueState.CLOSED.value, "state_reason": reason}
        return await self._patch_issue(owner, repo, number, payload, "Closed")

    async def reopen_issue(self, owner: str, repo: str, number: int) -> Optional[Issue]:
        return await self._patch_issue(owner, repo, number, {"state": IssueState.OPEN.value}, "Reopened")

    async def _patch_issue(
        self, owner: str, repo: str, number: int, payload: Dict[str, Any], verb: str
    ) -> Optional[Issue]:
        if not self._check(owner, repo, number=number):
            return None
        data = await self._call("PATCH", f"repos/{owner}/{repo}/issues/{number}", data=payload)
        if data is None:
            return None
        issue = self._store(Issue.from_api(data))
        logger.info(f"{verb} issue #{number} in {owner}/{repo}")
        return issue

    async def add_comment(self, owner: str, repo: str, number: int, body: str) -> Optional[Comment]:
        if not self._check(owner, repo, number=number, body=body):
            return None
        data = await self._call(
            "POST", f"repos/{owner}/{repo}/issues/{number}/comments", data={"body": body}
        )
        if data is None:
            return None
        comment = Comment.from_api(data)
        cached = self._cache.get(number)
        if cached is not None:
            update: Dict[str, Any] = {"comments_count": cached.comments_count + 1}
            if cached.comments_loaded:
                update["comments"] = [*cached.comments, comment]
            self._cache[number] = cached.model_copy(update=update)
        logger.info(f"Commented on issue #{number} in {owner}/{repo}")
        return comment
