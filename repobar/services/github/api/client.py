"""
GitHub API client for making authenticated requests.
Uses the access token obtained through the device flow.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from common.config.config import GITHUB_API_URL, GITHUB_API_VERSION, HTTP_TIMEOUT
from repobar.errors import ApiError, ApiErrorCategory, RateLimitInfo

logger = logging.getLogger(__name__)


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitInfo:
    """Extract quota information from X-RateLimit-* and Retry-After headers."""
    reset = _int_header(headers, "x-ratelimit-reset")
    return RateLimitInfo(
        limit=_int_header(headers, "x-ratelimit-limit"),
        remaining=_int_header(headers, "x-ratelimit-remaining"),
        reset_at=datetime.fromtimestamp(reset, tz=timezone.utc) if reset is not None else None,
        retry_after=_int_header(headers, "retry-after"),
    )


def classify_status(status_code: int, rate_limit: RateLimitInfo, message: str = "") -> ApiErrorCategory:
    """Map an HTTP failure to a user-facing category."""
    if status_code == 401:
        return ApiErrorCategory.UNAUTHORIZED
    if status_code in (403, 429):
        if status_code == 429 or rate_limit.exhausted or "rate limit" in message.lower():
            return ApiErrorCategory.RATE_LIMITED
        return ApiErrorCategory.FORBIDDEN
    if status_code in (404, 410):
        return ApiErrorCategory.NOT_FOUND
    if status_code == 422:
        return ApiErrorCategory.VALIDATION_FAILED
    if status_code >= 500:
        return ApiErrorCategory.SERVER
    return ApiErrorCategory.UNKNOWN


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("message") or "")
    return ""


class GitHubAPIClient:
    """Base client for GitHub REST API interactions."""

    def __init__(
        self,
        token_provider: Callable[[], Optional[str]],
        base_url: str = GITHUB_API_URL,
        api_version: str = GITHUB_API_VERSION,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize GitHub API client.

        Args:
            token_provider: Returns the current access token (None when signed out)
            base_url: REST API base URL
            api_version: Value of the X-GitHub-Api-Version header
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport
        self.last_rate_limit: Optional[RateLimitInfo] = None

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.api_version,
            "Content-Type": "application/json",
        }
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make a GitHub API request.

        Args:
            method: HTTP method (GET, POST, PATCH, ...)
            path: API path (without base URL)
            data: JSON request body
            params: Query parameters

        Returns:
            Decoded JSON body (dict or list), or an empty dict for empty bodies

        Raises:
            ApiError: Classified failure, including network errors
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        timeout_config = httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0))

        try:
            async with httpx.AsyncClient(
                timeout=timeout_config, transport=self.transport, trust_env=False
            ) as client:
                response = await client.request(
                    method.upper(), url, json=data, params=params, headers=self._get_headers()
                )
        except httpx.RequestError as e:
            logger.error(f"GitHub API request error for {method} {url}: {e}")
            raise ApiError(ApiErrorCategory.NETWORK, detail=str(e) or None) from e

        return self._process_response(response, method, url)

    def _process_response(self, response: httpx.Response, method: str, url: str) -> Any:
        """Record the quota, then return the body or raise a classified ApiError."""
        rate_limit = parse_rate_limit(response.headers)
        self.last_rate_limit = rate_limit

        if response.is_success:
            logger.debug(f"GitHub API {method} {url} succeeded (status: {response.status_code})")
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                return {}

        message = _error_message(response)
        category = classify_status(response.status_code, rate_limit, message)
        logger.error(
            f"GitHub API {method} {url} failed (status {response.status_code}, {category.value}): {message}"
        )
        raise ApiError(category, status_code=response.status_code, detail=message or None, rate_limit=rate_limit)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, data=data)

    async def patch(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("PATCH", path, data=data)
