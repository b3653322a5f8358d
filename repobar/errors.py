"""
Error taxonomy for the repobar engine.

Internals raise these exceptions; the boundary objects (RepositorySession,
AuthSession, IssueClient) catch them, store them in their error field and emit
an ErrorRaised event instead of letting them propagate to the UI.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence


class ErrorCategory(str, Enum):
    INVOCATION = "invocation"
    VALIDATION = "validation"
    AUTH = "auth"
    API = "api"


class AuthErrorKind(str, Enum):
    AUTHORIZATION_PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    EXPIRED_TOKEN = "expired_token"
    ACCESS_DENIED = "access_denied"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    DEVICE_FLOW_DISABLED = "device_flow_disabled"
    INVALID_CLIENT = "invalid_client"
    CREDENTIAL_STORE = "credential_store"
    UNKNOWN = "unknown"

    @property
    def is_recoverable(self) -> bool:
        """Recoverable kinds keep the device flow polling."""
        return self in (AuthErrorKind.AUTHORIZATION_PENDING, AuthErrorKind.SLOW_DOWN)


class ApiErrorCategory(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"


AUTH_ERROR_MESSAGES = {
    AuthErrorKind.AUTHORIZATION_PENDING: "Waiting for the code to be entered",
    AuthErrorKind.SLOW_DOWN: "Polling too fast, slowing down",
    AuthErrorKind.EXPIRED_TOKEN: "The device code expired. Start sign-in again.",
    AuthErrorKind.ACCESS_DENIED: "Authorization was denied.",
    AuthErrorKind.NETWORK: "Could not reach GitHub. Check your connection.",
    AuthErrorKind.RATE_LIMITED: "GitHub rate limit reached. Try again later.",
    AuthErrorKind.DEVICE_FLOW_DISABLED: "Device flow is not enabled for this OAuth app.",
    AuthErrorKind.INVALID_CLIENT: "The OAuth client id is missing or invalid.",
    AuthErrorKind.CREDENTIAL_STORE: "The token could not be saved to the credential store.",
    AuthErrorKind.UNKNOWN: "Sign-in failed.",
}

API_ERROR_MESSAGES = {
    ApiErrorCategory.UNAUTHORIZED: "Authentication required. Sign in to GitHub again.",
    ApiErrorCategory.FORBIDDEN: "You do not have permission to do that.",
    ApiErrorCategory.NOT_FOUND: "Not found. The repository or issue may not exist.",
    ApiErrorCategory.VALIDATION_FAILED: "GitHub rejected the request as invalid.",
    ApiErrorCategory.RATE_LIMITED: "GitHub rate limit reached. Showing cached data.",
    ApiErrorCategory.NETWORK: "Could not reach GitHub. Check your connection.",
    ApiErrorCategory.SERVER: "GitHub is having trouble. Try again later.",
    ApiErrorCategory.UNKNOWN: "The GitHub request failed.",
}


@dataclass(frozen=True)
class RateLimitInfo:
    """Quota state reported by the API on the most recent response."""

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None
    retry_after: Optional[int] = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0 or self.retry_after is not None

    def seconds_until_reset(self, now: Optional[datetime] = None) -> Optional[int]:
        """Seconds until the quota resets, for a countdown display."""
        if self.retry_after is not None:
            return self.retry_after
        if self.reset_at is None:
            return None
        now = now or datetime.now(self.reset_at.tzinfo)
        return max(0, int((self.reset_at - now).total_seconds()))


class RepoBarError(Exception):
    """Base class for all classified engine errors."""

    category: ErrorCategory

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvocationError(RepoBarError):
    """External tool missing or exited non-zero."""

    category = ErrorCategory.INVOCATION

    def __init__(self, command: Sequence[str], exit_code: int, stderr: str) -> None:
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit code {exit_code}"
        super().__init__(f"{' '.join(self.command)}: {detail}")


class ValidationError(RepoBarError):
    """A local precondition was not met; nothing was sent to the tool or API."""

    category = ErrorCategory.VALIDATION


class AuthError(RepoBarError):
    """Device-flow failure classified by kind."""

    category = ErrorCategory.AUTH

    def __init__(self, kind: AuthErrorKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail
        message = AUTH_ERROR_MESSAGES[kind]
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ApiError(RepoBarError):
    """Issue-tracker API failure mapped to a user-facing category."""

    category = ErrorCategory.API

    def __init__(
        self,
        api_category: ApiErrorCategory,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        rate_limit: Optional[RateLimitInfo] = None,
    ) -> None:
        self.api_category = api_category
        self.status_code = status_code
        self.detail = detail
        self.rate_limit = rate_limit
        message = API_ERROR_MESSAGES[api_category]
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
