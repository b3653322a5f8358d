"""
GitHub OAuth Device Authorization Grant.

Handles the sign-in state machine including:
- Device/user code issuance
- Token polling (pending, slow_down, expiry)
- Token persistence in the credential store and restore at startup
- Profile lookup after sign-in
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from common.config.config import (
    GITHUB_API_URL,
    GITHUB_API_VERSION,
    GITHUB_CLIENT_ID,
    GITHUB_LOGIN_URL,
    GITHUB_OAUTH_SCOPES,
    HTTP_TIMEOUT,
)
from repobar.errors import ApiError, ApiErrorCategory, AuthError, AuthErrorKind
from repobar.events import AuthStateChanged, ObservableModel
from repobar.services.github.api.client import GitHubAPIClient, parse_rate_limit
from repobar.services.github.auth.credential_store import (
    CredentialStore,
    CredentialStoreError,
    KeyringCredentialStore,
)
from repobar.services.github.models.types import AuthState, DeviceCode

logger = logging.getLogger(__name__)

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_INCREMENT = 5  # seconds, RFC 8628 section 3.5

TRANSITIONS = {
    AuthState.IDLE: {AuthState.AWAITING_CODE, AuthState.AUTHENTICATED},
    AuthState.AWAITING_CODE: {AuthState.POLLING, AuthState.ERROR, AuthState.IDLE},
    AuthState.POLLING: {AuthState.AUTHENTICATED, AuthState.ERROR, AuthState.IDLE},
    AuthState.AUTHENTICATED: {AuthState.IDLE},
    AuthState.ERROR: {AuthState.AWAITING_CODE, AuthState.IDLE},
}

OAUTH_ERROR_KINDS = {
    "authorization_pending": AuthErrorKind.AUTHORIZATION_PENDING,
    "slow_down": AuthErrorKind.SLOW_DOWN,
    "expired_token": AuthErrorKind.EXPIRED_TOKEN,
    "access_denied": AuthErrorKind.ACCESS_DENIED,
    "device_flow_disabled": AuthErrorKind.DEVICE_FLOW_DISABLED,
    "incorrect_client_credentials": AuthErrorKind.INVALID_CLIENT,
    "unsupported_grant_type": AuthErrorKind.INVALID_CLIENT,
}

_CLEARED_CODE = dict(device_code="", user_code="", verification_url="", expires_at=None)


def classify_oauth_error(error: str) -> AuthErrorKind:
    return OAUTH_ERROR_KINDS.get(error, AuthErrorKind.UNKNOWN)


class AuthSession(ObservableModel):
    """Device-flow sign-in with a strict state machine.

    The access token never leaves this object except through
    ``bearer_token()``, which API clients use to build their headers. The
    token is non-empty exactly while the state is AUTHENTICATED.
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        client_id: str = GITHUB_CLIENT_ID,
        scopes: str = GITHUB_OAUTH_SCOPES,
        login_url: str = GITHUB_LOGIN_URL,
        api_url: str = GITHUB_API_URL,
        api_version: str = GITHUB_API_VERSION,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize a signed-out session.

        Args:
            store: Credential store for the token (keyring by default)
            client_id: OAuth app client id
            scopes: Space-separated OAuth scopes
            login_url: Base URL of the device-code and token endpoints
            api_url: REST API base URL, used for the profile lookup
            api_version: X-GitHub-Api-Version header value
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        super().__init__()
        self.store = store or KeyringCredentialStore()
        self.client_id = client_id
        self.scopes = scopes
        self.login_url = login_url.rstrip("/")
        self.api_url = api_url
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport

        self.state = AuthState.IDLE
        self.device_code = ""
        self.user_code = ""
        self.verification_url = ""
        self.expires_at: Optional[float] = None
        self.username = ""
        self.avatar_url = ""
        self.error: Optional[AuthError] = None

        self._token = ""
        self._flow_id = 0
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    def bearer_token(self) -> Optional[str]:
        return self._token or None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, new_state: AuthState, token: str = "", **fields: Any) -> None:
        old_state = self.state
        if new_state is not old_state and new_state not in TRANSITIONS[old_state]:
            raise RuntimeError(f"Illegal auth transition {old_state.value} -> {new_state.value}")
        self._token = token if new_state is AuthState.AUTHENTICATED else ""
        self._update(state=new_state, **fields)
        if new_state is not old_state:
            logger.info(f"Auth state {old_state.value} -> {new_state.value}")
            self.emit(AuthStateChanged(self, old_state, new_state))

    def _fail(self, error: AuthError) -> None:
        self._stop_polling()
        self._transition(AuthState.ERROR, error=error, **_CLEARED_CODE)
        self._report_error(error, field="error")

    def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_auth(self) -> bool:
        """Request a device code and start polling in the background.

        Returns:
            True once polling has started
        """
        if self.state not in (AuthState.IDLE, AuthState.ERROR):
            logger.warning(f"start_auth ignored in state {self.state.value}")
            return False

        self._flow_id += 1
        flow_id = self._flow_id
        self._transition(AuthState.AWAITING_CODE, error=None, **_CLEARED_CODE)

        try:
            if not self.client_id:
                raise AuthError(AuthErrorKind.INVALID_CLIENT, "GITHUB_CLIENT_ID is not set")
            code = await self._request_device_code()
        except AuthError as e:
            if flow_id == self._flow_id:
                self._fail(e)
            return False

        if flow_id != self._flow_id:
            return False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + code.expires_in
        self._transition(
            AuthState.POLLING,
            device_code=code.device_code,
            user_code=code.user_code,
            verification_url=code.verification_uri,
            expires_at=deadline,
        )
        logger.info(f"Enter code {code.user_code} at {code.verification_uri}")
        self._poll_task = loop.create_task(self._poll(flow_id, code, deadline))
        return True

    def cancel_auth(self) -> None:
        """Abort a pending flow. Takes effect before this call returns."""
        if self.state not in (AuthState.AWAITING_CODE, AuthState.POLLING):
            return
        self._flow_id += 1
        self._stop_polling()
        self._transition(AuthState.IDLE, **_CLEARED_CODE)

    def logout(self) -> None:
        """Delete the stored token and return to idle from any state."""
        self._flow_id += 1
        self._stop_polling()
        try:
            self.store.delete_token()
        except CredentialStoreError as e:
            logger.error(f"Failed to delete stored token: {e}")
        self._transition(AuthState.IDLE, username="", avatar_url="", error=None, **_CLEARED_CODE)

    async def restore(self) -> bool:
        """Restore a stored token at startup.

        An invalid or revoked token is discarded silently and the state stays
        IDLE; startup never ends in the ERROR state.
        """
        if self.state is not AuthState.IDLE:
            return False
        token = self.store.get_token()
        if not token:
            return False

        flow_id = self._flow_id
        try:
            profile = await self._get_profile(token)
        except ApiError as e:
            if e.api_category is ApiErrorCategory.UNAUTHORIZED:
                logger.info("Stored GitHub token is no longer valid; discarding it")
                try:
                    self.store.delete_token()
                except CredentialStoreError as store_error:
                    logger.warning(f"Could not discard stored token: {store_error}")
            else:
                logger.warning(f"Could not validate stored token, staying signed out: {e}")
            return False

        if flow_id != self._flow_id or self.state is not AuthState.IDLE:
            return False
        self._transition(
            AuthState.AUTHENTICATED,
            token=token,
            username=profile.get("login", ""),
            avatar_url=profile.get("avatar_url") or "",
        )
        return True

    async def wait_for_completion(self) -> AuthState:
        """Wait until the current polling task ends and return the state."""
        task = self._poll_task
        if task is not None:
            await asyncio.wait({task})
        return self.state

    async def close(self) -> None:
        task = self._poll_task
        self._flow_id += 1
        self._stop_polling()
        if task is not None:
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll(self, flow_id: int, code: DeviceCode, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        interval = max(float(code.interval), 0.0)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._fail(AuthError(AuthErrorKind.EXPIRED_TOKEN, "device code expired"))
                return
            await asyncio.sleep(min(interval, remaining))
            if flow_id != self._flow_id:
                return

            try:
                payload = await self._exchange_device_code(code.device_code)
            except AuthError as e:
                if flow_id == self._flow_id:
                    self._fail(e)
                return
            if flow_id != self._flow_id:
                return

            token = payload.get("access_token")
            if token:
                await self._complete(flow_id, token)
                return

            kind = classify_oauth_error(payload.get("error", ""))
            if kind.is_recoverable:
                if kind is AuthErrorKind.SLOW_DOWN:
                    if "interval" in payload:
                        interval = float(payload["interval"])
                    else:
                        interval += SLOW_DOWN_INCREMENT
                    logger.debug(f"Asked to slow down, polling every {interval}s")
                else:
                    logger.debug("Authorization pending")
                continue
            self._fail(AuthError(kind, payload.get("error_description")))
            return

    async def _complete(self, flow_id: int, token: str) -> None:
        try:
            self.store.set_token(token)
        except (CredentialStoreError, ValueError) as e:
            self._fail(AuthError(AuthErrorKind.CREDENTIAL_STORE, str(e)))
            return

        self._transition(AuthState.AUTHENTICATED, token=token, error=None, **_CLEARED_CODE)
        try:
            profile = await self._get_profile(token)
        except ApiError as e:
            logger.warning(f"Signed in but could not load the GitHub profile: {e}")
            return
        if flow_id == self._flow_id and self.is_authenticated:
            self._update(username=profile.get("login", ""), avatar_url=profile.get("avatar_url") or "")
            logger.info(f"Signed in to GitHub as {self.username}")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _post_form(self, path: str, data: Dict[str, str]) -> Dict[str, Any]:
        url = f"{self.login_url}/{path}"
        timeout_config = httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0))
        try:
            async with httpx.AsyncClient(
                timeout=timeout_config, transport=self.transport, trust_env=False
            ) as client:
                response = await client.post(url, data=data, headers={"Accept": "application/json"})
        except httpx.RequestError as e:
            logger.error(f"Network error calling {url}: {e}")
            raise AuthError(AuthErrorKind.NETWORK, str(e) or None) from e

        rate_limit = parse_rate_limit(response.headers)
        if response.status_code == 429 or (response.status_code == 403 and rate_limit.exhausted):
            raise AuthError(AuthErrorKind.RATE_LIMITED)

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if not response.is_success and not payload.get("error"):
            raise AuthError(AuthErrorKind.UNKNOWN, f"HTTP {response.status_code}")
        return payload

    async def _request_device_code(self) -> DeviceCode:
        payload = await self._post_form("device/code", {"client_id": self.client_id, "scope": self.scopes})
        if payload.get("error"):
            raise AuthError(classify_oauth_error(payload["error"]), payload.get("error_description"))
        try:
            return DeviceCode(
                device_code=payload["device_code"],
                user_code=payload["user_code"],
                verification_uri=payload["verification_uri"],
                expires_in=float(payload.get("expires_in", 900)),
                interval=float(payload.get("interval", 5)),
            )
        except KeyError as e:
            raise AuthError(AuthErrorKind.UNKNOWN, f"missing {e.args[0]} in device code response") from e

    async def _exchange_device_code(self, device_code: str) -> Dict[str, Any]:
        return await self._post_form(
            "oauth/access_token",
            {
                "client_id": self.client_id,
                "device_code": device_code,
                "grant_type": DEVICE_GRANT_TYPE,
            },
        )

    async def _get_profile(self, token: str) -> Dict[str, Any]:
        client = GitHubAPIClient(
            lambda: token,
            base_url=self.api_url,
            api_version=self.api_version,
            timeout=self.timeout,
            transport=self.transport,
        )
        profile = await client.get("user")
        return profile if isinstance(profile, dict) else {}
