"""
Configuration module for the repobar engine.

All values are read from the environment (optionally populated from a .env
file). Every setting has a default so the engine can be imported without any
configuration; constructors accept explicit overrides for tests and hosts that
manage several repositories at once.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _get_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise Exception(f"{key} must be a number, got {raw!r}")


def _get_int(key: str, default: int) -> int:
    return int(_get_float(key, default))


# Git / local repository configuration
GIT_BINARY = os.getenv("GIT_BINARY", "git")
GIT_COMMAND_TIMEOUT = _get_float("GIT_COMMAND_TIMEOUT", 60.0)
REFRESH_POLL_INTERVAL = _get_float("REFRESH_POLL_INTERVAL", 5.0)
WATCH_DEBOUNCE_SECONDS = _get_float("WATCH_DEBOUNCE_SECONDS", 0.3)
DIFF_MAX_LINES = _get_int("DIFF_MAX_LINES", 500)

# GitHub Configuration
# OAuth App used for the device authorization grant
GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID", "")
GITHUB_OAUTH_SCOPES = os.getenv("GITHUB_OAUTH_SCOPES", "repo read:user")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_LOGIN_URL = os.getenv("GITHUB_LOGIN_URL", "https://github.com/login")
GITHUB_API_VERSION = os.getenv("GITHUB_API_VERSION", "2022-11-28")
HTTP_TIMEOUT = _get_float("HTTP_TIMEOUT", 30.0)

# Secure credential store key pair (exactly one secret: the access token)
KEYRING_SERVICE = os.getenv("KEYRING_SERVICE", "repobar")
KEYRING_ACCOUNT = os.getenv("KEYRING_ACCOUNT", "github_token")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
APP_LOG_FILE = os.getenv("APP_LOG_FILE")
