"""
GitHub OAuth Authentication Module

Handles GitHub sign-in including:
- Device authorization grant state machine
- Token storage in the OS credential store
"""

from repobar.services.github.auth.credential_store import CredentialStore, KeyringCredentialStore
from repobar.services.github.auth.device_flow import AuthSession

__all__ = [
    "AuthSession",
    "CredentialStore",
    "KeyringCredentialStore",
]
