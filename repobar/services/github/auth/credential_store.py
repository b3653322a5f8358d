"""
Secure storage for the GitHub access token.

Exactly one secret lives in the OS credential store, keyed by a fixed
service/account pair. Only the AuthSession writes or deletes it.
"""

import logging
from typing import Optional, Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from common.config.config import KEYRING_ACCOUNT, KEYRING_SERVICE

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """The credential store could not be read or written."""


class CredentialStore(Protocol):
    def get_token(self) -> Optional[str]: ...

    def set_token(self, token: str) -> None: ...

    def delete_token(self) -> None: ...


class KeyringCredentialStore:
    """Token storage backed by the ``keyring`` package."""

    def __init__(self, service: str = KEYRING_SERVICE, account: str = KEYRING_ACCOUNT):
        self.service = service
        self.account = account

    def get_token(self) -> Optional[str]:
        try:
            token = keyring.get_password(self.service, self.account)
        except KeyringError as e:
            logger.warning(f"Could not read token from credential store: {e}")
            return None
        return token.strip() if token and token.strip() else None

    def set_token(self, token: str) -> None:
        token = token.strip()
        if not token:
            raise ValueError("Token is empty.")
        try:
            keyring.set_password(self.service, self.account, token)
        except KeyringError as e:
            raise CredentialStoreError(f"Could not save token: {e}") from e
        logger.info(f"Stored GitHub token in credential store ({self.service})")

    def delete_token(self) -> None:
        try:
            keyring.delete_password(self.service, self.account)
        except PasswordDeleteError:
            logger.debug("No stored token to delete")
        except KeyringError as e:
            raise CredentialStoreError(f"Could not delete token: {e}") from e
        else:
            logger.info("Deleted GitHub token from credential store")
