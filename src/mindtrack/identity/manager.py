"""
Module: manager.py
Description: Identity and session management.

Assigns a long-lived user identifier kept in the long-lived store and a
session identifier kept in the session-scoped store. Clearing the
session store starts a new session; the user identifier survives.

Key Components:
- generate_token(): '<prefix>_<millis>_<hex>' opaque tokens
- IdentityManager: ensure_user_id() / ensure_session_id()
"""

import random
import secrets
from typing import Callable, Optional

from mindtrack.storage.kv import KeyValueStore, StorageKeys
from mindtrack.utils.clock import now_millis
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)

USER_PREFIX = "user"
SESSION_PREFIX = "sess"
USER_RANDOM_LENGTH = 8
SESSION_RANDOM_LENGTH = 6


def _random_hex(length: int) -> str:
    try:
        return secrets.token_hex((length + 1) // 2)[:length]
    except NotImplementedError:
        # No OS randomness source; uniqueness is advisory only
        return "".join(random.choice("0123456789abcdef") for _ in range(length))


def generate_token(prefix: str, length: int, millis: Optional[int] = None) -> str:
    """
    Generate an opaque identifier.

    Args:
        prefix: Token prefix ('user', 'sess')
        length: Number of random hex characters
        millis: Timestamp component, defaults to now

    Returns:
        Token such as 'user_1700000000000_9f86d081'
    """
    if not prefix:
        raise ValueError("prefix must be a non-empty string")
    if length <= 0:
        raise ValueError("length must be positive")
    stamp = now_millis() if millis is None else millis
    return f"{prefix}_{stamp}_{_random_hex(length)}"


class IdentityManager:
    """
    Assigns and persists user and session identifiers.

    Identifiers are cached after the first lookup, so a store that fails
    to persist a new identifier still yields a stable value for the
    lifetime of this manager.
    """

    def __init__(
        self,
        store: KeyValueStore,
        session_store: KeyValueStore,
        token_factory: Callable[[str, int], str] = generate_token,
    ):
        self.store = store
        self.session_store = session_store
        self._token_factory = token_factory
        self._user_id: Optional[str] = None
        self._session_id: Optional[str] = None

    def _ensure(self, store: KeyValueStore, key: str, prefix: str, length: int) -> str:
        try:
            existing = store.get(key)
        except Exception as e:
            logger.warning("Failed to read identifier", key=key, error=str(e))
            existing = None

        if existing:
            return existing

        token = self._token_factory(prefix, length)
        try:
            store.set(key, token)
            logger.info("Identifier created", key=key, identifier=token)
        except Exception as e:
            logger.warning(
                "Failed to persist identifier",
                key=key,
                error=str(e),
                error_type=type(e).__name__
            )
        return token

    def ensure_user_id(self) -> str:
        """Return the user identifier, creating it on first use."""
        if self._user_id is None:
            self._user_id = self._ensure(
                self.store, StorageKeys.USER_ID, USER_PREFIX, USER_RANDOM_LENGTH
            )
        return self._user_id

    def ensure_session_id(self) -> str:
        """Return the session identifier, creating it for a new session."""
        if self._session_id is None:
            self._session_id = self._ensure(
                self.session_store, StorageKeys.SESSION_ID, SESSION_PREFIX, SESSION_RANDOM_LENGTH
            )
        return self._session_id

    def reset_session(self) -> str:
        """Forget the cached session identifier and resolve it again."""
        self._session_id = None
        return self.ensure_session_id()
