"""Visitor and session identity tokens.

A visitor id identifies one browser/device across sessions and is stored in
the durable backend without expiry. A session id identifies one browsing
session and lives in a session-scoped backend with a TTL. Both are opaque:
nothing downstream parses them.
"""

from __future__ import annotations

import logging
import secrets
import time

from pagelab.state_backend import StateBackend

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_token(prefix: str) -> str:
    """Return ``{prefix}_{epoch_ms}_{9 base36 chars}``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class IdentityProvider:
    """Create-once, read-many identity tokens backed by key-value storage.

    Args:
        durable: Backend that outlives sessions (visitor id).
        session: Backend scoped to one session (session id).
        visitor_key: Storage key for the visitor id.
        session_key: Storage key for the session id.
        session_ttl: Seconds before an unused session id expires.
    """

    def __init__(
        self,
        durable: StateBackend,
        session: StateBackend,
        *,
        visitor_key: str,
        session_key: str,
        session_ttl: int | None = None,
    ) -> None:
        self._durable = durable
        self._session = session
        self._visitor_key = visitor_key
        self._session_key = session_key
        self._session_ttl = session_ttl
        self._visitor_id: str | None = None
        self._session_id: str | None = None

    @property
    def visitor_id(self) -> str:
        if self._visitor_id is None:
            self._visitor_id = self._get_or_create(
                self._durable, self._visitor_key, "v", ttl=None,
            )
        return self._visitor_id

    @property
    def session_id(self) -> str:
        if self._session_id is None:
            self._session_id = self._get_or_create(
                self._session, self._session_key, "s", ttl=self._session_ttl,
            )
        return self._session_id

    @staticmethod
    def _get_or_create(
        backend: StateBackend, key: str, prefix: str, *, ttl: int | None,
    ) -> str:
        try:
            existing = backend.get(key)
        except Exception:
            logger.warning("Identity read failed for %s; using a fresh id", key, exc_info=True)
            existing = None
        if existing:
            return existing

        token = new_token(prefix)
        try:
            backend.set(key, token, ttl=ttl)
        except Exception:
            # The id still works for this page life; it just won't survive it.
            logger.warning("Identity write failed for %s", key, exc_info=True)
        return token
