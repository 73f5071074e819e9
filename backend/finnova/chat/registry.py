"""One chat session manager per signed-in identity."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, Request

from finnova.chat.session import ChatSessionManager
from finnova.identity import Identity

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    """
    Explicit owner of every live `ChatSessionManager`.

    Lives on `app.state`; route handlers receive it through `get_session_registry`.
    A manager lives as long as the newest token seen for its identity. Once that
    token has expired the caller is signed out, so the manager is closed the next
    time the registry is consulted.
    """

    def __init__(
        self,
        manager_factory: Callable[[], ChatSessionManager],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._manager_factory = manager_factory
        self._clock = clock
        self._managers: dict[UUID, ChatSessionManager] = {}
        self._expires_at: dict[UUID, datetime] = {}

    def __len__(self) -> int:
        return len(self._managers)

    def get(self, identity_id: UUID) -> ChatSessionManager | None:
        self._evict_expired()
        return self._managers.get(identity_id)

    async def activate(self, identity: Identity) -> ChatSessionManager:
        """Return the identity's manager, creating and initializing it on first use."""
        self._evict_expired()

        manager = self._managers.get(identity.id)
        if manager is None:
            # Registered before awaiting so concurrent requests share one manager.
            manager = self._manager_factory()
            self._managers[identity.id] = manager
            logger.info("Opening chat session for %s", identity.id)

        if identity.expires_at is not None:
            current = self._expires_at.get(identity.id)
            if current is None or identity.expires_at > current:
                self._expires_at[identity.id] = identity.expires_at

        await manager.set_identity(identity)
        return manager

    async def deactivate(self, identity_id: UUID) -> None:
        self._close(identity_id)

    async def close_all(self) -> None:
        for identity_id in list(self._managers):
            self._close(identity_id)

    def _evict_expired(self) -> None:
        now = self._clock()
        for identity_id, expires_at in list(self._expires_at.items()):
            if expires_at <= now:
                logger.info("Chat session for %s expired with its token", identity_id)
                self._close(identity_id)

    def _close(self, identity_id: UUID) -> None:
        self._expires_at.pop(identity_id, None)
        manager = self._managers.pop(identity_id, None)
        if manager is None:
            return

        logger.info("Closing chat session for %s", identity_id)
        manager.close()


def get_session_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "chat_sessions", None)
    if registry is None:
        raise HTTPException(status_code=500, detail="Chat sessions are not configured")
    return registry
