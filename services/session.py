"""
Session Resolver Module

Tracks who is signed in for the lifetime of the application. The state moves
from ``unknown`` to ``loading`` and then settles on ``authenticated`` or
``anonymous``; every auth state change from the backend updates it again.
"""

from enum import Enum
from typing import Callable, List, Optional

from data.models import Identity
from data.protocols import AuthBackend
from utils.exceptions import ChirpNestError
from utils.logger import get_logger

logger = get_logger(__name__)

IdentityListener = Callable[[Optional[Identity]], None]


class SessionState(str, Enum):
    UNKNOWN = "unknown"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class SessionResolver:
    """Exposes the current Identity and a loading flag."""

    def __init__(self, backend: AuthBackend):
        self._backend = backend
        self.state = SessionState.UNKNOWN
        self.identity: Optional[Identity] = None
        self._listeners: List[IdentityListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def loading(self) -> bool:
        return self.state in (SessionState.UNKNOWN, SessionState.LOADING)

    @property
    def authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """
        Call listener with the new Identity (or None) whenever it changes.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def start(self) -> Optional[Identity]:
        """
        Read the current session and start following auth changes.

        A failed session read is treated as anonymous.

        Returns:
            The current Identity, or None.
        """
        self.state = SessionState.LOADING

        if self._unsubscribe is None:
            self._unsubscribe = self._backend.on_auth_state_change(self._on_auth_change)

        try:
            identity = await self._backend.get_session_identity()
        except ChirpNestError as e:
            logger.error(f"Failed to read session, continuing anonymously: {e}")
            identity = None

        # An auth event may already have settled the state while we waited.
        if self.state == SessionState.LOADING:
            self.update(identity)
        return self.identity

    def stop(self) -> None:
        """Stop following auth changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_auth_change(self, event: str, identity: Optional[Identity]) -> None:
        logger.debug(f"Auth state changed: {event}")
        self.update(identity)

    def update(self, identity: Optional[Identity]) -> None:
        """Settle on identity and notify listeners if it changed."""
        changed = identity != self.identity or self.loading
        self.identity = identity
        self.state = SessionState.AUTHENTICATED if identity else SessionState.ANONYMOUS
        if not changed:
            return

        if identity:
            logger.info(f"Signed in as {identity.email or identity.id}")
        else:
            logger.info("No active session")
        for listener in list(self._listeners):
            listener(identity)
