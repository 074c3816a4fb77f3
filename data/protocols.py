"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for backend operations.
These protocols enable dependency injection for the hosted backend,
making the feed, session and profile services testable without a real
Supabase project.

Protocols defined:
- PostBackend: Queries and mutations on posts and memberships
- RealtimeBackend: Change-stream subscriptions
- AuthBackend: Session and sign-in operations
"""

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from data.models import ChangeEvent, Identity


class PostBackend(Protocol):
    """Protocol defining the interface for post, membership and profile storage.

    Methods raise subclasses of BackendError on failure and return raw
    record dictionaries; validation is the caller's job.
    """

    async def fetch_posts_page(
        self,
        offset: int,
        limit: int,
        author_ids: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch posts newest first, optionally restricted to some authors."""
        ...

    async def fetch_saved_posts_page(self, user_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        """Fetch posts saved by a viewer, most recently saved first."""
        ...

    async def fetch_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one post with its author fields, or None if it does not exist."""
        ...

    async def fetch_followed_ids(self, user_id: str) -> List[str]:
        """Fetch the ids of authors a viewer follows."""
        ...

    async def fetch_liked_post_ids(self, user_id: str) -> List[str]:
        ...

    async def fetch_saved_post_ids(self, user_id: str) -> List[str]:
        ...

    async def insert_post(self, user_id: str, content: str) -> None:
        ...

    async def delete_post(self, post_id: str) -> None:
        ...

    async def insert_like(self, user_id: str, post_id: str) -> None:
        ...

    async def delete_like(self, user_id: str, post_id: str) -> None:
        ...

    async def insert_save(self, user_id: str, post_id: str) -> None:
        ...

    async def delete_save(self, user_id: str, post_id: str) -> None:
        ...

    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def insert_profile(self, profile: Dict[str, Any]) -> None:
        ...

    async def username_taken(self, username: str) -> bool:
        ...


class RealtimeBackend(Protocol):
    """Protocol for subscribing to table change notifications."""

    async def subscribe_to_table(
        self,
        channel_name: str,
        table: str,
        handler: Callable[[ChangeEvent], None]
    ) -> Any:
        """Open a channel delivering INSERT/UPDATE/DELETE events to handler.

        Returns:
            An opaque subscription handle for unsubscribe().
        """
        ...

    async def unsubscribe(self, subscription: Any) -> None:
        ...


class AuthBackend(Protocol):
    """Protocol for the hosted auth service."""

    async def get_session_identity(self) -> Optional[Identity]:
        ...

    def on_auth_state_change(self, handler: Callable[[str, Optional[Identity]], None]) -> Callable[[], None]:
        """Register handler(event, identity); returns an unsubscribe function."""
        ...

    async def sign_in_with_password(self, email: str, password: str) -> Optional[Identity]:
        ...

    async def sign_up(self, email: str, password: str, username: str) -> Optional[Identity]:
        ...

    async def sign_in_with_oauth(self, provider: str) -> str:
        """Start a third-party sign in; returns the authorization URL."""
        ...

    async def sign_out(self) -> None:
        ...


class FeedBackend(PostBackend, RealtimeBackend, Protocol):
    """Everything a feed with live updates needs from the backend."""
    ...
