"""
Backend Module for ChirpNest

This module handles every call to the hosted Supabase project: table queries
and mutations through PostgREST, realtime channels, and auth. Library errors
are translated into ChirpNest exceptions here so the services never depend on
the client library directly.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from postgrest.types import ReturnMethod
from supabase import AsyncClient, acreate_client

from config import settings
from data.models import ChangeEvent, Identity
from utils.exceptions import (
    AuthenticationError, BackendConnectionError, MutationError, QueryError, RecordValidationError
)
from utils.logger import get_logger

logger = get_logger(__name__)


def _error_text(error: Exception) -> str:
    return getattr(error, "message", None) or str(error)


def _identity_from_session(session: Any) -> Optional[Identity]:
    user = getattr(session, "user", None) if session else None
    return Identity.from_user(user) if user else None


class SupabaseBackend:
    """Gateway to the hosted data, auth and realtime backend."""

    def __init__(self, client: Optional[AsyncClient] = None):
        """
        Initialize the backend gateway.

        Args:
            client: An already created async client. When omitted, connect()
                creates one from SUPABASE_URL and SUPABASE_KEY.
        """
        self.client = client

    async def connect(self) -> bool:
        """
        Create the async client.

        Returns:
            bool: True if the client is ready, False otherwise.
        """
        if self.client is not None:
            return True

        try:
            self.client = await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
            logger.info("Successfully connected to backend")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to backend: {e}")
            self.client = None
            return False

    async def close(self) -> None:
        """Release every realtime channel and drop the client."""
        if self.client is None:
            return
        try:
            await self.client.remove_all_channels()
            logger.info("Backend connection closed")
        except Exception as e:
            logger.error(f"Error closing backend connection: {e}")
        finally:
            self.client = None

    def _require_client(self) -> AsyncClient:
        if self.client is None:
            raise BackendConnectionError("Backend client is not connected")
        return self.client

    async def _execute(self, builder: Any, action: str, error_cls: type = QueryError) -> Any:
        """
        Execute a PostgREST request builder.

        Args:
            builder: The request builder to execute.
            action: Short description used in log and error messages.
            error_cls: Exception raised when the backend rejects the request.

        Returns:
            The API response (may be None for maybe_single() with no row).
        """
        try:
            return await builder.execute()
        except APIError as e:
            logger.error(f"Error {action}: {_error_text(e)}")
            raise error_cls(f"Error {action}: {_error_text(e)}") from e
        except httpx.HTTPError as e:
            logger.error(f"Network error {action}: {e}")
            raise BackendConnectionError(f"Network error {action}: {e}") from e

    # =========================================================================
    # Posts
    # =========================================================================

    async def fetch_posts_page(
        self,
        offset: int,
        limit: int,
        author_ids: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of posts, newest first.

        Args:
            offset: Index of the first post.
            limit: Page size.
            author_ids: Restrict to these authors; an empty sequence yields no posts.

        Returns:
            List of raw post records with joined author fields.
        """
        if author_ids is not None and len(author_ids) == 0:
            return []

        client = self._require_client()
        query = (
            client.table(settings.POSTS_TABLE)
            .select(settings.POST_SELECT)
            .order("created_at", desc=True)
        )
        if author_ids is not None:
            query = query.in_("user_id", list(author_ids))

        response = await self._execute(query.range(offset, offset + limit - 1), "fetching posts")
        return response.data or []

    async def fetch_saved_posts_page(self, user_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        """
        Fetch posts a viewer saved, most recently saved first.

        Saved rows whose post no longer exists are skipped.
        """
        client = self._require_client()
        query = (
            client.table(settings.SAVED_POSTS_TABLE)
            .select(settings.SAVED_POST_SELECT)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
        )
        response = await self._execute(query, "fetching saved posts")
        return [row["posts"] for row in (response.data or []) if row.get("posts")]

    async def fetch_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one post with its author fields, or None if it does not exist."""
        client = self._require_client()
        query = (
            client.table(settings.POSTS_TABLE)
            .select(settings.POST_SELECT)
            .eq("id", post_id)
            .maybe_single()
        )
        response = await self._execute(query, f"fetching post {post_id}")
        return response.data if response is not None else None

    async def insert_post(self, user_id: str, content: str) -> None:
        client = self._require_client()
        query = client.table(settings.POSTS_TABLE).insert({"content": content, "user_id": user_id})
        await self._execute(query, "inserting post", MutationError)
        logger.info(f"Inserted post for user {user_id}")

    async def delete_post(self, post_id: str) -> None:
        client = self._require_client()
        query = client.table(settings.POSTS_TABLE).delete().eq("id", post_id)
        await self._execute(query, f"deleting post {post_id}", MutationError)
        logger.info(f"Deleted post {post_id}")

    async def fetch_followed_ids(self, user_id: str) -> List[str]:
        client = self._require_client()
        query = client.table(settings.FOLLOWS_TABLE).select("followed_id").eq("follower_id", user_id)
        response = await self._execute(query, "fetching followed authors")
        return [row["followed_id"] for row in (response.data or [])]

    # =========================================================================
    # Memberships
    # =========================================================================

    async def _fetch_membership_ids(self, table: str, user_id: str) -> List[str]:
        client = self._require_client()
        query = client.table(table).select("post_id").eq("user_id", user_id)
        response = await self._execute(query, f"fetching {table}")
        return [row["post_id"] for row in (response.data or [])]

    async def fetch_liked_post_ids(self, user_id: str) -> List[str]:
        return await self._fetch_membership_ids(settings.LIKES_TABLE, user_id)

    async def fetch_saved_post_ids(self, user_id: str) -> List[str]:
        return await self._fetch_membership_ids(settings.SAVED_POSTS_TABLE, user_id)

    async def insert_like(self, user_id: str, post_id: str) -> None:
        client = self._require_client()
        query = client.table(settings.LIKES_TABLE).insert({"user_id": user_id, "post_id": post_id})
        await self._execute(query, f"liking post {post_id}", MutationError)

    async def delete_like(self, user_id: str, post_id: str) -> None:
        client = self._require_client()
        query = client.table(settings.LIKES_TABLE).delete().match({"user_id": user_id, "post_id": post_id})
        await self._execute(query, f"unliking post {post_id}", MutationError)

    async def insert_save(self, user_id: str, post_id: str) -> None:
        client = self._require_client()
        query = client.table(settings.SAVED_POSTS_TABLE).insert({"user_id": user_id, "post_id": post_id})
        await self._execute(query, f"saving post {post_id}", MutationError)

    async def delete_save(self, user_id: str, post_id: str) -> None:
        client = self._require_client()
        query = client.table(settings.SAVED_POSTS_TABLE).delete().match({"user_id": user_id, "post_id": post_id})
        await self._execute(query, f"unsaving post {post_id}", MutationError)

    # =========================================================================
    # Profiles
    # =========================================================================

    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        client = self._require_client()
        query = client.table(settings.PROFILES_TABLE).select("*").eq("id", user_id).maybe_single()
        response = await self._execute(query, f"fetching profile {user_id}")
        return response.data if response is not None else None

    async def insert_profile(self, profile: Dict[str, Any]) -> None:
        client = self._require_client()
        query = client.table(settings.PROFILES_TABLE).insert(profile, returning=ReturnMethod.minimal)
        await self._execute(query, "inserting profile", MutationError)

    async def username_taken(self, username: str) -> bool:
        client = self._require_client()
        query = client.table(settings.USERS_TABLE).select("id").eq("username", username).maybe_single()
        response = await self._execute(query, "checking username")
        return bool(response is not None and response.data)

    # =========================================================================
    # Realtime
    # =========================================================================

    async def subscribe_to_table(
        self,
        channel_name: str,
        table: str,
        handler: Callable[[ChangeEvent], None]
    ) -> Any:
        """
        Open a realtime channel for INSERT, UPDATE and DELETE events on a table.

        Args:
            channel_name: Name of the channel to open.
            table: Table whose changes are delivered.
            handler: Called on the event loop with each normalized ChangeEvent.

        Returns:
            The channel, to be passed to unsubscribe().
        """
        client = self._require_client()
        channel = client.channel(channel_name)

        def _dispatcher(event_type: str) -> Callable[[Dict[str, Any]], None]:
            def _dispatch(payload: Dict[str, Any]) -> None:
                try:
                    event = ChangeEvent.from_payload(payload, default_type=event_type)
                except RecordValidationError as e:
                    logger.warning(f"Ignoring malformed realtime payload on {table}: {e}")
                    return
                handler(event)
            return _dispatch

        for event_type in ("INSERT", "UPDATE", "DELETE"):
            channel.on_postgres_changes(
                event_type,
                callback=_dispatcher(event_type),
                table=table,
                schema=settings.REALTIME_SCHEMA,
            )

        try:
            await channel.subscribe()
        except Exception as e:
            logger.error(f"Failed to subscribe to channel {channel_name}: {e}")
            raise BackendConnectionError(f"Failed to subscribe to channel {channel_name}: {e}") from e

        logger.info(f"Subscribed to realtime channel {channel_name} ({table})")
        return channel

    async def unsubscribe(self, subscription: Any) -> None:
        if self.client is None or subscription is None:
            return
        try:
            await self.client.remove_channel(subscription)
            logger.info("Realtime channel released")
        except Exception as e:
            logger.error(f"Error releasing realtime channel: {e}")

    # =========================================================================
    # Auth
    # =========================================================================

    async def get_session_identity(self) -> Optional[Identity]:
        client = self._require_client()
        try:
            session = await client.auth.get_session()
        except Exception as e:
            raise AuthenticationError(f"Failed to read session: {e}") from e
        return _identity_from_session(session)

    def on_auth_state_change(self, handler: Callable[[str, Optional[Identity]], None]) -> Callable[[], None]:
        """
        Forward auth state changes as (event, identity) pairs.

        Returns:
            A function that removes the listener.
        """
        client = self._require_client()

        def _callback(event: Any, session: Any) -> None:
            handler(str(event), _identity_from_session(session))

        subscription = client.auth.on_auth_state_change(_callback)
        return subscription.unsubscribe

    async def sign_in_with_password(self, email: str, password: str) -> Optional[Identity]:
        client = self._require_client()
        try:
            response = await client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            raise AuthenticationError(_error_text(e)) from e
        user = getattr(response, "user", None)
        return Identity.from_user(user) if user else None

    async def sign_up(self, email: str, password: str, username: str) -> Optional[Identity]:
        client = self._require_client()
        try:
            response = await client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": {"username": username}},
            })
        except Exception as e:
            raise AuthenticationError(_error_text(e)) from e
        user = getattr(response, "user", None)
        return Identity.from_user(user) if user else None

    async def sign_in_with_oauth(self, provider: str) -> str:
        client = self._require_client()
        try:
            response = await client.auth.sign_in_with_oauth({"provider": provider})
        except Exception as e:
            raise AuthenticationError(_error_text(e)) from e
        return response.url

    async def sign_out(self) -> None:
        client = self._require_client()
        try:
            await client.auth.sign_out()
        except Exception as e:
            raise AuthenticationError(_error_text(e)) from e
