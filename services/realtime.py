"""
Realtime Reconciler Module

This module subscribes to change notifications for the posts table (and,
for the saved feed, the saved_posts table) and applies them to a FeedStore.
The subscriptions are an explicit resource: activate() acquires them,
deactivate() releases them and cancels any handler still fetching a record.
"""

import asyncio
from typing import Any, Coroutine, Dict, Optional, Set

from config import settings
from data.models import ChangeEvent, ChangeType, FeedSource, Post, parse_post
from data.protocols import FeedBackend
from services.feed_store import FeedStore
from utils.exceptions import ChirpNestError, RecordValidationError
from utils.logger import get_logger
from utils.notifier import Notifier

logger = get_logger(__name__)


class RealtimeReconciler:
    """Merges INSERT, UPDATE and DELETE notifications into a feed."""

    def __init__(
        self,
        backend: FeedBackend,
        store: FeedStore,
        notifier: Optional[Notifier] = None,
        channel_name: Optional[str] = None,
        table: Optional[str] = None
    ):
        """
        Args:
            backend: Query and change-stream gateway.
            store: The feed the events are applied to.
            notifier: Sink for "new post" messages.
            channel_name: Realtime channel; defaults to REALTIME_CHANNEL.
            table: Watched table; defaults to POSTS_TABLE.
        """
        self._backend = backend
        self._store = store
        self._notifier = notifier or Notifier()
        self._channel_name = channel_name or settings.REALTIME_CHANNEL
        self._table = table or settings.POSTS_TABLE
        self._subscription: Any = None
        self._saved_subscription: Any = None
        self._active = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def activate(self) -> bool:
        """
        Open the channel. Calling it while already active does nothing, so a
        feed never receives the same event twice.

        Returns:
            bool: True if the subscription is open.
        """
        if self._active:
            return True

        self._active = True
        try:
            self._subscription = await self._backend.subscribe_to_table(
                self._channel_name, self._table, self._on_change
            )
            if self._store.source == FeedSource.SAVED:
                self._saved_subscription = await self._backend.subscribe_to_table(
                    f"{self._channel_name}-saved", settings.SAVED_POSTS_TABLE, self._on_saved_change
                )
        except ChirpNestError as e:
            logger.error(f"Realtime subscription failed: {e}")
            self._active = False
            if self._subscription is not None:
                await self._backend.unsubscribe(self._subscription)
            self._subscription = None
            return False

        logger.info(f"Realtime updates active for {self._store.source.value} feed")
        return True

    async def deactivate(self) -> None:
        """Release the channel and cancel handlers still in flight."""
        if not self._active:
            return

        self._active = False
        subscription, self._subscription = self._subscription, None
        saved_subscription, self._saved_subscription = self._saved_subscription, None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self._backend.unsubscribe(subscription)
        if saved_subscription is not None:
            await self._backend.unsubscribe(saved_subscription)
        logger.info("Realtime updates stopped")

    async def refresh(self) -> bool:
        """Re-subscribe, e.g. after the feed filter changed."""
        await self.deactivate()
        return await self.activate()

    async def __aenter__(self) -> "RealtimeReconciler":
        await self.activate()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.deactivate()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Realtime handler failed: {error!r}")

    def _on_change(self, event: ChangeEvent) -> None:
        # Called by the realtime client on the event loop.
        if not self._active:
            return
        self._spawn(self.handle_event(event))

    def _on_saved_change(self, event: ChangeEvent) -> None:
        if not self._active:
            return
        self._spawn(self.handle_saved_event(event))

    async def handle_event(self, event: ChangeEvent) -> bool:
        """
        Apply one change event to the feed.

        Fetch and validation failures are logged and the event is dropped.

        Returns:
            bool: True if the feed changed.
        """
        try:
            if event.type == ChangeType.INSERT:
                return await self._handle_insert(event.record)
            if event.type == ChangeType.UPDATE:
                return await self._handle_update(event.record)
            return self._handle_delete(event.old_record)
        except ChirpNestError as e:
            logger.error(f"Dropping realtime {event.type.value} event: {e}")
            return False

    async def handle_saved_event(self, event: ChangeEvent) -> bool:
        """
        Reload the saved feed after the viewer saved or unsaved a post.

        Events for other users are ignored. Delete payloads may carry only the
        row key, so an event without a user id is treated as the viewer's.

        Returns:
            bool: True if the feed was reloaded.
        """
        identity = self._store.identity
        if identity is None:
            return False
        row = event.old_record if event.type == ChangeType.DELETE else event.record
        user_id = row.get("user_id")
        if user_id and str(user_id) != identity.id:
            return False
        return await self._store.refresh()

    async def _fetch_full_post(self, post_id: Any) -> Optional[Post]:
        if not post_id:
            raise RecordValidationError("Change event without a post id")
        data = await self._backend.fetch_post(str(post_id))
        if data is None:
            logger.warning(f"Post {post_id} from realtime event no longer exists")
            return None
        return parse_post(data)

    async def _handle_insert(self, record: Dict[str, Any]) -> bool:
        # Insert payloads lack the joined author fields, so always re-fetch.
        post = await self._fetch_full_post(record.get("id"))
        if post is None or not self._store.accepts(post):
            return False

        self._store.apply_insert(post)
        self._notifier.info("New post received")
        return True

    async def _handle_update(self, record: Dict[str, Any]) -> bool:
        try:
            post = parse_post(record)
        except RecordValidationError:
            post = None

        if post is None or not post.has_author:
            post = await self._fetch_full_post(record.get("id"))
            if post is None:
                return False

        if not self._store.accepts(post):
            return False

        self._store.apply_update(post)
        return True

    def _handle_delete(self, old_record: Dict[str, Any]) -> bool:
        post_id = old_record.get("id")
        if not post_id:
            logger.warning("Delete event without a post id")
            return False
        return self._store.apply_delete(str(post_id))
