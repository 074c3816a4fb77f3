"""
Feed Store Module

This module holds the in-memory state behind a timeline: the ordered,
deduplicated list of posts, the pagination cursor, and the viewer's like and
save memberships. It exposes the intents the views issue (load, like, save,
delete) and the entry points the realtime reconciler uses.
"""

import itertools
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from config import settings
from data.models import FeedSource, Identity, Post, parse_posts
from data.protocols import PostBackend
from services.merge import BACK, FRONT, deduplicate, merge_deduplicated, remove_post, upsert_front
from utils.exceptions import AuthenticationError, ChirpNestError, RecordValidationError
from utils.logger import get_logger
from utils.notifier import Notifier

logger = get_logger(__name__)

MembershipCall = Callable[[str, str], Awaitable[None]]


class FeedStore:
    """
    Owner of one feed's post list and the viewer's memberships.

    Every first-page request takes a new generation number; a response is
    applied only if its generation is still the latest, so a slow old
    response can never overwrite a newer one.
    """

    def __init__(
        self,
        backend: PostBackend,
        notifier: Optional[Notifier] = None,
        source: FeedSource = FeedSource.EVERYONE,
        identity: Optional[Identity] = None,
        page_size: Optional[int] = None
    ):
        """
        Initialize an empty feed.

        Args:
            backend: Query and mutation gateway.
            notifier: Sink for transient user messages.
            source: Which posts this feed shows.
            identity: The signed-in viewer, if any.
            page_size: Override for the per-source default page size.
        """
        self._backend = backend
        self._notifier = notifier or Notifier()
        self.source = FeedSource(source)
        self.identity = identity
        self._page_size = page_size

        self.posts: List[Post] = []
        self.page = 0
        self.loading = False
        self.has_more = True
        self.error: Optional[str] = None

        self.liked_post_ids: Set[str] = set()
        self.saved_post_ids: Set[str] = set()

        self._generation = 0
        self._author_ids: Optional[List[str]] = None
        self._op_ids = itertools.count(1)
        self._pending: Dict[Tuple[str, str], int] = {}

    @property
    def page_size(self) -> int:
        if self._page_size:
            return self._page_size
        if self.source == FeedSource.MINE:
            return settings.MY_POSTS_PAGE_SIZE
        if self.source == FeedSource.SAVED:
            return settings.SAVED_POSTS_PAGE_SIZE
        return settings.FEED_PAGE_SIZE

    @property
    def generation(self) -> int:
        return self._generation

    def is_liked(self, post_id: str) -> bool:
        return post_id in self.liked_post_ids

    def is_saved(self, post_id: str) -> bool:
        return post_id in self.saved_post_ids

    def can_delete(self, post: Post) -> bool:
        return self.identity is not None and post.user_id == self.identity.id

    # =========================================================================
    # Source / identity changes
    # =========================================================================

    def set_source(self, source: FeedSource) -> None:
        """
        Switch the feed filter and forget the current list.

        Any in-flight page response is discarded. The caller is expected to
        load the first page again and re-subscribe realtime updates.
        """
        self.source = FeedSource(source)
        self._reset()
        logger.info(f"Feed source set to {self.source.value}")

    def set_identity(self, identity: Optional[Identity]) -> None:
        """Switch viewer; list and memberships are cleared."""
        if identity == self.identity:
            return
        self.identity = identity
        self.liked_post_ids.clear()
        self.saved_post_ids.clear()
        self._pending.clear()
        self._reset()

    def _reset(self) -> None:
        self._generation += 1
        self.posts = []
        self.page = 0
        self.loading = False
        self.has_more = True
        self.error = None
        self._author_ids = None

    # =========================================================================
    # Pagination
    # =========================================================================

    async def _fetch_page(self, offset: int) -> List[Post]:
        """Fetch and validate one page for the current source."""
        if self.source == FeedSource.EVERYONE:
            rows = await self._backend.fetch_posts_page(offset, self.page_size)
            return parse_posts(rows)

        if self.identity is None:
            raise AuthenticationError(f"Sign in to view the {self.source.value} feed")

        if self.source == FeedSource.FOLLOWING:
            if offset == 0 or self._author_ids is None:
                self._author_ids = await self._backend.fetch_followed_ids(self.identity.id)
            rows = await self._backend.fetch_posts_page(offset, self.page_size, author_ids=self._author_ids)
        elif self.source == FeedSource.MINE:
            rows = await self._backend.fetch_posts_page(offset, self.page_size, author_ids=[self.identity.id])
        else:
            rows = await self._backend.fetch_saved_posts_page(self.identity.id, offset, self.page_size)

        return parse_posts(rows)

    async def load_first_page(self) -> bool:
        """
        Load page 0 and replace the whole list with it.

        A fresh load always proceeds, even if another load is in flight. A
        failed load stops pagination until the next successful first page.

        Returns:
            bool: True if the response was applied, False if it failed or was stale.
        """
        self._generation += 1
        generation = self._generation
        self.loading = True
        self.error = None

        try:
            posts = await self._fetch_page(0)
        except ChirpNestError as e:
            logger.error(f"Error loading {self.source.value} feed: {e}")
            if generation == self._generation:
                self.error = str(e)
                self.loading = False
                self.has_more = False
            return False

        if generation != self._generation:
            logger.debug(f"Discarding stale first page (generation {generation}, latest {self._generation})")
            return False

        self.posts = deduplicate(posts)
        self.page = 0
        self.has_more = len(posts) == self.page_size
        self.loading = False
        logger.info(f"Loaded {len(self.posts)} posts for {self.source.value} feed")
        return True

    async def load_next_page(self) -> bool:
        """
        Append the next page.

        No-op while a load is in flight or when no more pages exist. The
        cursor only advances when the page added posts not already listed.

        Returns:
            bool: True if a page was fetched and applied.
        """
        if self.loading or not self.has_more:
            return False

        generation = self._generation
        self.loading = True
        offset = (self.page + 1) * self.page_size

        try:
            posts = await self._fetch_page(offset)
        except RecordValidationError as e:
            logger.error(f"Discarding invalid page at offset {offset}: {e}")
            if generation == self._generation:
                self.error = str(e)
                self.loading = False
            return False
        except ChirpNestError as e:
            logger.error(f"Pagination error at offset {offset}: {e}")
            if generation == self._generation:
                self.loading = False
            return False

        if generation != self._generation:
            logger.debug(f"Discarding stale page at offset {offset}")
            return False

        before = len(self.posts)
        self.posts = merge_deduplicated(self.posts, posts, BACK)
        if len(self.posts) > before:
            self.page += 1
        if len(posts) < self.page_size:
            self.has_more = False
        self.loading = False
        return True

    async def refresh(self) -> bool:
        """Reload page 0 and the viewer's memberships."""
        loaded = await self.load_first_page()
        await self.load_memberships()
        return loaded

    # =========================================================================
    # Memberships
    # =========================================================================

    async def load_memberships(self) -> bool:
        """Replace the like and save sets with what the backend holds."""
        if self.identity is None:
            self.liked_post_ids.clear()
            self.saved_post_ids.clear()
            return False

        try:
            liked = await self._backend.fetch_liked_post_ids(self.identity.id)
            saved = await self._backend.fetch_saved_post_ids(self.identity.id)
        except ChirpNestError as e:
            logger.error(f"Error loading memberships: {e}")
            return False

        self.liked_post_ids.clear()
        self.liked_post_ids.update(liked)
        self.saved_post_ids.clear()
        self.saved_post_ids.update(saved)
        return True

    async def toggle_like(self, post_id: str) -> bool:
        return await self._toggle_membership(
            "like", self.liked_post_ids, post_id, self._backend.insert_like, self._backend.delete_like
        )

    async def toggle_save(self, post_id: str) -> bool:
        return await self._toggle_membership(
            "save", self.saved_post_ids, post_id, self._backend.insert_save, self._backend.delete_save
        )

    async def _toggle_membership(
        self,
        kind: str,
        members: Set[str],
        post_id: str,
        insert: MembershipCall,
        delete: MembershipCall
    ) -> bool:
        """
        Flip a membership immediately, then write it to the backend.

        The flip is tagged with an operation id. If the write fails and no
        later toggle of the same post has happened since, the flip is undone.
        """
        if self.identity is None:
            self._notifier.error(f"Sign in to {kind} posts")
            return False

        was_member = post_id in members
        verb = f"un{kind}" if was_member else kind
        key = (kind, post_id)
        op_id = next(self._op_ids)
        self._pending[key] = op_id
        self._set_membership(members, post_id, not was_member)

        try:
            if was_member:
                await delete(self.identity.id, post_id)
            else:
                await insert(self.identity.id, post_id)
        except ChirpNestError as e:
            logger.error(f"Failed to {verb} post {post_id}: {e}")
            if self._pending.get(key) == op_id:
                self._set_membership(members, post_id, was_member)
            self._notifier.error(f"Failed to {verb} post")
            return False
        finally:
            if self._pending.get(key) == op_id:
                del self._pending[key]

        if kind == "save" and self.source == FeedSource.SAVED and post_id not in members:
            self.apply_delete(post_id)
        return True

    @staticmethod
    def _set_membership(members: Set[str], post_id: str, present: bool) -> None:
        if present:
            members.add(post_id)
        else:
            members.discard(post_id)

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_post(self, post_id: str) -> bool:
        """
        Delete a post on the backend, then drop it from the list.

        The realtime delete that follows finds nothing to remove.
        """
        try:
            await self._backend.delete_post(post_id)
        except ChirpNestError as e:
            logger.error(f"Failed to delete post {post_id}: {e}")
            self._notifier.error("Failed to delete post")
            return False

        self.apply_delete(post_id)
        self._notifier.success("Post deleted")
        return True

    # =========================================================================
    # Realtime entry points
    # =========================================================================

    def accepts(self, post: Post) -> bool:
        """Whether a post delivered by realtime belongs in this feed."""
        if self.source == FeedSource.EVERYONE:
            return True
        if self.identity is None:
            return False
        if self.source == FeedSource.FOLLOWING:
            return post.user_id in (self._author_ids or [])
        if self.source == FeedSource.MINE:
            return post.user_id == self.identity.id
        return post.id in self.saved_post_ids

    def apply_insert(self, post: Post) -> None:
        self.posts = merge_deduplicated(self.posts, [post], FRONT)

    def apply_update(self, post: Post) -> None:
        """Replace a post with its new version, moved to the front."""
        self.posts = upsert_front(self.posts, post)

    def apply_delete(self, post_id: str) -> bool:
        """Remove a post; returns False when it was not listed."""
        before = len(self.posts)
        self.posts = remove_post(self.posts, post_id)
        return len(self.posts) != before
