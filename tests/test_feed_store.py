"""
Tests for Feed Store

Tests cover first-page and next-page loading, stale response handling,
per-source queries, optimistic like/save toggles with rollback, deletion,
and the realtime entry points.
"""

import asyncio
import random
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.models import FeedSource
from services.feed_store import FeedStore
from utils.exceptions import MutationError, QueryError


def ids(store):
    return [post.id for post in store.posts]


def messages(notifier):
    return [n.message for n in notifier.messages]


@pytest.fixture
def store(mock_backend, notifier):
    return FeedStore(mock_backend, notifier, page_size=5)


@pytest.fixture
def signed_in_store(mock_backend, notifier, identity):
    return FeedStore(mock_backend, notifier, identity=identity, page_size=5)


# =============================================================================
# Pagination
# =============================================================================

class TestPagination:
    """Tests for load_first_page and load_next_page."""

    @pytest.mark.asyncio
    async def test_first_page_replaces_list(self, store, mock_backend, rows_factory):
        """First page fills the list and requests offset 0."""
        mock_backend.fetch_posts_page.return_value = rows_factory(5)

        assert await store.load_first_page() is True

        assert ids(store) == ["p0", "p1", "p2", "p3", "p4"]
        assert store.has_more is True
        assert store.loading is False
        assert store.page == 0
        mock_backend.fetch_posts_page.assert_awaited_once_with(0, 5)

    @pytest.mark.asyncio
    async def test_full_then_short_page(self, store, mock_backend, rows_factory):
        """A full page followed by a short one ends pagination with every post listed."""
        mock_backend.fetch_posts_page.side_effect = [rows_factory(5), rows_factory(3, start=5)]

        await store.load_first_page()
        assert await store.load_next_page() is True

        assert len(store.posts) == 8
        assert store.has_more is False
        assert store.page == 1
        mock_backend.fetch_posts_page.assert_awaited_with(5, 5)

    @pytest.mark.asyncio
    async def test_next_page_noop_without_more(self, store, mock_backend, rows_factory):
        """No request is made once has_more is false."""
        mock_backend.fetch_posts_page.return_value = rows_factory(2)
        await store.load_first_page()

        assert store.has_more is False
        assert await store.load_next_page() is False
        assert mock_backend.fetch_posts_page.await_count == 1

    @pytest.mark.asyncio
    async def test_next_page_noop_while_loading(self, store, mock_backend):
        """No request is made while a load is in flight."""
        store.loading = True

        assert await store.load_next_page() is False
        mock_backend.fetch_posts_page.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overlapping_page_is_deduplicated(self, store, mock_backend, rows_factory):
        """Posts already listed are not appended twice."""
        mock_backend.fetch_posts_page.side_effect = [rows_factory(5), rows_factory(5, start=3)]

        await store.load_first_page()
        await store.load_next_page()

        assert ids(store) == [f"p{i}" for i in range(8)]
        assert store.page == 1

    @pytest.mark.asyncio
    async def test_page_of_known_posts_does_not_advance_cursor(self, store, mock_backend, rows_factory):
        """A page with nothing new keeps the cursor where it is."""
        mock_backend.fetch_posts_page.side_effect = [rows_factory(5), rows_factory(5)]

        await store.load_first_page()
        await store.load_next_page()

        assert len(store.posts) == 5
        assert store.page == 0
        assert store.has_more is True

    @pytest.mark.asyncio
    async def test_first_page_error_sets_error(self, store, mock_backend):
        """Backend failure on the first page is exposed through error."""
        mock_backend.fetch_posts_page.side_effect = QueryError("Error fetching posts: boom")

        assert await store.load_first_page() is False

        assert store.error == "Error fetching posts: boom"
        assert store.loading is False
        assert store.posts == []

    @pytest.mark.asyncio
    async def test_next_page_after_failed_first_page_is_noop(self, store, mock_backend, rows_factory):
        """Nothing is appended after a failed first page."""
        mock_backend.fetch_posts_page.side_effect = [QueryError("Error fetching posts: boom"), rows_factory(5, start=5)]

        assert await store.load_first_page() is False
        assert store.has_more is False
        assert await store.load_next_page() is False

        assert store.posts == []
        mock_backend.fetch_posts_page.assert_awaited_once_with(0, 5)

    @pytest.mark.asyncio
    async def test_first_page_after_failure_resumes_paging(self, store, mock_backend, rows_factory):
        """A later successful first page re-enables paging."""
        mock_backend.fetch_posts_page.side_effect = [QueryError("boom"), rows_factory(5), rows_factory(5, start=5)]
        await store.load_first_page()

        assert await store.load_first_page() is True
        assert await store.load_next_page() is True

        assert ids(store) == [f"p{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_invalid_first_page_rejected(self, store, mock_backend, post_row_factory):
        """One malformed record discards the whole first page."""
        bad = post_row_factory(post_id="bad")
        del bad["content"]
        mock_backend.fetch_posts_page.return_value = [post_row_factory(), bad]

        assert await store.load_first_page() is False

        assert store.posts == []
        assert "Invalid post data" in store.error

    @pytest.mark.asyncio
    async def test_invalid_next_page_keeps_list(self, store, mock_backend, rows_factory, post_row_factory):
        """A malformed next page sets error and keeps the current list."""
        bad = post_row_factory(post_id="bad")
        bad["created_at"] = "not a date"
        mock_backend.fetch_posts_page.side_effect = [rows_factory(5), [bad]]

        await store.load_first_page()
        assert await store.load_next_page() is False

        assert len(store.posts) == 5
        assert store.error is not None
        assert store.loading is False

    @pytest.mark.asyncio
    async def test_next_page_backend_error_only_logged(self, store, mock_backend, rows_factory):
        """Backend failure on a later page is logged without setting error."""
        mock_backend.fetch_posts_page.side_effect = [rows_factory(5), QueryError("down")]

        await store.load_first_page()
        assert await store.load_next_page() is False

        assert store.error is None
        assert store.loading is False
        assert store.has_more is True

    @pytest.mark.asyncio
    async def test_refresh_loads_memberships(self, signed_in_store, mock_backend, rows_factory):
        """Refresh reloads the like and save sets."""
        mock_backend.fetch_posts_page.return_value = rows_factory(2)
        mock_backend.fetch_liked_post_ids.return_value = ["p0"]
        mock_backend.fetch_saved_post_ids.return_value = ["p1"]

        assert await signed_in_store.refresh() is True

        assert signed_in_store.is_liked("p0")
        assert signed_in_store.is_saved("p1")
        assert not signed_in_store.is_liked("p1")


class TestStaleResponses:
    """A response requested under an older generation is never applied."""

    @pytest.mark.asyncio
    async def test_slow_first_page_does_not_overwrite_newer(self, store, mock_backend, post_row_factory):
        """An older first-page response arriving last is discarded."""
        release = asyncio.Event()
        calls = []

        async def fetch(offset, limit, author_ids=None):
            calls.append(offset)
            if len(calls) == 1:
                await release.wait()
                return [post_row_factory(post_id="old")]
            return [post_row_factory(post_id="new")]

        mock_backend.fetch_posts_page.side_effect = fetch

        slow = asyncio.create_task(store.load_first_page())
        await asyncio.sleep(0)
        assert await store.load_first_page() is True

        release.set()
        assert await slow is False
        assert ids(store) == ["new"]

    @pytest.mark.asyncio
    async def test_source_change_discards_pending_page(self, signed_in_store, mock_backend, rows_factory):
        """A page requested before a filter change is discarded."""
        release = asyncio.Event()
        mock_backend.fetch_posts_page.return_value = rows_factory(5)
        await signed_in_store.load_first_page()

        async def fetch(offset, limit, author_ids=None):
            await release.wait()
            return rows_factory(5, start=5)

        mock_backend.fetch_posts_page.side_effect = fetch
        pending = asyncio.create_task(signed_in_store.load_next_page())
        await asyncio.sleep(0)

        signed_in_store.set_source(FeedSource.MINE)
        release.set()

        assert await pending is False
        assert signed_in_store.posts == []
        assert signed_in_store.page == 0
        assert signed_in_store.loading is False

    def test_set_source_bumps_generation(self, store):
        """Changing the filter starts a new generation."""
        before = store.generation
        store.set_source(FeedSource.FOLLOWING)

        assert store.generation == before + 1
        assert store.has_more is True


# =============================================================================
# Sources
# =============================================================================

class TestSources:
    """Tests for per-source queries."""

    @pytest.mark.asyncio
    async def test_following_queries_followed_authors(self, signed_in_store, mock_backend, rows_factory):
        """Following feed restricts the query to followed authors."""
        signed_in_store.set_source(FeedSource.FOLLOWING)
        mock_backend.fetch_followed_ids.return_value = ["u2", "u3"]
        mock_backend.fetch_posts_page.return_value = rows_factory(1, user_id="u2")

        await signed_in_store.load_first_page()

        mock_backend.fetch_followed_ids.assert_awaited_once_with("u1")
        mock_backend.fetch_posts_page.assert_awaited_once_with(0, 5, author_ids=["u2", "u3"])
        assert ids(signed_in_store) == ["p0"]

    @pytest.mark.asyncio
    async def test_following_nobody_yields_empty_feed(self, signed_in_store, mock_backend):
        """Following nobody gives an empty, finished feed."""
        signed_in_store.set_source(FeedSource.FOLLOWING)

        assert await signed_in_store.load_first_page() is True

        assert signed_in_store.posts == []
        assert signed_in_store.has_more is False

    @pytest.mark.asyncio
    async def test_mine_filters_on_viewer(self, mock_backend, notifier, identity):
        """Personal feed queries the viewer's posts with its own page size."""
        store = FeedStore(mock_backend, notifier, source=FeedSource.MINE, identity=identity)

        await store.load_first_page()

        assert store.page_size == 3
        mock_backend.fetch_posts_page.assert_awaited_once_with(0, 3, author_ids=["u1"])

    @pytest.mark.asyncio
    async def test_saved_uses_saved_posts(self, mock_backend, notifier, identity, rows_factory):
        """Saved feed reads through the saved posts table."""
        store = FeedStore(mock_backend, notifier, source=FeedSource.SAVED, identity=identity)
        mock_backend.fetch_saved_posts_page.return_value = rows_factory(3)

        await store.load_first_page()

        mock_backend.fetch_saved_posts_page.assert_awaited_once_with("u1", 0, 3)
        assert store.has_more is True

    @pytest.mark.asyncio
    async def test_personal_feed_requires_identity(self, mock_backend, notifier):
        """Personal feeds need a signed-in viewer."""
        store = FeedStore(mock_backend, notifier, source=FeedSource.MINE)

        assert await store.load_first_page() is False

        assert "Sign in" in store.error
        mock_backend.fetch_posts_page.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_identity_clears_state(self, signed_in_store, mock_backend, rows_factory, other_identity):
        """Switching viewer clears posts and memberships."""
        mock_backend.fetch_posts_page.return_value = rows_factory(2)
        mock_backend.fetch_liked_post_ids.return_value = ["p0"]
        await signed_in_store.refresh()

        signed_in_store.set_identity(other_identity)

        assert signed_in_store.posts == []
        assert signed_in_store.liked_post_ids == set()
        assert signed_in_store.identity == other_identity


# =============================================================================
# Memberships
# =============================================================================

class TestToggles:
    """Tests for optimistic like and save toggles."""

    @pytest.mark.asyncio
    async def test_like_inserts_membership(self, signed_in_store, mock_backend):
        """Liking adds the membership and writes it."""
        assert await signed_in_store.toggle_like("p1") is True

        assert signed_in_store.is_liked("p1")
        mock_backend.insert_like.assert_awaited_once_with("u1", "p1")

    @pytest.mark.asyncio
    async def test_toggle_twice_restores_state(self, signed_in_store, mock_backend):
        """Two toggles return to the original membership."""
        await signed_in_store.toggle_like("p1")
        await signed_in_store.toggle_like("p1")

        assert not signed_in_store.is_liked("p1")
        mock_backend.insert_like.assert_awaited_once_with("u1", "p1")
        mock_backend.delete_like.assert_awaited_once_with("u1", "p1")

    @pytest.mark.asyncio
    async def test_failed_like_rolls_back(self, signed_in_store, mock_backend, notifier):
        """A rejected like is undone and reported."""
        mock_backend.insert_like.side_effect = MutationError("denied")

        assert await signed_in_store.toggle_like("p1") is False

        assert not signed_in_store.is_liked("p1")
        assert "Failed to like post" in messages(notifier)

    @pytest.mark.asyncio
    async def test_failed_unsave_rolls_back(self, signed_in_store, mock_backend, notifier):
        """A rejected unsave restores the saved state."""
        signed_in_store.saved_post_ids.add("p1")
        mock_backend.delete_save.side_effect = MutationError("denied")

        assert await signed_in_store.toggle_save("p1") is False

        assert signed_in_store.is_saved("p1")
        assert "Failed to unsave post" in messages(notifier)

    @pytest.mark.asyncio
    async def test_unsave_removes_post_from_saved_feed(self, mock_backend, notifier, identity, rows_factory):
        """Unsaving in the saved feed drops the post from the list."""
        saved = FeedStore(mock_backend, notifier, source=FeedSource.SAVED, identity=identity, page_size=5)
        mock_backend.fetch_saved_posts_page.return_value = rows_factory(2)
        mock_backend.fetch_saved_post_ids.return_value = ["p0", "p1"]
        await saved.refresh()

        assert await saved.toggle_save("p0") is True

        assert not saved.is_saved("p0")
        assert ids(saved) == ["p1"]

    @pytest.mark.asyncio
    async def test_failed_unsave_keeps_post_in_saved_feed(self, mock_backend, notifier, identity, rows_factory):
        """A rejected unsave leaves the saved feed untouched."""
        saved = FeedStore(mock_backend, notifier, source=FeedSource.SAVED, identity=identity, page_size=5)
        mock_backend.fetch_saved_posts_page.return_value = rows_factory(2)
        mock_backend.fetch_saved_post_ids.return_value = ["p0", "p1"]
        mock_backend.delete_save.side_effect = MutationError("denied")
        await saved.refresh()

        assert await saved.toggle_save("p0") is False

        assert saved.is_saved("p0")
        assert ids(saved) == ["p0", "p1"]

    @pytest.mark.asyncio
    async def test_unsave_in_other_feed_keeps_post(self, signed_in_store, mock_backend, rows_factory):
        """Outside the saved feed, unsaving leaves the list alone."""
        mock_backend.fetch_posts_page.return_value = rows_factory(2)
        await signed_in_store.load_first_page()
        signed_in_store.saved_post_ids.add("p0")

        assert await signed_in_store.toggle_save("p0") is True

        assert ids(signed_in_store) == ["p0", "p1"]

    @pytest.mark.asyncio
    async def test_flip_is_visible_before_write_completes(self, signed_in_store, mock_backend):
        """The new state shows before the backend answers."""
        release = asyncio.Event()

        async def slow_insert(user_id, post_id):
            await release.wait()

        mock_backend.insert_save.side_effect = slow_insert
        task = asyncio.create_task(signed_in_store.toggle_save("p1"))
        await asyncio.sleep(0)

        assert signed_in_store.is_saved("p1")
        release.set()
        assert await task is True

    @pytest.mark.asyncio
    async def test_stale_failure_does_not_undo_later_toggle(self, signed_in_store, mock_backend):
        """A failure superseded by a newer toggle does not roll back."""
        release = asyncio.Event()

        async def failing_insert(user_id, post_id):
            await release.wait()
            raise MutationError("timeout")

        mock_backend.insert_like.side_effect = failing_insert
        first = asyncio.create_task(signed_in_store.toggle_like("p1"))
        await asyncio.sleep(0)

        assert await signed_in_store.toggle_like("p1") is True
        assert not signed_in_store.is_liked("p1")

        release.set()
        assert await first is False
        assert not signed_in_store.is_liked("p1")

    @pytest.mark.asyncio
    async def test_toggle_requires_identity(self, store, mock_backend, notifier):
        """Toggling while signed out only reports an error."""
        assert await store.toggle_like("p1") is False

        assert not store.is_liked("p1")
        assert "Sign in to like posts" in messages(notifier)
        mock_backend.insert_like.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_memberships_without_identity_are_empty(self, store):
        """Signed out viewers have no memberships."""
        store.liked_post_ids.add("p1")

        assert await store.load_memberships() is False
        assert store.liked_post_ids == set()


# =============================================================================
# Deletion and realtime entry points
# =============================================================================

class TestDeletion:

    @pytest.mark.asyncio
    async def test_delete_removes_post(self, signed_in_store, mock_backend, rows_factory, notifier):
        """A successful delete removes the post locally."""
        mock_backend.fetch_posts_page.return_value = rows_factory(3)
        await signed_in_store.load_first_page()

        assert await signed_in_store.delete_post("p1") is True

        assert ids(signed_in_store) == ["p0", "p2"]
        assert "Post deleted" in messages(notifier)

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_post(self, signed_in_store, mock_backend, rows_factory, notifier):
        """A rejected delete keeps the post and reports the failure."""
        mock_backend.fetch_posts_page.return_value = rows_factory(3)
        mock_backend.delete_post.side_effect = MutationError("forbidden")
        await signed_in_store.load_first_page()

        assert await signed_in_store.delete_post("p1") is False

        assert len(signed_in_store.posts) == 3
        assert "Failed to delete post" in messages(notifier)

    def test_apply_delete_absent_is_noop(self, store, post_factory):
        """Deleting an unknown id changes nothing."""
        store.posts = [post_factory(post_id="a")]

        assert store.apply_delete("zzz") is False
        assert ids(store) == ["a"]

    def test_apply_delete_twice(self, store, post_factory):
        """A second delete of the same id is a no-op."""
        store.posts = [post_factory(post_id="a"), post_factory(post_id="b")]

        assert store.apply_delete("a") is True
        assert store.apply_delete("a") is False
        assert ids(store) == ["b"]


class TestRealtimeEntryPoints:

    @pytest.mark.asyncio
    async def test_insert_of_listed_post_moves_to_front(self, store, mock_backend, rows_factory, post_factory):
        """Insert for a post already loaded by a page moves its single entry first."""
        mock_backend.fetch_posts_page.return_value = rows_factory(3)
        await store.load_first_page()

        store.apply_insert(post_factory(post_id="p1"))

        assert ids(store) == ["p1", "p0", "p2"]
        assert ids(store).count("p1") == 1

    @pytest.mark.asyncio
    async def test_insert_during_first_page_load_leaves_one_entry(self, store, mock_backend, rows_factory, post_factory):
        """An insert landing while the first page is in flight ends up listed once."""
        release = asyncio.Event()

        async def fetch(offset, limit, author_ids=None):
            await release.wait()
            return rows_factory(3)

        mock_backend.fetch_posts_page.side_effect = fetch

        loading = asyncio.create_task(store.load_first_page())
        await asyncio.sleep(0)
        store.apply_insert(post_factory(post_id="p1"))
        assert ids(store) == ["p1"]

        release.set()
        assert await loading is True
        assert ids(store) == ["p0", "p1", "p2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(5))
    async def test_mixed_loads_and_events_never_duplicate(self, store, mock_backend, post_row_factory, post_factory, seed):
        """Any sequence of page loads and realtime events keeps ids unique."""
        rng = random.Random(seed)

        async def fetch(offset, limit, author_ids=None):
            return [post_row_factory(post_id=f"p{rng.randrange(8)}") for _ in range(limit)]

        mock_backend.fetch_posts_page.side_effect = fetch
        operations = ["first", "next", "insert", "update", "delete"] * 8
        rng.shuffle(operations)

        for operation in operations:
            post_id = f"p{rng.randrange(8)}"
            if operation == "first":
                await store.load_first_page()
            elif operation == "next":
                await store.load_next_page()
            elif operation == "insert":
                store.apply_insert(post_factory(post_id=post_id))
            elif operation == "update":
                store.apply_update(post_factory(post_id=post_id, content="edited"))
            else:
                store.apply_delete(post_id)

            assert len(ids(store)) == len(set(ids(store)))

    def test_insert_goes_to_front(self, store, post_factory):
        """New posts are shown first."""
        store.posts = [post_factory(post_id="a")]

        store.apply_insert(post_factory(post_id="new"))

        assert ids(store) == ["new", "a"]

    def test_update_moves_to_front(self, store, post_factory):
        """Updated posts replace their entry and move to the front."""
        store.posts = [post_factory(post_id="a"), post_factory(post_id="b")]

        store.apply_update(post_factory(post_id="b", content="edited"))

        assert ids(store) == ["b", "a"]
        assert store.posts[0].content == "edited"

    def test_accepts_everyone(self, store, post_factory):
        """The global feed accepts any post."""
        assert store.accepts(post_factory(user_id="anyone"))

    def test_accepts_nothing_personal_when_signed_out(self, mock_backend, post_factory):
        """Personal feeds accept nothing without a viewer."""
        store = FeedStore(mock_backend, source=FeedSource.MINE)

        assert not store.accepts(post_factory(user_id="u1"))

    def test_accepts_mine(self, mock_backend, identity, post_factory):
        """Personal feed accepts only the viewer's posts."""
        store = FeedStore(mock_backend, source=FeedSource.MINE, identity=identity)

        assert store.accepts(post_factory(user_id="u1"))
        assert not store.accepts(post_factory(user_id="u2"))

    @pytest.mark.asyncio
    async def test_accepts_following(self, signed_in_store, mock_backend, post_factory):
        """Following feed accepts only followed authors."""
        signed_in_store.set_source(FeedSource.FOLLOWING)
        mock_backend.fetch_followed_ids.return_value = ["u2"]
        await signed_in_store.load_first_page()

        assert signed_in_store.accepts(post_factory(user_id="u2"))
        assert not signed_in_store.accepts(post_factory(user_id="u3"))

    def test_accepts_saved(self, mock_backend, identity, post_factory):
        """Saved feed accepts only saved posts."""
        store = FeedStore(mock_backend, source=FeedSource.SAVED, identity=identity)
        store.saved_post_ids.add("p9")

        assert store.accepts(post_factory(post_id="p9"))
        assert not store.accepts(post_factory(post_id="p1"))

    def test_can_delete_only_own_posts(self, signed_in_store, post_factory):
        """Only the author may delete a post."""
        assert signed_in_store.can_delete(post_factory(user_id="u1"))
        assert not signed_in_store.can_delete(post_factory(user_id="u2"))
