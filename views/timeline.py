"""
Timeline rendering for a FeedStore.
"""

from datetime import datetime
from typing import Optional

from data.models import FeedSource
from services.feed_store import FeedStore
from views.post_card import render_post_card

TITLES = {
    FeedSource.EVERYONE: "What's Happening",
    FeedSource.FOLLOWING: "What's Happening",
    FeedSource.MINE: "My Posts",
    FeedSource.SAVED: "Saved Posts",
}

SEPARATOR = "-" * 40


def render_timeline(store: FeedStore, now: Optional[datetime] = None) -> str:
    """Render the feed header, its posts and the pagination hint."""
    lines = [TITLES[store.source]]
    if store.source in (FeedSource.EVERYONE, FeedSource.FOLLOWING):
        tabs = [
            f"[{source.value.title()}]" if source == store.source else source.value.title()
            for source in (FeedSource.EVERYONE, FeedSource.FOLLOWING)
        ]
        lines.append("  ".join(tabs))
    lines.append(SEPARATOR)

    if store.loading and not store.posts:
        lines.append("Loading posts...")
        return "\n".join(lines)
    if store.error:
        lines.append(f"Error: {store.error}")
        return "\n".join(lines)
    if not store.posts:
        lines.append("No posts yet.")
        return "\n".join(lines)

    for post in store.posts:
        lines.append(render_post_card(
            post,
            liked=store.is_liked(post.id),
            saved=store.is_saved(post.id),
            deletable=store.can_delete(post),
            collapsible=store.source == FeedSource.MINE,
            now=now,
        ))
        lines.append(SEPARATOR)

    if store.has_more and not store.loading:
        lines.append("More posts →")
    return "\n".join(lines)
