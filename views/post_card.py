"""
Post card rendering.
"""

from datetime import datetime
from typing import Optional

from config import settings
from data.models import Post
from utils.helpers import build_avatar_url, time_ago, truncate_text


def render_post_card(
    post: Post,
    liked: bool = False,
    saved: bool = False,
    deletable: bool = False,
    collapsible: bool = False,
    expanded: bool = False,
    now: Optional[datetime] = None
) -> str:
    """
    Render one post as a block of text.

    Args:
        post: The post to render.
        liked: Whether the viewer liked it.
        saved: Whether the viewer saved it.
        deletable: Show the delete marker (viewer owns the post).
        collapsible: Collapse long content unless expanded.
        expanded: Show the full content of a collapsible post.
        now: Reference time for the relative timestamp.

    Returns:
        str: The rendered card.
    """
    name = post.display_name
    header = f"{name}  <{build_avatar_url(name)}>"
    if deletable:
        header += "  [delete]"

    content = post.content
    if collapsible and not expanded and len(content) > settings.COLLAPSED_POST_LENGTH:
        content = truncate_text(content, settings.COLLAPSED_POST_LENGTH) + " (show more)"

    actions = "  ".join([
        "♥ Liked" if liked else "♡ Like",
        "★ Saved" if saved else "☆ Save",
    ])
    footer = f"{actions}    {time_ago(post.created_at, now)}"

    return "\n".join([header, content, footer, f"id: {post.id}"])
