"""
Post List Merging

Every change to a feed's post list goes through these functions so the
list never holds two posts with the same id. They are pure: inputs are
never modified.
"""

from typing import Iterable, List

from data.models import Post

FRONT = "front"
BACK = "back"


def merge_deduplicated(existing: Iterable[Post], incoming: Iterable[Post], position: str = BACK) -> List[Post]:
    """
    Merge two ordered post sequences, keeping the first occurrence of each id.

    Args:
        existing: Posts already in the list.
        incoming: Newly received posts.
        position: ``"front"`` places incoming before existing (realtime
            inserts), ``"back"`` places them after (page appends).

    Returns:
        List[Post]: The merged list; relative order of first occurrences is kept.

    Raises:
        ValueError: If position is not "front" or "back".
    """
    if position == FRONT:
        ordered = list(incoming) + list(existing)
    elif position == BACK:
        ordered = list(existing) + list(incoming)
    else:
        raise ValueError(f"position must be '{FRONT}' or '{BACK}', got {position!r}")

    seen = set()
    merged = []
    for post in ordered:
        if post.id in seen:
            continue
        seen.add(post.id)
        merged.append(post)
    return merged


def deduplicate(posts: Iterable[Post]) -> List[Post]:
    return merge_deduplicated([], posts)


def remove_post(posts: Iterable[Post], post_id: str) -> List[Post]:
    """Drop the post with post_id; an absent id leaves the list unchanged."""
    return [post for post in posts if post.id != post_id]


def upsert_front(posts: Iterable[Post], post: Post) -> List[Post]:
    """Replace any post with the same id and put the new version first."""
    return merge_deduplicated(remove_post(posts, post.id), [post], FRONT)
