"""
Helper Utility Module

This module provides small helper functions shared by the services and views.
"""

from typing import Optional
from datetime import datetime, timezone
from urllib.parse import quote

from config import settings


def build_avatar_url(seed: str, transparent: bool = False) -> str:
    """
    Build a generated avatar URL for a username.

    Args:
        seed: The value the avatar is derived from (usually the username)
        transparent: Whether to request a transparent background

    Returns:
        str: The avatar URL
    """
    url = f"{settings.AVATAR_BASE_URL}?seed={quote(seed, safe='')}"
    if transparent:
        url += "&backgroundColor=transparent"
    return url


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    truncated = text[:max_length].rstrip()
    if add_ellipsis:
        truncated += "..."

    return truncated


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    """
    Describe how long ago a moment was, e.g. "5 minutes ago".

    Naive datetimes are treated as UTC.

    Args:
        moment: The past moment
        now: Reference time (defaults to the current UTC time)

    Returns:
        str: A human readable distance with an "ago" suffix
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = max(0, int((now - moment).total_seconds()))
    if seconds < 45:
        return "less than a minute ago"

    minutes = round(seconds / 60)
    if minutes < 45:
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"

    hours = round(minutes / 60)
    if hours < 24:
        return "about 1 hour ago" if hours == 1 else f"about {hours} hours ago"

    days = round(hours / 24)
    if days < 30:
        return "1 day ago" if days == 1 else f"{days} days ago"

    months = round(days / 30)
    if months < 12:
        return "about 1 month ago" if months == 1 else f"{months} months ago"

    years = round(months / 12)
    return "about 1 year ago" if years == 1 else f"about {years} years ago"
