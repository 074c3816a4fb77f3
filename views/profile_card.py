"""
Profile card and composer rendering.
"""

from typing import Optional

from config import settings
from data.models import Profile
from utils.helpers import build_avatar_url


def profile_avatar(profile: Profile) -> str:
    """Stored avatar if it is a URL, otherwise a generated one."""
    if profile.avatar_url and profile.avatar_url.startswith("http"):
        return profile.avatar_url
    return build_avatar_url(profile.username or "User", transparent=True)


def render_profile_card(profile: Optional[Profile]) -> str:
    if profile is None:
        return "Loading profile..."

    lines = [
        f"<{profile_avatar(profile)}>",
        profile.username or "Unnamed",
    ]
    if profile.bio:
        lines.append(profile.bio)
    if profile.created_at:
        lines.append(f"Joined {profile.created_at:%B %Y}")
    return "\n".join(lines)


def render_composer(draft: str, submitting: bool = False) -> str:
    """Draft text with the character counter and submit state."""
    button = "Posting..." if submitting else "Post"
    text = draft or "What's happening?"
    return f"{text}\n[{button}]  {len(draft)}/{settings.MAX_POST_CHARS}"
