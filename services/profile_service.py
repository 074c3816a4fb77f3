"""
Profile Service Module

Creates a profile row the first time a signed-in identity is seen, and loads
profiles for the profile card.
"""

import asyncio
from typing import Any, Dict, Optional, Set

from config import settings
from data.models import Identity, Profile, parse_profile
from data.protocols import PostBackend
from utils.exceptions import ChirpNestError
from utils.helpers import build_avatar_url
from utils.logger import get_logger

logger = get_logger(__name__)


def derive_username(identity: Identity) -> str:
    """Username from sign-up metadata, else the email local part, else a placeholder."""
    if identity.username:
        return identity.username
    if identity.email:
        return identity.email.split("@")[0]
    return settings.DEFAULT_USERNAME


def default_profile(identity: Identity) -> Dict[str, Any]:
    username = derive_username(identity)
    return {
        "id": identity.id,
        "username": username,
        "avatar_url": build_avatar_url(username, transparent=True),
        "bio": "",
    }


class ProfileEnsurer:
    """
    Makes sure every signed-in identity has a profile.

    Each identity is checked at most once until reset(). cancel() stops any
    check in progress; a cancelled check never writes.
    """

    def __init__(self, backend: PostBackend):
        self._backend = backend
        self._ensured: Set[str] = set()
        self._cancelled = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def schedule(self, identity: Optional[Identity]) -> Optional[asyncio.Task]:
        """Run ensure() in the background; usable as a session listener."""
        if identity is None or self._cancelled or identity.id in self._ensured:
            return None
        task = asyncio.get_running_loop().create_task(self.ensure(identity))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def ensure(self, identity: Optional[Identity]) -> bool:
        """
        Create the identity's profile if it does not exist yet.

        Failures are logged and never retried.

        Returns:
            bool: True if a profile was created.
        """
        if identity is None or self._cancelled or identity.id in self._ensured:
            return False
        self._ensured.add(identity.id)

        try:
            existing = await self._backend.fetch_profile(identity.id)
        except ChirpNestError as e:
            if not self._cancelled:
                logger.error(f"Failed to ensure user profile: {e}")
            return False

        if self._cancelled or existing:
            return False

        try:
            await self._backend.insert_profile(default_profile(identity))
        except ChirpNestError as e:
            logger.error(f"Insert profile error: {e}")
            return False

        logger.info(f"New user profile created for: {identity.id}")
        return True

    async def cancel(self) -> None:
        self._cancelled = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def reset(self) -> None:
        """Start a new mount: forget checked identities and clear the cancel flag."""
        self._cancelled = False
        self._ensured.clear()


async def load_profile(backend: PostBackend, user_id: str) -> Optional[Profile]:
    """
    Fetch and validate a profile.

    Returns:
        The Profile, or None if it is missing or could not be loaded.
    """
    try:
        data = await backend.fetch_profile(user_id)
        if data is None:
            return None
        return parse_profile(data)
    except ChirpNestError as e:
        logger.error(f"Failed to fetch profile: {e}")
        return None
