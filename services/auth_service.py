"""
Auth Service Module

Sign up, sign in (password or third-party provider) and sign out. Every
outcome is reported through the Notifier; nothing here raises.
"""

import re
from typing import Optional

from config import settings
from data.models import Identity
from utils.exceptions import ChirpNestError
from utils.logger import get_logger
from utils.notifier import Notifier

logger = get_logger(__name__)


class AuthService:
    """Credential flows against the hosted auth backend."""

    def __init__(self, backend, notifier: Optional[Notifier] = None):
        """
        Args:
            backend: Gateway implementing AuthBackend and username_taken().
            notifier: Sink for transient user messages.
        """
        self._backend = backend
        self._notifier = notifier or Notifier()
        self.error: Optional[str] = None

    async def validate_username(self, name: str) -> Optional[str]:
        """
        Check format and availability of a username.

        Returns:
            An error message, or None if the username can be used.
        """
        if not re.match(settings.USERNAME_PATTERN, name or ""):
            return "Username must be 3-15 characters and only use letters, numbers, or underscores."
        try:
            if await self._backend.username_taken(name):
                return "Username is already taken."
        except ChirpNestError as e:
            logger.error(f"Error checking username: {e}")
            return "Error checking username."
        return None

    async def sign_up(self, email: str, password: str, confirm_password: str, username: str) -> bool:
        self.error = None
        if password != confirm_password:
            self.error = "Passwords do not match."
            return False

        username_error = await self.validate_username(username)
        if username_error:
            self.error = username_error
            return False

        try:
            await self._backend.sign_up(email, password, username)
        except ChirpNestError as e:
            self._fail(e)
            return False

        self._notifier.success("Signed up successfully! Please check your email to confirm.")
        return True

    async def sign_in(self, email: str, password: str) -> Optional[Identity]:
        self.error = None
        try:
            identity = await self._backend.sign_in_with_password(email, password)
        except ChirpNestError as e:
            self._fail(e)
            return None

        self._notifier.success("Logged in successfully!")
        return identity

    async def sign_in_with_provider(self, provider: str) -> Optional[str]:
        """
        Start a third-party sign in.

        Returns:
            The URL the user must open to authorize, or None on failure.
        """
        self.error = None
        if provider not in settings.OAUTH_PROVIDERS:
            self.error = f"Unsupported provider: {provider}"
            self._notifier.error(self.error)
            return None
        try:
            return await self._backend.sign_in_with_oauth(provider)
        except ChirpNestError as e:
            self._fail(e)
            return None

    async def sign_out(self) -> bool:
        try:
            await self._backend.sign_out()
        except ChirpNestError as e:
            self._fail(e)
            return False
        self._notifier.info("Signed out")
        return True

    def _fail(self, error: Exception) -> None:
        logger.error(f"Authentication failed: {error}")
        self.error = str(error)
        self._notifier.error(str(error))
