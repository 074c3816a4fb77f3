"""
Composer Service Module

Turns a draft into a post: applies the line and character limits while
typing, cleans the final text, and submits it.
"""

import inspect
import re
from typing import Callable, Optional

from config import settings
from data.models import Identity
from data.protocols import PostBackend
from utils.exceptions import ChirpNestError, ComposerError
from utils.logger import get_logger
from utils.notifier import Notifier

logger = get_logger(__name__)

_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


def limit_draft(raw: str) -> str:
    """Keep at most MAX_POST_LINES lines, then at most MAX_POST_CHARS characters."""
    lines = raw.split("\n")
    if len(lines) > settings.MAX_POST_LINES:
        raw = "\n".join(lines[:settings.MAX_POST_LINES])
    return raw[:settings.MAX_POST_CHARS]


def clean_content(text: str) -> str:
    """Strip surrounding whitespace and collapse runs of blank lines."""
    return _EXTRA_BLANK_LINES.sub("\n\n", text.strip())


def is_blank(text: str) -> bool:
    return not text.replace("\n", "").strip()


class Composer:
    """Holds a draft and posts it on submit."""

    def __init__(
        self,
        backend: PostBackend,
        notifier: Optional[Notifier] = None,
        on_chirp: Optional[Callable[[], object]] = None
    ):
        self._backend = backend
        self._notifier = notifier or Notifier()
        self._on_chirp = on_chirp
        self.draft = ""
        self.submitting = False

    def update_draft(self, raw: str) -> str:
        self.draft = limit_draft(raw)
        return self.draft

    @property
    def can_submit(self) -> bool:
        return not self.submitting and bool(self.draft.strip())

    def prepare(self, draft: Optional[str] = None) -> str:
        """
        Produce the text that would be posted.

        Raises:
            ComposerError: If nothing but whitespace is left.
        """
        cleaned = clean_content(limit_draft(self.draft if draft is None else draft))
        if is_blank(cleaned):
            raise ComposerError("Nothing to post")
        return cleaned

    async def submit(self, identity: Optional[Identity], draft: Optional[str] = None) -> bool:
        """
        Post the draft as identity.

        An empty draft sends nothing. On success the draft is cleared and the
        on_chirp callback runs (awaited when it returns a coroutine).

        Returns:
            bool: True if the post was created.
        """
        if identity is None:
            self._notifier.error("Sign in to chirp")
            return False

        try:
            content = self.prepare(draft)
        except ComposerError:
            return False

        self.submitting = True
        try:
            await self._backend.insert_post(identity.id, content)
        except ChirpNestError as e:
            logger.error(f"Failed to chirp: {e}")
            self._notifier.error(f"Failed to chirp: {e}")
            return False
        finally:
            self.submitting = False

        self._notifier.success("Chirp posted!")
        self.draft = ""
        if self._on_chirp is not None:
            result = self._on_chirp()
            if inspect.isawaitable(result):
                await result
        return True
