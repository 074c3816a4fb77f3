"""
Data Models for ChirpNest

This module contains the records exchanged with the backend and the small
value types the services pass around. Backend records are pydantic models so
every fetched row is shape-checked before it reaches the feed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from utils.exceptions import RecordValidationError


class PostAuthor(BaseModel):
    """Denormalized author fields joined onto a post."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None


class Post(BaseModel):
    """A single chirp as stored in the posts table."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    user_id: str
    content: str
    created_at: datetime
    like_count: Optional[int] = None
    save_count: Optional[int] = None
    users: Optional[PostAuthor] = None

    @property
    def has_author(self) -> bool:
        return self.users is not None

    @property
    def display_name(self) -> str:
        """Username, falling back to email, then to a placeholder."""
        if self.users is not None:
            if self.users.username:
                return self.users.username
            if self.users.email:
                return self.users.email
        return "Unknown user"


class Profile(BaseModel):
    """Public fields shown on a profile card."""
    model_config = ConfigDict(extra="ignore")

    id: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Identity:
    """The authenticated viewer."""
    id: str
    email: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_user(cls, user: Any) -> "Identity":
        """Build an Identity from a backend auth user object."""
        metadata = getattr(user, "user_metadata", None) or {}
        return cls(
            id=str(user.id),
            email=getattr(user, "email", None),
            username=metadata.get("username"),
        )


class FeedSource(str, Enum):
    """Which slice of posts a feed shows."""
    EVERYONE = "everyone"
    FOLLOWING = "following"
    MINE = "mine"
    SAVED = "saved"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A realtime change notification, independent of the payload layout."""
    type: ChangeType
    table: Optional[str] = None
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], default_type: Optional[str] = None) -> "ChangeEvent":
        """
        Normalize a realtime payload.

        Accepts the nested ``{"data": {"type", "record", "old_record"}}`` layout
        as well as flat payloads using ``eventType``/``new``/``old`` keys.

        Args:
            payload: The payload delivered by the realtime client.
            default_type: Event type to assume when the payload carries none.

        Raises:
            RecordValidationError: If the event type is missing or unknown.
        """
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        raw_type = data.get("type") or data.get("eventType") or payload.get("eventType") or default_type
        try:
            change_type = ChangeType(str(raw_type).upper())
        except ValueError:
            raise RecordValidationError(f"Unknown change type: {raw_type!r}")

        return cls(
            type=change_type,
            table=data.get("table"),
            record=data.get("record") or data.get("new") or {},
            old_record=data.get("old_record") or data.get("old") or {},
        )


_post_list_adapter = TypeAdapter(List[Post])


def parse_post(data: Any) -> Post:
    """
    Validate a single post record.

    Raises:
        RecordValidationError: If the record does not match the Post shape.
    """
    try:
        return Post.model_validate(data)
    except ValidationError as e:
        raise RecordValidationError(f"Invalid post record: {e.error_count()} error(s)") from e


def parse_posts(rows: Any) -> List[Post]:
    """
    Validate a page of post records. One bad row rejects the whole page.

    Raises:
        RecordValidationError: If any record does not match the Post shape.
    """
    try:
        return _post_list_adapter.validate_python(rows)
    except ValidationError as e:
        raise RecordValidationError(f"Invalid post data: {e.error_count()} error(s)") from e


def parse_profile(data: Any) -> Profile:
    """
    Validate a profile record.

    Raises:
        RecordValidationError: If the record does not match the Profile shape.
    """
    try:
        return Profile.model_validate(data)
    except ValidationError as e:
        raise RecordValidationError(f"Invalid profile record: {e.error_count()} error(s)") from e
