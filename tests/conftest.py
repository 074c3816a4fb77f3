"""
Shared Test Fixtures for ChirpNest

This module provides common fixtures used across all test modules.
Fixtures include a mock backend implementing every gateway method, the
signed-in viewer, a notifier, and data factories for post records.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.models import Identity, Post
from utils.notifier import Notifier


BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

ASYNC_BACKEND_METHODS = [
    "connect", "close",
    "fetch_posts_page", "fetch_saved_posts_page", "fetch_post", "fetch_followed_ids",
    "fetch_liked_post_ids", "fetch_saved_post_ids",
    "insert_post", "delete_post",
    "insert_like", "delete_like", "insert_save", "delete_save",
    "fetch_profile", "insert_profile", "username_taken",
    "subscribe_to_table", "unsubscribe",
    "get_session_identity", "sign_in_with_password", "sign_up", "sign_in_with_oauth", "sign_out",
]


# =============================================================================
# Backend Fixtures
# =============================================================================

@pytest.fixture
def mock_backend():
    """
    Mock backend gateway with an AsyncMock for every coroutine method.

    Defaults describe an empty project with no session: every query returns
    nothing and every mutation succeeds.

    Returns:
        MagicMock: The mock backend.
    """
    backend = MagicMock()
    for name in ASYNC_BACKEND_METHODS:
        setattr(backend, name, AsyncMock(return_value=None))

    backend.connect.return_value = True
    backend.fetch_posts_page.return_value = []
    backend.fetch_saved_posts_page.return_value = []
    backend.fetch_followed_ids.return_value = []
    backend.fetch_liked_post_ids.return_value = []
    backend.fetch_saved_post_ids.return_value = []
    backend.username_taken.return_value = False
    backend.subscribe_to_table.return_value = MagicMock(name="channel")
    backend.sign_in_with_oauth.return_value = "https://auth.example.com/authorize?provider=github"

    # Sync: returns the unsubscribe function
    backend.on_auth_state_change.return_value = MagicMock(name="unsubscribe")
    return backend


# =============================================================================
# Domain Fixtures
# =============================================================================

@pytest.fixture
def identity():
    """The signed-in viewer used across tests."""
    return Identity(id="u1", email="alice@example.com", username="alice")


@pytest.fixture
def other_identity():
    return Identity(id="u2", email="bob@example.com", username="bob")


@pytest.fixture
def notifier():
    return Notifier(history=50)


# =============================================================================
# Data Factories
# =============================================================================

@pytest.fixture
def post_row_factory():
    """
    Factory for raw post records as returned by the backend.

    Usage:
        def test_something(post_row_factory):
            row = post_row_factory(post_id="p7", user_id="u2")
    """
    def _create(
        post_id: str = "p1",
        user_id: str = "u1",
        content: str = "Hello nest",
        minutes_ago: int = 0,
        username: Optional[str] = "alice",
        email: Optional[str] = "alice@example.com",
        with_author: bool = True
    ) -> Dict[str, Any]:
        row = {
            "id": post_id,
            "user_id": user_id,
            "content": content,
            "created_at": (BASE_TIME - timedelta(minutes=minutes_ago)).isoformat(),
            "like_count": 0,
            "save_count": 0,
        }
        if with_author:
            row["users"] = {"id": user_id, "username": username, "email": email}
        return row

    return _create


@pytest.fixture
def post_factory(post_row_factory):
    """Factory for validated Post models; accepts the same arguments as post_row_factory."""
    def _create(**kwargs) -> Post:
        return Post.model_validate(post_row_factory(**kwargs))

    return _create


@pytest.fixture
def rows_factory(post_row_factory):
    """
    Factory for a page of post records with ids p{start}..p{start+count-1},
    newest first.
    """
    def _create(count: int, start: int = 0, user_id: str = "u1") -> List[Dict[str, Any]]:
        return [
            post_row_factory(post_id=f"p{start + i}", user_id=user_id, minutes_ago=start + i)
            for i in range(count)
        ]

    return _create
