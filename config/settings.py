"""
Configuration Settings for ChirpNest

This module centralizes all configuration settings for the ChirpNest client,
including environment variables, backend credentials, and application constants.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))

# Backend (Supabase) Connection
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Optional credentials used by the CLI to sign in non-interactively
CHIRPNEST_EMAIL = os.getenv("CHIRPNEST_EMAIL")
CHIRPNEST_PASSWORD = os.getenv("CHIRPNEST_PASSWORD")

# =============================================================================
# Backend Tables
# =============================================================================

POSTS_TABLE = "posts"
USERS_TABLE = "users"
PROFILES_TABLE = "profiles"
LIKES_TABLE = "likes"
SAVED_POSTS_TABLE = "saved_posts"
FOLLOWS_TABLE = "follows"

# Columns pulled for a post together with its denormalized author
POST_SELECT = "*, users(*)"
SAVED_POST_SELECT = "created_at, posts(*, users(*))"

# =============================================================================
# Feed Settings
# =============================================================================

FEED_PAGE_SIZE = int(os.getenv("CHIRPNEST_PAGE_SIZE", "10"))   # Global / following timeline
MY_POSTS_PAGE_SIZE = 3               # Personal post list
SAVED_POSTS_PAGE_SIZE = 3            # Saved post list

# =============================================================================
# Realtime Settings
# =============================================================================

REALTIME_CHANNEL = "realtime-posts"
REALTIME_SCHEMA = "public"

# =============================================================================
# Composer Settings
# =============================================================================

MAX_POST_CHARS = 280                 # Hard limit on chirp length
MAX_POST_LINES = 5                   # Lines kept from a draft
COLLAPSED_POST_LENGTH = 140          # Longer posts are collapsed in the personal list

# =============================================================================
# Auth & Profile Settings
# =============================================================================

USERNAME_PATTERN = r"^[a-zA-Z0-9_]{3,15}$"
OAUTH_PROVIDERS = ["google", "github"]
DEFAULT_USERNAME = "anonymous"
AVATAR_BASE_URL = "https://api.dicebear.com/7.x/avataaars/svg"

# =============================================================================
# Application Settings
# =============================================================================

NOTIFICATION_HISTORY = 20            # Transient messages kept in memory
LOG_LEVEL = os.getenv("CHIRPNEST_LOG_LEVEL", "INFO").upper()
DEFAULT_LOG_FILE = os.path.join(APP_ROOT, "chirpnest.log")
WATCH_SECONDS = 60                   # Default duration of `chirpnest watch`


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    return {
        "backend": {
            "url": SUPABASE_URL[:30] + "..." if SUPABASE_URL and len(SUPABASE_URL) > 30 else SUPABASE_URL,
            "key_configured": bool(SUPABASE_KEY),
            "credentials_configured": bool(CHIRPNEST_EMAIL and CHIRPNEST_PASSWORD),
        },
        "feed_settings": {
            "page_size": FEED_PAGE_SIZE,
            "my_posts_page_size": MY_POSTS_PAGE_SIZE,
            "saved_posts_page_size": SAVED_POSTS_PAGE_SIZE,
            "realtime_channel": REALTIME_CHANNEL,
        },
        "composer_settings": {
            "max_chars": MAX_POST_CHARS,
            "max_lines": MAX_POST_LINES,
        },
    }
