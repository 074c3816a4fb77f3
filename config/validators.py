"""
Configuration Validation for ChirpNest

This module contains configuration validation logic.
Kept apart from settings.py so settings stay a plain list of values.
"""

from utils.exceptions import ConfigurationError


def validate_settings():
    """
    Validate that all required settings are properly configured.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    # Required environment variables
    required_vars = [
        ("SUPABASE_URL", settings.SUPABASE_URL),
        ("SUPABASE_KEY", settings.SUPABASE_KEY),
    ]

    for var_name, var_value in required_vars:
        if not var_value:
            errors.append(f"Missing required environment variable: {var_name}")

    if settings.SUPABASE_URL and not settings.SUPABASE_URL.startswith(("http://", "https://")):
        errors.append(f"SUPABASE_URL must be an http(s) URL, got {settings.SUPABASE_URL}")

    # Credentials are optional but must come in pairs
    if bool(settings.CHIRPNEST_EMAIL) != bool(settings.CHIRPNEST_PASSWORD):
        errors.append("CHIRPNEST_EMAIL and CHIRPNEST_PASSWORD must be set together.")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("FEED_PAGE_SIZE", settings.FEED_PAGE_SIZE, 1, 100),
        ("MY_POSTS_PAGE_SIZE", settings.MY_POSTS_PAGE_SIZE, 1, 100),
        ("SAVED_POSTS_PAGE_SIZE", settings.SAVED_POSTS_PAGE_SIZE, 1, 100),
        ("MAX_POST_CHARS", settings.MAX_POST_CHARS, 1, 1000),
        ("MAX_POST_LINES", settings.MAX_POST_LINES, 1, 50),
        ("COLLAPSED_POST_LENGTH", settings.COLLAPSED_POST_LENGTH, 1, settings.MAX_POST_CHARS),
        ("NOTIFICATION_HISTORY", settings.NOTIFICATION_HISTORY, 1, 1000),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    if not settings.REALTIME_CHANNEL:
        errors.append("REALTIME_CHANNEL must not be empty")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True
