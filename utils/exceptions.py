"""
Custom Exception Classes for ChirpNest

This module defines custom exceptions for better error handling and
categorization of failures across the client.
"""


class ChirpNestError(Exception):
    """Base exception for all ChirpNest errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ChirpNestError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Backend Errors
# =============================================================================

class BackendError(ChirpNestError):
    """Base exception for errors raised by the hosted backend."""
    pass


class BackendConnectionError(BackendError):
    """Raised when the backend client is missing or the network is unreachable."""
    pass


class QueryError(BackendError):
    """Raised when a backend query fails."""
    pass


class MutationError(BackendError):
    """Raised when an insert or delete is rejected by the backend."""
    pass


# =============================================================================
# Data Errors
# =============================================================================

class RecordValidationError(ChirpNestError):
    """Raised when a fetched record does not have the expected shape."""
    pass


# =============================================================================
# Auth Errors
# =============================================================================

class AuthenticationError(ChirpNestError):
    """Raised when signing in, signing up or signing out fails."""
    pass


# =============================================================================
# Composer Errors
# =============================================================================

class ComposerError(ChirpNestError):
    """Raised when a draft cannot be turned into a post."""
    pass
