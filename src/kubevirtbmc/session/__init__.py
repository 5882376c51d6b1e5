"""
Authentication session layer for the virtbmc agent.

Provides the session token store, Basic credential validation against the
synchronized secret, and the aiohttp middleware combining both.
"""

from .authenticator import (
    Authenticator,
    AuthResult,
    AuthState,
    create_auth_middleware,
)
from .basic_auth import BasicAuthValidator, parse_basic_auth
from .token_store import SessionRecord, TokenStore, canonical_json, generate_token

__all__ = [
    "AuthResult",
    "AuthState",
    "Authenticator",
    "BasicAuthValidator",
    "SessionRecord",
    "TokenStore",
    "canonical_json",
    "create_auth_middleware",
    "generate_token",
    "parse_basic_auth",
]
