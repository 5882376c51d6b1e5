"""
Credential synchronization for the virtbmc agent.
"""

from .credentials import (
    EMPTY_CREDENTIALS,
    CredentialSource,
    Credentials,
    CredentialSynchronizer,
    parse_secret_ref,
)

__all__ = [
    "EMPTY_CREDENTIALS",
    "CredentialSource",
    "CredentialSynchronizer",
    "Credentials",
    "parse_secret_ref",
]
