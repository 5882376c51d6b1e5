"""
HTTP Basic authentication against the synchronized credential pair.
"""

import base64
import binascii
import hmac
import logging

from kubevirtbmc.constants import FALLBACK_PASSWORD, FALLBACK_USERNAME
from kubevirtbmc.secret import CredentialSource, Credentials

logger = logging.getLogger(__name__)

_BASIC_PREFIX = "basic "


def parse_basic_auth(header: str) -> tuple[str, str, bool]:
    """
    Parse an ``Authorization: Basic`` header value.

    The scheme is matched case-insensitively and the decoded text is split
    on the first colon, so passwords may contain colons.

    Returns:
        Tuple of (username, password, ok); ok is False for malformed input
    """
    if header[: len(_BASIC_PREFIX)].lower() != _BASIC_PREFIX:
        return "", "", False

    try:
        decoded = base64.b64decode(header[len(_BASIC_PREFIX) :], validate=True)
        text = decoded.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return "", "", False

    username, sep, password = text.partition(":")
    if not sep:
        return "", "", False
    return username, password, True


def _matches(pair: Credentials, username: str, password: str) -> bool:
    user_ok = hmac.compare_digest(pair.username.encode(), username.encode())
    pass_ok = hmac.compare_digest(pair.password.encode(), password.encode())
    return user_ok and pass_ok


class BasicAuthValidator:
    """
    Checks username/password pairs.

    Accepts the pair currently held by the credential source. When the
    fallback is allowed, the fixed fallback pair is accepted as well,
    whatever the secret says.
    """

    def __init__(
        self,
        credential_source: CredentialSource,
        allow_fallback: bool = True,
        fallback: tuple[str, str] = (FALLBACK_USERNAME, FALLBACK_PASSWORD),
    ):
        self.credential_source = credential_source
        self.allow_fallback = allow_fallback
        self.fallback = Credentials(*fallback)

    def validate(self, username: str, password: str) -> bool:
        current = self.credential_source.get_credentials()
        if not current.empty and _matches(current, username, password):
            return True

        if self.allow_fallback and not self.fallback.empty:
            return _matches(self.fallback, username, password)
        return False
