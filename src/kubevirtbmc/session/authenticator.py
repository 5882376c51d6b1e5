"""
Request authentication for the agent's HTTP endpoints.

Requests are accepted when they carry a known session token in
``X-Auth-Token``, or valid Basic credentials in ``Authorization``. The token
is evaluated first; anything else is rejected with 401.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from aiohttp import web

from kubevirtbmc.constants import AUTH_TOKEN_HEADER, AUTHORIZATION_HEADER
from kubevirtbmc.observability.logging import OperatorLogger
from kubevirtbmc.observability.metrics import metrics_collector

from .basic_auth import BasicAuthValidator, parse_basic_auth
from .token_store import TokenStore

audit_logger = OperatorLogger(__name__)


class AuthState(str, Enum):
    AUTHORIZED = "Authorized"
    REJECTED = "Rejected"


@dataclass(frozen=True)
class AuthResult:
    """Final state of one authentication decision."""

    state: AuthState
    method: str | None = None
    username: str = ""

    @property
    def authorized(self) -> bool:
        return self.state is AuthState.AUTHORIZED


REJECTED = AuthResult(AuthState.REJECTED)


class Authenticator:
    """Token-then-basic authentication chain."""

    def __init__(self, token_store: TokenStore, validator: BasicAuthValidator):
        self.token_store = token_store
        self.validator = validator

    def authorize(
        self, headers: Mapping[str, str], remote: str | None = None
    ) -> AuthResult:
        """
        Decide whether a request may proceed.

        Args:
            headers: Request headers (case-insensitive mapping)
            remote: Remote address for the audit log

        Returns:
            AuthResult with the strategy that accepted the request, or a rejection
        """
        result = self._evaluate(headers)
        metrics_collector.record_auth_decision(result.method, result.authorized)
        audit_logger.log_auth_audit(
            result.method, result.username, result.authorized, remote
        )
        return result

    def _evaluate(self, headers: Mapping[str, str]) -> AuthResult:
        token = headers.get(AUTH_TOKEN_HEADER, "")
        if token:
            record, exists = self.token_store.get(token)
            if exists:
                return AuthResult(AuthState.AUTHORIZED, "token", record.username)

        authorization = headers.get(AUTHORIZATION_HEADER, "")
        if authorization:
            username, password, ok = parse_basic_auth(authorization)
            if ok and self.validator.validate(username, password):
                return AuthResult(AuthState.AUTHORIZED, "basic", username)

        return REJECTED


def create_auth_middleware(authenticator: Authenticator):
    """
    Build an aiohttp middleware enforcing the authentication chain.

    Authorized requests reach the handler with ``request["auth"]`` set to
    the AuthResult; all others get a plain-text 401.
    """

    @web.middleware
    async def auth_middleware(request: web.Request, handler):
        result = authenticator.authorize(request.headers, request.remote)
        if not result.authorized:
            return web.Response(status=401, text="Unauthorized")
        request["auth"] = result
        return await handler(request)

    return auth_middleware
