"""
HTTP server of the virtbmc agent.

Hosts the agent's HTTP endpoints behind the authentication middleware. The
session routes issue, show and revoke session tokens; HTTP protocol
emulators mount their own routes on the same application.
"""

import logging
import uuid

from aiohttp import web

from kubevirtbmc.session import (
    Authenticator,
    SessionRecord,
    TokenStore,
    create_auth_middleware,
    generate_token,
)

logger = logging.getLogger(__name__)


class ManagementServer:
    """aiohttp application guarded by the token/basic authentication chain."""

    def __init__(
        self,
        authenticator: Authenticator,
        token_store: TokenStore,
        host: str = "0.0.0.0",
        port: int = 10080,
    ):
        """
        Initialize the server.

        Args:
            authenticator: Authentication chain applied to every route
            token_store: Store backing the session routes
            host: Address to bind to
            port: TCP port to listen on
        """
        self.authenticator = authenticator
        self.token_store = token_store
        self.host = host
        self.port = port
        self.app = web.Application(middlewares=[create_auth_middleware(authenticator)])
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_post("/sessions", self._create_session)
        self.app.router.add_get("/sessions/{session_id}", self._get_session)
        self.app.router.add_delete("/sessions/{session_id}", self._delete_session)

    def add_routes(self, routes: list[web.RouteDef]) -> None:
        """Mount additional routes; must be called before start()."""
        self.app.add_routes(routes)

    async def _create_session(self, request: web.Request) -> web.Response:
        """Issue a session token for the authenticated user."""
        auth = request["auth"]
        record = SessionRecord(id=uuid.uuid4().hex, username=auth.username)
        token = self.token_store.add(record)
        logger.info(
            f"Created session {record.id} for {record.username}",
            extra={"auth_method": auth.method},
        )
        return web.json_response(
            {"id": record.id, "username": record.username},
            status=201,
            headers={"X-Auth-Token": token, "Location": f"/sessions/{record.id}"},
        )

    async def _get_session(self, request: web.Request) -> web.Response:
        record, exists = self.token_store.get_by_session_id(
            request.match_info["session_id"]
        )
        if not exists:
            raise web.HTTPNotFound(text="Session not found")
        return web.json_response({"id": record.id, "username": record.username})

    async def _delete_session(self, request: web.Request) -> web.Response:
        """Revoke a session and its token."""
        record, exists = self.token_store.get_by_session_id(
            request.match_info["session_id"]
        )
        if not exists:
            raise web.HTTPNotFound(text="Session not found")
        self.token_store.remove(generate_token(record))
        logger.info(f"Removed session {record.id}")
        return web.Response(status=204)

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"HTTP service listens on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("HTTP service stopped")
