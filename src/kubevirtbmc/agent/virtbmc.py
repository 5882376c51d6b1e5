"""
virtbmc agent - one emulated BMC serving a single virtual machine.

Startup order:
1. Initialize the virtual machine resource manager, when one is supplied
2. Fetch the credentials, start the secret watch and wait for it to sync
3. Start the HTTP server with the authentication middleware
4. Start the protocol emulators
Shutdown runs in reverse and ends with the credential synchronizer.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from kubevirtbmc.constants import DEFAULT_LISTEN_ADDRESS, IPMI_PORT, REDFISH_PORT
from kubevirtbmc.observability.metrics import MetricsServer
from kubevirtbmc.secret import CredentialSynchronizer
from kubevirtbmc.session import Authenticator, BasicAuthValidator, TokenStore
from kubevirtbmc.settings import AgentSettings, agent_settings

from .server import ManagementServer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Options:
    """Launch options of the agent, as passed on the pod command line."""

    vm_namespace: str
    vm_name: str
    kubeconfig: str | None = None
    address: str = DEFAULT_LISTEN_ADDRESS
    ipmi_port: int = IPMI_PORT
    redfish_port: int = REDFISH_PORT
    secret_ref: str = ""


class ProtocolEmulator(Protocol):
    """A protocol front end (IPMI, Redfish) started and stopped by the agent."""

    name: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class ResourceManager(Protocol):
    """Access to the virtual machine the BMC controls."""

    def initialize(self, vm_namespace: str, vm_name: str) -> None: ...


class VirtBMC:
    """Wires the credential synchronizer, session layer and emulators together."""

    def __init__(
        self,
        options: Options,
        config: AgentSettings | None = None,
        synchronizer: CredentialSynchronizer | None = None,
        emulators: Sequence[ProtocolEmulator] = (),
        resource_manager: ResourceManager | None = None,
    ):
        """
        Build the agent.

        Raises:
            SecretReferenceError: If options.secret_ref is malformed
        """
        self.options = options
        self.config = config or agent_settings
        self.synchronizer = synchronizer or CredentialSynchronizer(
            options.secret_ref,
            kubeconfig=options.kubeconfig,
            watch_timeout_seconds=self.config.watch_timeout_seconds,
        )
        self.emulators = list(emulators)
        self.resource_manager = resource_manager

        self.token_store = TokenStore()
        self.validator = BasicAuthValidator(
            self.synchronizer,
            allow_fallback=self.config.allow_fallback_credentials,
            fallback=(self.config.fallback_username, self.config.fallback_password),
        )
        self.authenticator = Authenticator(self.token_store, self.validator)
        self.server = ManagementServer(
            self.authenticator,
            self.token_store,
            host=options.address,
            port=options.redfish_port,
        )
        self.metrics_server: MetricsServer | None = None
        self._started: list[ProtocolEmulator] = []

    async def _readiness(self) -> bool:
        return not self.synchronizer.enabled or self.synchronizer.synced.is_set()

    async def start(self) -> None:
        """
        Bring the agent up.

        Raises:
            CacheSyncTimeoutError: If the secret watch does not sync in time
        """
        logger.info(
            f"Initializing the VirtBMC agent for "
            f"{self.options.vm_namespace}/{self.options.vm_name}..."
        )

        if self.resource_manager is not None:
            await asyncio.to_thread(
                self.resource_manager.initialize,
                self.options.vm_namespace,
                self.options.vm_name,
            )

        await asyncio.to_thread(self.synchronizer.initialize)
        await asyncio.to_thread(
            self.synchronizer.run, self.config.cache_sync_timeout_seconds
        )

        if self.validator.allow_fallback:
            logger.warning(
                "Fallback credentials are accepted for basic authentication; "
                "set AGENT_ALLOW_FALLBACK_CREDENTIALS=false to disable them"
            )

        if self.config.metrics_port:
            self.metrics_server = MetricsServer(
                port=self.config.metrics_port,
                host=self.config.metrics_host,
                readiness_check=self._readiness,
            )
            await self.metrics_server.start()

        await self.server.start()

        for emulator in self.emulators:
            await emulator.start()
            self._started.append(emulator)
            logger.info(f"{emulator.name} emulator started")

    async def stop(self) -> None:
        logger.info("Gracefully shutting down the VirtBMC agent...")
        for emulator in reversed(self._started):
            try:
                await emulator.stop()
            except Exception as e:
                logger.error(f"Error stopping {emulator.name} emulator: {e}")
        self._started.clear()

        await self.server.stop()
        if self.metrics_server is not None:
            await self.metrics_server.stop()
            self.metrics_server = None

        await asyncio.to_thread(self.synchronizer.stop)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Start the agent, serve until stop_event is set, then shut down."""
        try:
            await self.start()
            await stop_event.wait()
        finally:
            await self.stop()
