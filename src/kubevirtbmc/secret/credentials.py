"""
Credential synchronizer for the virtbmc agent.

Keeps an in-memory copy of the username/password pair stored in one
Kubernetes secret. A background thread lists the secret, then watches it
and swaps the pair whenever the secret changes. Request handlers read the
pair through the read-only ``CredentialSource`` protocol.
"""

import base64
import binascii
import logging
import random
import threading
from typing import Any, NamedTuple, Protocol

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from kubevirtbmc.constants import (
    DEFAULT_CACHE_SYNC_TIMEOUT,
    DEFAULT_WATCH_BACKOFF_MAX,
    DEFAULT_WATCH_TIMEOUT,
    SECRET_PASSWORD_KEY,
    SECRET_USERNAME_KEY,
)
from kubevirtbmc.errors import (
    CacheSyncTimeoutError,
    ConfigurationError,
    SecretReferenceError,
)
from kubevirtbmc.observability.metrics import metrics_collector
from kubevirtbmc.utils.kubernetes import get_kubernetes_client
from kubevirtbmc.utils.locks import ReadWriteLock

logger = logging.getLogger(__name__)


class Credentials(NamedTuple):
    """Username/password pair accepted by the agent."""

    username: str
    password: str

    @property
    def empty(self) -> bool:
        return not self.username and not self.password


EMPTY_CREDENTIALS = Credentials("", "")


class CredentialSource(Protocol):
    """Read-only view of the current credential pair."""

    def get_credentials(self) -> Credentials: ...


def parse_secret_ref(secret_ref: str) -> tuple[str, str]:
    """
    Split a ``namespace/name`` secret reference.

    Raises:
        SecretReferenceError: Unless the reference has exactly two non-empty parts
    """
    parts = secret_ref.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise SecretReferenceError(secret_ref)
    return parts[0], parts[1]


class CredentialSynchronizer:
    """
    Mirror of the credentials held in a Kubernetes secret.

    Constructed with an empty reference the synchronizer is disabled: it
    never contacts the API and always reports empty credentials.
    """

    def __init__(
        self,
        secret_ref: str,
        core_api: client.CoreV1Api | None = None,
        kubeconfig: str | None = None,
        watch_timeout_seconds: int = DEFAULT_WATCH_TIMEOUT,
    ):
        """
        Initialize the synchronizer.

        Args:
            secret_ref: Secret reference as ``namespace/name``, or "" to disable
            core_api: CoreV1Api to use, built from the cluster config if omitted
            kubeconfig: Optional kubeconfig path used when building the client
            watch_timeout_seconds: Server-side timeout of each watch request

        Raises:
            SecretReferenceError: If a non-empty reference is malformed
        """
        self.secret_ref = secret_ref
        self.watch_timeout_seconds = watch_timeout_seconds
        self.synced = threading.Event()

        self._lock = ReadWriteLock()
        self._credentials = EMPTY_CREDENTIALS
        self._present = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._watcher_lock = threading.Lock()
        self._active_watcher: watch.Watch | None = None

        if not secret_ref:
            self.namespace = ""
            self.name = ""
            self.core_api = None
            return

        self.namespace, self.name = parse_secret_ref(secret_ref)
        if core_api is None:
            try:
                core_api = client.CoreV1Api(get_kubernetes_client(kubeconfig))
            except config.ConfigException as e:
                raise ConfigurationError(
                    f"Failed to load Kubernetes configuration: {e}",
                    user_action="Run in a pod with a service account or pass --kubeconfig",
                ) from e
        self.core_api = core_api

    @property
    def enabled(self) -> bool:
        return self.core_api is not None

    def get_credentials(self) -> Credentials:
        """Return the current credential pair."""
        with self._lock.read_lock():
            return self._credentials

    def initialize(self) -> None:
        """Fetch the secret once so credentials are available before the watch syncs."""
        if not self.enabled:
            logger.info("No secret reference provided, authentication disabled")
            return

        try:
            secret = self.core_api.read_namespaced_secret(
                name=self.name, namespace=self.namespace
            )
        except ApiException as e:
            logger.warning(
                f"Authentication secret {self.secret_ref} not available: "
                f"{e.status} {e.reason}",
                extra={"secret_ref": self.secret_ref},
            )
            return
        except Exception as e:
            logger.warning(
                f"Failed to fetch authentication secret {self.secret_ref}: {e}",
                extra={"secret_ref": self.secret_ref},
            )
            return

        self._present = True
        self._update_credentials(secret, "INITIAL")

    def run(self, timeout: float = DEFAULT_CACHE_SYNC_TIMEOUT) -> None:
        """
        Start the watch thread and block until the first listing is applied.

        Raises:
            CacheSyncTimeoutError: If the listing did not complete in time
        """
        if not self.enabled:
            return

        if self._thread is None:
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._watch_loop,
                name=f"secret-watch-{self.namespace}-{self.name}",
                daemon=True,
            )
            self._thread.start()

        if not self.synced.wait(timeout):
            raise CacheSyncTimeoutError(self.secret_ref, timeout)
        logger.info(
            f"Credential synchronizer is running for {self.secret_ref}",
            extra={"secret_ref": self.secret_ref},
        )

    def stop(self, join_timeout: float = 5.0) -> None:
        """Stop the watch thread."""
        self._stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

        if self._thread is not None:
            self._thread.join(timeout=join_timeout)
            self._thread = None
        logger.info("Credential synchronizer stopped")

    def handle_event(self, event_type: str, secret: Any) -> None:
        """
        Apply one watch event for the secret.

        Args:
            event_type: ADDED, MODIFIED or DELETED; other types are ignored
            secret: V1Secret carried by the event
        """
        metadata = getattr(secret, "metadata", None)
        if metadata is None or metadata.name != self.name:
            return

        if event_type in ("ADDED", "MODIFIED"):
            self._present = True
            self._update_credentials(secret, event_type)
        elif event_type == "DELETED":
            self._present = False
            self._clear_credentials(event_type)

    def _update_credentials(self, secret: Any, event_type: str) -> bool:
        data = secret.data or {}
        if SECRET_USERNAME_KEY not in data or SECRET_PASSWORD_KEY not in data:
            logger.warning(
                f"Secret {self.secret_ref} does not contain required "
                f"'{SECRET_USERNAME_KEY}' and '{SECRET_PASSWORD_KEY}' keys",
                extra={"secret_ref": self.secret_ref},
            )
            metrics_collector.record_credential_event(event_type, "incomplete")
            return False

        try:
            username = base64.b64decode(data[SECRET_USERNAME_KEY]).decode("utf-8")
            password = base64.b64decode(data[SECRET_PASSWORD_KEY]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.warning(
                f"Secret {self.secret_ref} holds undecodable credentials: {e}",
                extra={"secret_ref": self.secret_ref},
            )
            metrics_collector.record_credential_event(event_type, "incomplete")
            return False

        with self._lock.write_lock():
            self._credentials = Credentials(username, password)

        metrics_collector.record_credential_event(event_type, "updated")
        logger.info(
            f"Updated authentication credentials from secret {self.secret_ref}",
            extra={"secret_ref": self.secret_ref},
        )
        return True

    def _clear_credentials(self, event_type: str) -> None:
        with self._lock.write_lock():
            self._credentials = EMPTY_CREDENTIALS

        metrics_collector.record_credential_event(event_type, "cleared")
        logger.warning(
            f"Authentication secret {self.secret_ref} was deleted, "
            "authentication may not work correctly",
            extra={"secret_ref": self.secret_ref},
        )

    def _list(self) -> str | None:
        """List the secret, apply the result and return the list resourceVersion."""
        listing = self.core_api.list_namespaced_secret(
            namespace=self.namespace, field_selector=f"metadata.name={self.name}"
        )
        items = listing.items or []
        if items:
            for item in items:
                self.handle_event("ADDED", item)
        elif self._present:
            # Deleted while the watch was not looking
            self._present = False
            self._clear_credentials("DELETED")

        return getattr(getattr(listing, "metadata", None), "resource_version", None)

    def _backoff(self, backoff_seconds: float) -> float:
        jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
        self._stop.wait(timeout=jittered)
        return min(backoff_seconds * 2, DEFAULT_WATCH_BACKOFF_MAX)

    def _watch_loop(self) -> None:
        """List-then-watch the secret until stopped."""
        resource_version: str | None = None
        backoff_seconds = 1.0

        while not self._stop.is_set():
            try:
                resource_version = self._list()
                self.synced.set()
                break
            except Exception:
                logger.exception(f"Initial list of secret {self.secret_ref} failed")
                backoff_seconds = self._backoff(backoff_seconds)

        backoff_seconds = 1.0
        while not self._stop.is_set():
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                stream = watcher.stream(
                    self.core_api.list_namespaced_secret,
                    namespace=self.namespace,
                    field_selector=f"metadata.name={self.name}",
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                )
                for event in stream:
                    if self._stop.is_set():
                        break
                    obj = event.get("object")
                    if obj is None:
                        continue
                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and metadata.resource_version:
                        resource_version = metadata.resource_version
                    self.handle_event(str(event.get("type", "")), obj)

                backoff_seconds = 1.0
            except ApiException as e:
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    try:
                        resource_version = self._list()
                    except Exception:
                        logger.exception("Failed to re-list after 410")
                        resource_version = None
                        backoff_seconds = self._backoff(backoff_seconds)
                    continue

                logger.exception(f"Watch of secret {self.secret_ref} failed")
                backoff_seconds = self._backoff(backoff_seconds)
            except Exception:
                logger.exception(f"Unexpected error watching secret {self.secret_ref}")
                backoff_seconds = self._backoff(backoff_seconds)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None
