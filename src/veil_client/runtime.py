"""
FHE runtime protocol and network-scoped bootstrapper.

The FHE runtime is an opaque capability: it encrypts plaintext inputs bound
to a (contract, user) pair, signs decryption authorizations, and decrypts
handles given a matching authorization. A runtime instance is only valid for
the network it was created on, so FHERuntimeBootstrapper recreates it on
every network change and drops results of superseded bootstraps.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from .contract import EncryptedInput
from .errors import RuntimeBootstrapError
from .identity import ChainSignerIdentity, IdentityChange, NetworkSnapshot, SignerSnapshot
from .logging import get_logger
from .signatures import DecryptionAuthorization


class RuntimeStatus(str, Enum):
    """Bootstrapper lifecycle states.

    State transitions:
    - IDLE -> BOOTSTRAPPING (bootstrap requested)
    - BOOTSTRAPPING -> READY (instance created for the current network)
    - BOOTSTRAPPING -> ERROR (creation failed; no automatic retry)
    - * -> BOOTSTRAPPING (network changed or explicit rebootstrap)
    - * -> IDLE (no network)
    """

    IDLE = "idle"
    BOOTSTRAPPING = "loading"
    READY = "ready"
    ERROR = "error"


@runtime_checkable
class FHERuntime(Protocol):
    """Capability surface of an FHE runtime bound to one network."""

    network_id: int

    async def encrypt(self, plaintext: int, contract: str, user: str) -> EncryptedInput:
        """Encrypt `plaintext` as a 32-bit unsigned input bound to (contract, user)."""
        ...

    async def create_authorization(
        self,
        contract: str,
        signer: SignerSnapshot,
        duration: float,
    ) -> DecryptionAuthorization:
        """Prompt the signer for a decryption signature valid for `duration` seconds."""
        ...

    async def request_decryption(
        self,
        handle: str,
        contract: str,
        authorization: DecryptionAuthorization,
    ) -> int:
        ...


class RuntimeFactory(Protocol):
    """Creates an FHE runtime for a network."""

    async def __call__(self, network: NetworkSnapshot, connectivity: Any) -> FHERuntime:
        ...


StatusListener = Callable[[RuntimeStatus], Any]


class FHERuntimeBootstrapper:
    """
    Owns the FHE runtime instance for the current network.

    Each bootstrap is tagged with a generation number. When a bootstrap
    finishes, its result is applied only if no newer bootstrap has started
    since; otherwise it is discarded.
    """

    def __init__(self, factory: RuntimeFactory) -> None:
        self._factory = factory
        self._status = RuntimeStatus.IDLE
        self._instance: FHERuntime | None = None
        self._network: NetworkSnapshot | None = None
        self._error: RuntimeBootstrapError | None = None
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._listeners: list[StatusListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._logger = get_logger()

    @property
    def status(self) -> RuntimeStatus:
        return self._status

    @property
    def error(self) -> RuntimeBootstrapError | None:
        return self._error

    @property
    def network(self) -> NetworkSnapshot | None:
        return self._network

    @property
    def instance(self) -> FHERuntime | None:
        """The runtime, only while READY."""
        return self._instance if self._status is RuntimeStatus.READY else None

    @property
    def is_ready(self) -> bool:
        return self._status is RuntimeStatus.READY

    def instance_for(self, network: NetworkSnapshot | None) -> FHERuntime | None:
        """The runtime if READY and bound to `network`'s id."""
        if self.instance is None or network is None or self._network is None:
            return None
        if self._network.network_id != network.network_id:
            return None
        return self._instance

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def bootstrap(self, network: NetworkSnapshot | None, connectivity: Any = None) -> FHERuntime | None:
        """
        Create a runtime for `network`, superseding any bootstrap in flight.

        Returns the runtime, or None when this bootstrap was superseded.

        Raises:
            RuntimeBootstrapError: creation failed and this bootstrap is current
        """
        self._generation += 1
        generation = self._generation
        self._instance = None
        self._error = None
        self._network = network

        if network is None:
            self._set_status(RuntimeStatus.IDLE)
            return None

        self._set_status(RuntimeStatus.BOOTSTRAPPING)
        self._logger.info("Bootstrapping FHE runtime", chain_id=network.network_id, generation=generation)

        try:
            instance = await self._factory(network, connectivity)
        except Exception as e:
            if generation != self._generation:
                self._logger.debug("Discarding failed superseded bootstrap", generation=generation)
                return None
            self._error = RuntimeBootstrapError(
                f"FHE runtime bootstrap failed on chain {network.network_id}: {e}",
                cause=e,
            )
            self._logger.log_error(self._error)
            self._set_status(RuntimeStatus.ERROR)
            raise self._error from e

        if generation != self._generation:
            self._logger.info(
                "Discarding superseded FHE runtime",
                chain_id=network.network_id,
                generation=generation,
            )
            return None

        self._instance = instance
        self._set_status(RuntimeStatus.READY)
        self._logger.info("FHE runtime ready", chain_id=network.network_id)
        return instance

    def start_bootstrap(self, network: NetworkSnapshot | None, connectivity: Any = None) -> asyncio.Task:
        """Schedule bootstrap() as a task. Requires a running event loop."""
        task = asyncio.get_running_loop().create_task(self._run_bootstrap(network, connectivity))
        self._task = task
        return task

    async def _run_bootstrap(self, network: NetworkSnapshot | None, connectivity: Any) -> FHERuntime | None:
        try:
            return await self.bootstrap(network, connectivity)
        except RuntimeBootstrapError:
            # Surfaced through status/error.
            return None

    async def wait_settled(self) -> RuntimeStatus:
        """Wait for the most recently scheduled bootstrap task to finish."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)
        return self._status

    def attach(self, identity: ChainSignerIdentity, connectivity: Any = None) -> asyncio.Task:
        """
        Bootstrap for the identity's current network now and again on every
        network change. Requires a running event loop.

        `connectivity` overrides the signer's provider as the connection handle.
        """
        self.detach()

        def resolve_connectivity() -> Any:
            return connectivity if connectivity is not None else identity.connectivity

        def on_change(change: IdentityChange) -> None:
            if change.kind == "network":
                self.start_bootstrap(identity.current_network(), resolve_connectivity())

        self._unsubscribe = identity.subscribe(on_change)
        return self.start_bootstrap(identity.current_network(), resolve_connectivity())

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _set_status(self, status: RuntimeStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for listener in list(self._listeners):
            listener(status)


__all__ = [
    "RuntimeStatus",
    "FHERuntime",
    "RuntimeFactory",
    "StatusListener",
    "FHERuntimeBootstrapper",
]
