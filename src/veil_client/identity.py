"""
Chain and signer identity tracking.

ChainSignerIdentity holds the active network id and the active signing
identity. Every change produces a new immutable snapshot; values captured
earlier are checked against the current identity with is_same_network() and
is_same_signer() before they are surfaced.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .logging import get_logger, redact_address


@dataclass(frozen=True)
class NetworkSnapshot:
    """The network in effect at logical time `captured_at`."""

    network_id: int
    captured_at: int


@dataclass(frozen=True)
class SignerSnapshot:
    """
    A connected signing identity.

    `provider` is the wallet connection object the address was obtained from.
    Two snapshots denote the same signer only when the address matches and
    the provider is the very same object.
    """

    address: str
    provider: Any = field(compare=False, repr=False)
    captured_at: int = 0

    def matches(self, other: SignerSnapshot | None) -> bool:
        if other is None:
            return False
        return self.address.lower() == other.address.lower() and self.provider is other.provider


@dataclass(frozen=True)
class IdentityChange:
    """Notification sent to subscribers when the network or signer changes."""

    kind: Literal["network", "signer"]
    previous: NetworkSnapshot | SignerSnapshot | None
    current: NetworkSnapshot | SignerSnapshot | None


IdentityListener = Callable[[IdentityChange], Any]


class ChainSignerIdentity:
    """
    Tracks the current network and signer.

    Reads are pure. Mutations come from the wallet layer through
    set_network(), connect() and disconnect(); each one notifies subscribers
    synchronously.
    """

    def __init__(self, network_id: int | None = None) -> None:
        self._clock = itertools.count(1)
        self._network: NetworkSnapshot | None = None
        self._signer: SignerSnapshot | None = None
        self._listeners: list[IdentityListener] = []
        self._logger = get_logger()
        if network_id is not None:
            self._network = NetworkSnapshot(network_id, next(self._clock))

    # Reads

    def current_network(self) -> NetworkSnapshot | None:
        return self._network

    def current_signer(self) -> SignerSnapshot | None:
        return self._signer

    @property
    def network_id(self) -> int | None:
        return self._network.network_id if self._network else None

    @property
    def is_connected(self) -> bool:
        return self._signer is not None

    @property
    def connectivity(self) -> Any:
        """Connection handle of the current signer, if any."""
        return self._signer.provider if self._signer else None

    def is_same_network(self, snapshot: NetworkSnapshot | None) -> bool:
        current = self._network
        if current is None or snapshot is None:
            return current is None and snapshot is None
        return current.network_id == snapshot.network_id

    def is_same_signer(self, snapshot: SignerSnapshot | None) -> bool:
        current = self._signer
        if current is None or snapshot is None:
            return current is None and snapshot is None
        return current.matches(snapshot)

    # Mutations

    def set_network(self, network_id: int | None) -> NetworkSnapshot | None:
        """Switch the active network. Switching to the same id is a no-op."""
        previous = self._network
        if previous is not None and previous.network_id == network_id:
            return previous
        if previous is None and network_id is None:
            return None
        self._network = NetworkSnapshot(network_id, next(self._clock)) if network_id is not None else None
        self._logger.info(
            "Network changed",
            previous=previous.network_id if previous else None,
            current=network_id,
        )
        self._notify(IdentityChange("network", previous, self._network))
        return self._network

    def connect(self, address: str, provider: Any) -> SignerSnapshot:
        """Connect a signer, or switch to another account/provider."""
        if not address:
            raise ValueError("address is required")
        previous = self._signer
        snapshot = SignerSnapshot(address, provider, next(self._clock))
        if previous is not None and previous.matches(snapshot):
            return previous
        self._signer = snapshot
        self._logger.info("Signer changed", signer=redact_address(address))
        self._notify(IdentityChange("signer", previous, snapshot))
        return snapshot

    def disconnect(self) -> None:
        previous = self._signer
        if previous is None:
            return
        self._signer = None
        self._logger.info("Signer disconnected")
        self._notify(IdentityChange("signer", previous, None))

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: IdentityChange) -> None:
        for listener in list(self._listeners):
            listener(change)


__all__ = [
    "NetworkSnapshot",
    "SignerSnapshot",
    "IdentityChange",
    "IdentityListener",
    "ChainSignerIdentity",
]
