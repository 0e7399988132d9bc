"""
Ledger contract interface.

The controller talks to the encrypted counter contract only through the
CounterContract protocol below. Implementations translate node failures into
TransientNetworkError and reverts into ContractRejection (see
errors.error_from_revert).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .config import DeploymentsConfig
from .hashing import ZERO_HANDLE, is_zero_handle
from .identity import NetworkSnapshot, SignerSnapshot

ZERO_ADDRESS = "0x" + "00" * 20


@dataclass(frozen=True)
class EncryptedHandle:
    """On-chain reference to the encrypted counter value."""

    value: str
    produced_on_network: int
    produced_for_contract: str

    @property
    def is_zero(self) -> bool:
        return is_zero_handle(self.value)

    def is_valid_on(self, network_id: int | None) -> bool:
        return network_id is not None and self.produced_on_network == network_id


@dataclass(frozen=True)
class EncryptedInput:
    """Ciphertext input and proof bound to a (contract, user) pair."""

    handle: str
    proof: bytes
    contract: str
    user: str


@runtime_checkable
class Transaction(Protocol):
    """A submitted transaction."""

    hash: str

    async def wait(self, confirmations: int = 1) -> Any:
        """Resolve once the transaction has the requested confirmations."""
        ...


@runtime_checkable
class CounterContract(Protocol):
    """Read/write surface of the encrypted counter contract."""

    address: str

    async def get_count(self) -> str:
        """Return the current encrypted handle (0x-prefixed, 32 bytes)."""
        ...

    async def increment(self, ciphertext: str, proof: bytes) -> Transaction:
        ...

    async def decrement(self, ciphertext: str, proof: bytes) -> Transaction:
        ...

    async def has_permission(self, address: str) -> bool:
        ...


ContractFactory = Callable[[str, NetworkSnapshot, "SignerSnapshot | None"], CounterContract]


class ContractDeployments:
    """Known counter contract addresses keyed by chain id."""

    def __init__(self, contracts: Mapping[int, str] | None = None) -> None:
        self._contracts: dict[int, str] = {}
        for chain_id, address in (contracts or {}).items():
            self.register(chain_id, address)

    @classmethod
    def from_config(cls, config: DeploymentsConfig) -> ContractDeployments:
        return cls(config.contracts)

    def register(self, chain_id: int, address: str) -> None:
        if not address or address.lower() == ZERO_ADDRESS:
            raise ValueError(f"Invalid contract address for chain {chain_id}: {address!r}")
        self._contracts[int(chain_id)] = address

    def unregister(self, chain_id: int) -> None:
        self._contracts.pop(int(chain_id), None)

    def address_for(self, chain_id: int | None) -> str | None:
        if chain_id is None:
            return None
        return self._contracts.get(int(chain_id))

    def is_deployed(self, chain_id: int | None) -> bool:
        return self.address_for(chain_id) is not None

    def __contains__(self, chain_id: object) -> bool:
        return isinstance(chain_id, int) and chain_id in self._contracts


__all__ = [
    "ZERO_ADDRESS",
    "ZERO_HANDLE",
    "EncryptedHandle",
    "EncryptedInput",
    "Transaction",
    "CounterContract",
    "ContractFactory",
    "ContractDeployments",
]
