"""
In-process mock chain for local development and tests.

MockLedger simulates the counter contract and the FHE coprocessor on any
number of chains: it stores ciphertexts by handle, enforces the
(contract, user) binding of encrypted inputs, the paused flag, ownership and
the decrypt ACL. MockFHERuntime and MockCounterContract are thin views over a
shared ledger.

Every network-facing step goes through MockLedger.checkpoint(step), where
tests can inject failures (fail_next) or suspend the step (hold/release).
Steps: "bootstrap", "encrypt", "submit", "confirm", "read", "authorize",
"decrypt", "permission".
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import NetworkConfig
from .contract import EncryptedInput
from .errors import (
    AuthorizationError,
    ContractNotDeployedError,
    NetworkTimeoutError,
    UnauthorizedCallerError,
    error_from_revert,
)
from .hashing import ZERO_HANDLE, derive_handle, is_zero_handle
from .identity import NetworkSnapshot, SignerSnapshot
from .logging import get_logger
from .signatures import DecryptionAuthorization

UINT32 = 2**32


@dataclass
class _Counter:
    chain_id: int
    address: str
    owner: str
    handle: str = ZERO_HANDLE
    nonce: int = 0
    paused: bool = False
    protocol_id: int = 1
    permissions: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class _Input:
    plaintext: int
    contract: str
    user: str
    proof: bytes


@dataclass(frozen=True)
class _Ciphertext:
    chain_id: int
    contract: str
    value: int


class MockLedger:
    """Shared state of the simulated chains and coprocessor."""

    def __init__(self, *, latency: float = 0.0, clock: Callable[[], float] = time.time) -> None:
        self.latency = latency
        self.clock = clock
        self.calls: Counter[str] = Counter()
        self._counters: dict[tuple[int, str], _Counter] = {}
        self._inputs: dict[str, _Input] = {}
        self._ciphertexts: dict[str, _Ciphertext] = {}
        self._failures: dict[str, deque[BaseException]] = {}
        self._holds: dict[str, asyncio.Event] = {}
        self._ids = itertools.count(1)
        self._logger = get_logger()

    # -------------------------------------------------------------------------
    # Scenario control
    # -------------------------------------------------------------------------

    def fail_next(self, step: str, count: int = 1, error: BaseException | None = None) -> None:
        """Make the next `count` calls of `step` raise (default: a network timeout)."""
        queue = self._failures.setdefault(step, deque())
        for _ in range(count):
            queue.append(error if error is not None else NetworkTimeoutError())

    def hold(self, step: str) -> asyncio.Event:
        """Suspend every call of `step` until release(step)."""
        event = self._holds.get(step)
        if event is None:
            event = self._holds[step] = asyncio.Event()
        return event

    def release(self, step: str) -> None:
        event = self._holds.pop(step, None)
        if event is not None:
            event.set()

    async def checkpoint(self, step: str) -> None:
        self.calls[step] += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        event = self._holds.get(step)
        if event is not None:
            await event.wait()
        queue = self._failures.get(step)
        if queue:
            raise queue.popleft()

    # -------------------------------------------------------------------------
    # Deployment and owner operations
    # -------------------------------------------------------------------------

    def deploy(self, chain_id: int, owner: str, address: str | None = None) -> str:
        if address is None:
            address = "0x" + derive_handle("contract", chain_id, owner.lower(), next(self._ids))[2:42]
        self._counters[(chain_id, address.lower())] = _Counter(chain_id, address, owner)
        self._logger.debug("Deployed mock counter", chain_id=chain_id, contract=address)
        return address

    def is_deployed(self, chain_id: int, address: str) -> bool:
        return (chain_id, address.lower()) in self._counters

    def counter(self, chain_id: int, address: str) -> _Counter:
        try:
            return self._counters[(chain_id, address.lower())]
        except KeyError:
            raise ContractNotDeployedError(chain_id=chain_id) from None

    def set_paused(self, chain_id: int, address: str, caller: str, paused: bool) -> None:
        counter = self.counter(chain_id, address)
        self._require_owner(counter, caller)
        counter.paused = paused

    def transfer_ownership(self, chain_id: int, address: str, caller: str, new_owner: str) -> None:
        counter = self.counter(chain_id, address)
        self._require_owner(counter, caller)
        counter.owner = new_owner

    def clear_count(self, chain_id: int, address: str) -> int:
        """Plaintext of the current counter handle."""
        handle = self.counter(chain_id, address).handle
        if is_zero_handle(handle):
            return 0
        return self._ciphertexts[handle].value

    @staticmethod
    def _require_owner(counter: _Counter, caller: str) -> None:
        if caller.lower() != counter.owner.lower():
            raise UnauthorizedCallerError("Caller is not the owner")

    # -------------------------------------------------------------------------
    # Coprocessor
    # -------------------------------------------------------------------------

    def register_input(self, plaintext: int, contract: str, user: str) -> EncryptedInput:
        handle = derive_handle("input", contract.lower(), user.lower(), next(self._ids))
        proof = bytes.fromhex(derive_handle("proof", handle)[2:])
        self._inputs[handle] = _Input(plaintext, contract.lower(), user.lower(), proof)
        return EncryptedInput(handle=handle, proof=proof, contract=contract, user=user)

    def consume_input(self, handle: str, proof: bytes, contract: str, user: str) -> int:
        entry = self._inputs.get(handle)
        if entry is None or entry.proof != proof:
            raise error_from_revert("InvalidInputProof")
        if entry.contract != contract.lower() or entry.user != user.lower():
            raise error_from_revert("InvalidInputBinding")
        return entry.plaintext

    def apply(self, chain_id: int, address: str, sender: str, amount: int) -> str:
        counter = self.counter(chain_id, address)
        current = 0 if is_zero_handle(counter.handle) else self._ciphertexts[counter.handle].value
        counter.nonce += 1
        handle = derive_handle("count", chain_id, address.lower(), counter.nonce)
        self._ciphertexts[handle] = _Ciphertext(chain_id, address.lower(), (current + amount) % UINT32)
        counter.handle = handle
        counter.permissions.add(sender.lower())
        return handle

    def decrypt(self, chain_id: int, handle: str, contract: str, user: str) -> int:
        ciphertext = self._ciphertexts.get(handle)
        if ciphertext is None or ciphertext.chain_id != chain_id or ciphertext.contract != contract.lower():
            raise AuthorizationError("Unknown handle for this contract")
        if user.lower() not in self.counter(chain_id, contract).permissions:
            raise AuthorizationError("User is not allowed to decrypt this handle")
        return ciphertext.value

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def contract_factory(
        self,
        address: str,
        network: NetworkSnapshot,
        signer: SignerSnapshot | None,
    ) -> MockCounterContract:
        return MockCounterContract(self, network.network_id, address, signer.address if signer else None)

    def runtime_factory(self, chains: set[int] | None = None) -> MockRuntimeFactory:
        return MockRuntimeFactory(self, chains)

    def runtime_factory_for(self, network: NetworkConfig) -> MockRuntimeFactory:
        """Serve exactly the configured mock chains, each with its RPC endpoint."""
        return MockRuntimeFactory(
            self,
            set(network.mock_chains),
            rpc_urls={chain_id: network.rpc_url_for(chain_id) for chain_id in network.mock_chains},
        )


class MockTransaction:
    """A submitted counter update, applied on first successful wait()."""

    def __init__(self, ledger: MockLedger, chain_id: int, address: str, sender: str, amount: int) -> None:
        self._ledger = ledger
        self._chain_id = chain_id
        self._address = address
        self._sender = sender
        self._amount = amount
        self._receipt: dict[str, Any] | None = None
        self.hash = derive_handle("tx", chain_id, address.lower(), sender.lower(), next(ledger._ids))

    async def wait(self, confirmations: int = 1) -> dict[str, Any]:
        if self._receipt is not None:
            return self._receipt
        await self._ledger.checkpoint("confirm")
        handle = self._ledger.apply(self._chain_id, self._address, self._sender, self._amount)
        self._receipt = {"transactionHash": self.hash, "status": 1, "confirmations": confirmations, "handle": handle}
        return self._receipt


class MockCounterContract:
    """Counter contract view for one (chain, address, signer) binding."""

    def __init__(self, ledger: MockLedger, chain_id: int, address: str, signer: str | None) -> None:
        self._ledger = ledger
        self._chain_id = chain_id
        self.address = address
        self.signer = signer

    async def get_count(self) -> str:
        await self._ledger.checkpoint("read")
        return self._ledger.counter(self._chain_id, self.address).handle

    async def increment(self, ciphertext: str, proof: bytes) -> MockTransaction:
        return await self._submit(ciphertext, proof, 1)

    async def decrement(self, ciphertext: str, proof: bytes) -> MockTransaction:
        return await self._submit(ciphertext, proof, -1)

    async def has_permission(self, address: str) -> bool:
        await self._ledger.checkpoint("permission")
        return address.lower() in self._ledger.counter(self._chain_id, self.address).permissions

    async def is_paused(self) -> bool:
        await self._ledger.checkpoint("read")
        return self._ledger.counter(self._chain_id, self.address).paused

    async def _submit(self, ciphertext: str, proof: bytes, sign: int) -> MockTransaction:
        await self._ledger.checkpoint("submit")
        counter = self._ledger.counter(self._chain_id, self.address)
        if self.signer is None:
            raise UnauthorizedCallerError("No signer for write call")
        if counter.paused:
            raise error_from_revert("ContractPaused")
        amount = self._ledger.consume_input(ciphertext, proof, self.address, self.signer)
        return MockTransaction(self._ledger, self._chain_id, self.address, self.signer, sign * amount)


class MockFHERuntime:
    """FHE runtime backed by a MockLedger, bound to one chain."""

    def __init__(self, ledger: MockLedger, network_id: int, rpc_url: str | None = None) -> None:
        self._ledger = ledger
        self.network_id = network_id
        self.rpc_url = rpc_url
        self.signature_requests = 0

    async def encrypt(self, plaintext: int, contract: str, user: str) -> EncryptedInput:
        if not 0 <= plaintext < UINT32:
            raise ValueError(f"plaintext out of uint32 range: {plaintext}")
        await self._ledger.checkpoint("encrypt")
        return self._ledger.register_input(plaintext, contract, user)

    async def create_authorization(
        self,
        contract: str,
        signer: SignerSnapshot,
        duration: float,
    ) -> DecryptionAuthorization:
        self.signature_requests += 1
        await self._ledger.checkpoint("authorize")
        now = self._ledger.clock()
        return DecryptionAuthorization(
            contract=contract,
            network_id=self.network_id,
            signer=signer.address,
            signature=derive_handle("eip712", contract.lower(), self.network_id, signer.address.lower(), now),
            created_at=now,
            expires_at=now + duration,
            public_key=derive_handle("pk", signer.address.lower(), now),
        )

    async def request_decryption(
        self,
        handle: str,
        contract: str,
        authorization: DecryptionAuthorization,
    ) -> int:
        await self._ledger.checkpoint("decrypt")
        if authorization.network_id != self.network_id or authorization.contract.lower() != contract.lower():
            raise AuthorizationError("Authorization does not cover this contract/network")
        if authorization.is_expired(self._ledger.clock()):
            raise AuthorizationError("Authorization expired")
        return self._ledger.decrypt(self.network_id, handle, contract, authorization.signer)


class MockRuntimeFactory:
    """Creates MockFHERuntime instances for the chains it serves."""

    def __init__(
        self,
        ledger: MockLedger,
        chains: set[int] | None = None,
        rpc_urls: dict[int, str | None] | None = None,
    ) -> None:
        self._ledger = ledger
        self._chains = chains
        self._rpc_urls = rpc_urls or {}

    async def __call__(self, network: NetworkSnapshot, connectivity: Any = None) -> MockFHERuntime:
        await self._ledger.checkpoint("bootstrap")
        await self._ledger.checkpoint(f"bootstrap:{network.network_id}")
        if self._chains is not None and network.network_id not in self._chains:
            raise ConnectionError(f"No FHE runtime available for chain {network.network_id}")
        return MockFHERuntime(self._ledger, network.network_id, self._rpc_urls.get(network.network_id))


__all__ = [
    "UINT32",
    "MockLedger",
    "MockTransaction",
    "MockCounterContract",
    "MockFHERuntime",
    "MockRuntimeFactory",
]
