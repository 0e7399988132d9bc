"""Tests for the in-process mock chain."""

import asyncio

import pytest

from tests._controller_testkit import ALICE, BOB, CHAIN, DEPLOYER, OTHER_CHAIN, FakeProvider
from veil_client.config import NetworkConfig
from veil_client.errors import (
    AuthorizationError,
    ContractNotDeployedError,
    ContractPausedError,
    ContractRevertedError,
    NetworkTimeoutError,
    UnauthorizedCallerError,
)
from veil_client.hashing import ZERO_HANDLE
from veil_client.identity import NetworkSnapshot, SignerSnapshot
from veil_client.mock import UINT32, MockLedger


@pytest.fixture
def ledger():
    return MockLedger()


@pytest.fixture
def address(ledger):
    return ledger.deploy(CHAIN, DEPLOYER)


def bind(ledger, address, signer=ALICE, chain_id=CHAIN):
    snapshot = SignerSnapshot(signer, FakeProvider()) if signer else None
    return ledger.contract_factory(address, NetworkSnapshot(chain_id, 1), snapshot)


async def runtime_for(ledger, chain_id=CHAIN):
    return await ledger.runtime_factory()(NetworkSnapshot(chain_id, 1))


class TestDeployment:
    @pytest.mark.asyncio
    async def test_initial_handle_is_zero(self, ledger, address):
        assert ledger.is_deployed(CHAIN, address)
        assert not ledger.is_deployed(OTHER_CHAIN, address)
        assert await bind(ledger, address).get_count() == ZERO_HANDLE

    def test_unknown_contract(self, ledger):
        with pytest.raises(ContractNotDeployedError):
            ledger.counter(CHAIN, "0x" + "11" * 20)

    def test_pause_requires_owner(self, ledger, address):
        with pytest.raises(UnauthorizedCallerError) as exc_info:
            ledger.set_paused(CHAIN, address, ALICE, True)
        assert exc_info.value.revert_name == "NotOwner"

        ledger.set_paused(CHAIN, address, DEPLOYER, True)
        assert ledger.counter(CHAIN, address).paused

    def test_transfer_ownership(self, ledger, address):
        ledger.transfer_ownership(CHAIN, address, DEPLOYER, ALICE)

        with pytest.raises(UnauthorizedCallerError):
            ledger.set_paused(CHAIN, address, DEPLOYER, True)
        ledger.set_paused(CHAIN, address, ALICE, True)


class TestCounter:
    @pytest.mark.asyncio
    async def test_increment_and_decrypt(self, ledger, address):
        runtime = await runtime_for(ledger)
        contract = bind(ledger, address)

        encrypted = await runtime.encrypt(5, address, ALICE)
        tx = await contract.increment(encrypted.handle, encrypted.proof)
        receipt = await tx.wait()

        assert receipt["status"] == 1
        assert await tx.wait() is receipt
        handle = await contract.get_count()
        assert handle == receipt["handle"]
        assert await contract.has_permission(ALICE)
        assert not await contract.has_permission(BOB)

        authorization = await runtime.create_authorization(address, SignerSnapshot(ALICE, None), 60)
        assert await runtime.request_decryption(handle, address, authorization) == 5

    @pytest.mark.asyncio
    async def test_decrement_wraps(self, ledger, address):
        runtime = await runtime_for(ledger)
        contract = bind(ledger, address)

        encrypted = await runtime.encrypt(3, address, ALICE)
        await (await contract.decrement(encrypted.handle, encrypted.proof)).wait()

        assert ledger.clear_count(CHAIN, address) == UINT32 - 3

    @pytest.mark.asyncio
    async def test_encrypt_range(self, ledger, address):
        runtime = await runtime_for(ledger)
        with pytest.raises(ValueError):
            await runtime.encrypt(-1, address, ALICE)
        with pytest.raises(ValueError):
            await runtime.encrypt(UINT32, address, ALICE)

    @pytest.mark.asyncio
    async def test_input_bound_to_user(self, ledger, address):
        runtime = await runtime_for(ledger)
        encrypted = await runtime.encrypt(1, address, ALICE)

        with pytest.raises(ContractRevertedError) as exc_info:
            await bind(ledger, address, signer=BOB).increment(encrypted.handle, encrypted.proof)

        assert exc_info.value.revert_name == "InvalidInputBinding"

    @pytest.mark.asyncio
    async def test_bad_proof(self, ledger, address):
        runtime = await runtime_for(ledger)
        encrypted = await runtime.encrypt(1, address, ALICE)

        with pytest.raises(ContractRevertedError) as exc_info:
            await bind(ledger, address).increment(encrypted.handle, b"forged")

        assert exc_info.value.revert_name == "InvalidInputProof"

    @pytest.mark.asyncio
    async def test_paused_rejects_writes(self, ledger, address):
        runtime = await runtime_for(ledger)
        ledger.set_paused(CHAIN, address, DEPLOYER, True)
        encrypted = await runtime.encrypt(1, address, ALICE)

        with pytest.raises(ContractPausedError):
            await bind(ledger, address).increment(encrypted.handle, encrypted.proof)
        assert await bind(ledger, address).is_paused()

    @pytest.mark.asyncio
    async def test_write_without_signer(self, ledger, address):
        with pytest.raises(UnauthorizedCallerError):
            await bind(ledger, address, signer=None).increment("0x00", b"")

    @pytest.mark.asyncio
    async def test_decrypt_without_permission(self, ledger, address):
        runtime = await runtime_for(ledger)
        ledger.apply(CHAIN, address, ALICE, 2)
        handle = ledger.counter(CHAIN, address).handle
        authorization = await runtime.create_authorization(address, SignerSnapshot(BOB, None), 60)

        with pytest.raises(AuthorizationError):
            await runtime.request_decryption(handle, address, authorization)

    @pytest.mark.asyncio
    async def test_authorization_for_other_network(self, ledger, address):
        runtime = await runtime_for(ledger)
        other = await runtime_for(ledger, OTHER_CHAIN)
        ledger.apply(CHAIN, address, ALICE, 2)
        handle = ledger.counter(CHAIN, address).handle
        authorization = await other.create_authorization(address, SignerSnapshot(ALICE, None), 60)

        with pytest.raises(AuthorizationError):
            await runtime.request_decryption(handle, address, authorization)


class TestScenarioControl:
    @pytest.mark.asyncio
    async def test_fail_next(self, ledger, address):
        ledger.fail_next("read", 2)
        contract = bind(ledger, address)

        for _ in range(2):
            with pytest.raises(NetworkTimeoutError):
                await contract.get_count()
        assert await contract.get_count() == ZERO_HANDLE
        assert ledger.calls["read"] == 3

    @pytest.mark.asyncio
    async def test_hold_and_release(self, ledger, address):
        ledger.hold("read")
        task = asyncio.create_task(bind(ledger, address).get_count())
        await asyncio.sleep(0)
        assert not task.done()

        ledger.release("read")
        assert await task == ZERO_HANDLE

    @pytest.mark.asyncio
    async def test_unsupported_chain(self, ledger):
        factory = ledger.runtime_factory({CHAIN})
        with pytest.raises(ConnectionError):
            await factory(NetworkSnapshot(OTHER_CHAIN, 1))

    @pytest.mark.asyncio
    async def test_runtime_factory_follows_network_config(self, ledger):
        network = NetworkConfig(
            rpc_urls={OTHER_CHAIN: "https://sepolia.example/rpc"},
            mock_chains={CHAIN: "http://127.0.0.1:8545"},
        )
        factory = ledger.runtime_factory_for(network)

        runtime = await factory(NetworkSnapshot(CHAIN, 1))
        assert runtime.rpc_url == "http://127.0.0.1:8545"
        with pytest.raises(ConnectionError):
            await factory(NetworkSnapshot(OTHER_CHAIN, 1))
