"""Tests for the FHE runtime bootstrapper."""

import asyncio

import pytest

from tests._controller_testkit import CHAIN, OTHER_CHAIN, FakeProvider, wait_until
from veil_client.errors import RuntimeBootstrapError
from veil_client.identity import ChainSignerIdentity, NetworkSnapshot
from veil_client.mock import MockLedger
from veil_client.runtime import FHERuntimeBootstrapper, RuntimeStatus


@pytest.fixture
def ledger():
    return MockLedger()


@pytest.fixture
def bootstrapper(ledger):
    return FHERuntimeBootstrapper(ledger.runtime_factory({CHAIN, OTHER_CHAIN}))


def network(chain_id: int) -> NetworkSnapshot:
    return NetworkSnapshot(chain_id, captured_at=1)


class TestBootstrap:
    """Tests for explicit bootstrap calls."""

    def test_initial_state(self, bootstrapper):
        assert bootstrapper.status is RuntimeStatus.IDLE
        assert bootstrapper.instance is None
        assert not bootstrapper.is_ready

    @pytest.mark.asyncio
    async def test_bootstrap_ready(self, bootstrapper):
        runtime = await bootstrapper.bootstrap(network(CHAIN))

        assert runtime is not None
        assert runtime.network_id == CHAIN
        assert bootstrapper.status is RuntimeStatus.READY
        assert bootstrapper.instance is runtime
        assert bootstrapper.instance_for(network(CHAIN)) is runtime
        assert bootstrapper.instance_for(network(OTHER_CHAIN)) is None
        assert bootstrapper.instance_for(None) is None

    @pytest.mark.asyncio
    async def test_no_network_goes_idle(self, bootstrapper):
        await bootstrapper.bootstrap(network(CHAIN))

        result = await bootstrapper.bootstrap(None)

        assert result is None
        assert bootstrapper.status is RuntimeStatus.IDLE
        assert bootstrapper.instance is None

    @pytest.mark.asyncio
    async def test_failure_sets_error_without_retry(self, ledger):
        bootstrapper = FHERuntimeBootstrapper(ledger.runtime_factory({CHAIN}))

        with pytest.raises(RuntimeBootstrapError) as exc_info:
            await bootstrapper.bootstrap(network(5))

        assert bootstrapper.status is RuntimeStatus.ERROR
        assert bootstrapper.error is exc_info.value
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert bootstrapper.instance is None

        await asyncio.sleep(0)
        assert ledger.calls["bootstrap"] == 1

    @pytest.mark.asyncio
    async def test_rebootstrap_after_error(self, ledger):
        bootstrapper = FHERuntimeBootstrapper(ledger.runtime_factory())
        ledger.fail_next("bootstrap", 1, ConnectionError("relayer unreachable"))

        with pytest.raises(RuntimeBootstrapError):
            await bootstrapper.bootstrap(network(CHAIN))
        runtime = await bootstrapper.bootstrap(network(CHAIN))

        assert runtime is not None
        assert bootstrapper.status is RuntimeStatus.READY
        assert bootstrapper.error is None

    @pytest.mark.asyncio
    async def test_superseded_bootstrap_is_discarded(self, ledger, bootstrapper):
        ledger.hold(f"bootstrap:{CHAIN}")

        slow = asyncio.create_task(bootstrapper.bootstrap(network(CHAIN)))
        await wait_until(lambda: ledger.calls[f"bootstrap:{CHAIN}"] == 1)
        fast = await bootstrapper.bootstrap(network(OTHER_CHAIN))

        ledger.release(f"bootstrap:{CHAIN}")
        assert await slow is None

        assert bootstrapper.status is RuntimeStatus.READY
        assert bootstrapper.instance is fast
        assert bootstrapper.network.network_id == OTHER_CHAIN

    @pytest.mark.asyncio
    async def test_superseded_failure_is_ignored(self, ledger, bootstrapper):
        ledger.hold(f"bootstrap:{CHAIN}")
        ledger.fail_next(f"bootstrap:{CHAIN}", 1, ConnectionError("late failure"))

        slow = asyncio.create_task(bootstrapper.bootstrap(network(CHAIN)))
        await wait_until(lambda: ledger.calls[f"bootstrap:{CHAIN}"] == 1)
        await bootstrapper.bootstrap(network(OTHER_CHAIN))

        ledger.release(f"bootstrap:{CHAIN}")
        assert await slow is None
        assert bootstrapper.status is RuntimeStatus.READY
        assert bootstrapper.error is None

    @pytest.mark.asyncio
    async def test_status_listeners(self, bootstrapper):
        seen = []
        unsubscribe = bootstrapper.subscribe(seen.append)

        await bootstrapper.bootstrap(network(CHAIN))
        unsubscribe()
        await bootstrapper.bootstrap(None)

        assert seen == [RuntimeStatus.BOOTSTRAPPING, RuntimeStatus.READY]


class TestAttach:
    """Tests for identity-driven bootstrapping."""

    @pytest.mark.asyncio
    async def test_attach_bootstraps_current_network(self, bootstrapper):
        identity = ChainSignerIdentity(CHAIN)

        bootstrapper.attach(identity)
        status = await bootstrapper.wait_settled()

        assert status is RuntimeStatus.READY
        assert bootstrapper.network.network_id == CHAIN

    @pytest.mark.asyncio
    async def test_network_change_rebootstraps(self, bootstrapper):
        identity = ChainSignerIdentity(CHAIN)
        bootstrapper.attach(identity)
        await bootstrapper.wait_settled()

        identity.set_network(OTHER_CHAIN)
        await bootstrapper.wait_settled()

        assert bootstrapper.instance.network_id == OTHER_CHAIN

    @pytest.mark.asyncio
    async def test_signer_change_does_not_rebootstrap(self, ledger, bootstrapper):
        identity = ChainSignerIdentity(CHAIN)
        bootstrapper.attach(identity)
        await bootstrapper.wait_settled()

        identity.connect("0x70997970C51812dc3A010C7d01b50e0d17dc79C8", FakeProvider())
        await bootstrapper.wait_settled()

        assert ledger.calls["bootstrap"] == 1

    @pytest.mark.asyncio
    async def test_quick_switch_keeps_latest_network(self, ledger, bootstrapper):
        identity = ChainSignerIdentity(CHAIN)
        ledger.hold(f"bootstrap:{CHAIN}")
        bootstrapper.attach(identity)
        await wait_until(lambda: ledger.calls[f"bootstrap:{CHAIN}"] == 1)

        identity.set_network(OTHER_CHAIN)
        await bootstrapper.wait_settled()
        ledger.release(f"bootstrap:{CHAIN}")
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert bootstrapper.status is RuntimeStatus.READY
        assert bootstrapper.instance.network_id == OTHER_CHAIN

    @pytest.mark.asyncio
    async def test_detach(self, ledger, bootstrapper):
        identity = ChainSignerIdentity(CHAIN)
        bootstrapper.attach(identity)
        await bootstrapper.wait_settled()
        bootstrapper.detach()

        identity.set_network(OTHER_CHAIN)
        await bootstrapper.wait_settled()

        assert ledger.calls["bootstrap"] == 1
        assert bootstrapper.network.network_id == CHAIN
