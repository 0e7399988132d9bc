"""Tests for chain and signer identity tracking."""

import pytest

from tests._controller_testkit import ALICE, BOB, CHAIN, OTHER_CHAIN, FakeProvider
from veil_client.identity import ChainSignerIdentity, NetworkSnapshot, SignerSnapshot


class TestSnapshots:
    def test_signer_match_requires_same_provider(self):
        provider = FakeProvider()
        first = SignerSnapshot(ALICE, provider, 1)

        assert first.matches(SignerSnapshot(ALICE.lower(), provider, 2))
        assert not first.matches(SignerSnapshot(ALICE, FakeProvider(), 2))
        assert not first.matches(SignerSnapshot(BOB, provider, 2))
        assert not first.matches(None)

    def test_network_snapshot_is_frozen(self):
        snapshot = NetworkSnapshot(CHAIN, 1)
        with pytest.raises(AttributeError):
            snapshot.network_id = OTHER_CHAIN


class TestChainSignerIdentity:
    """Tests for ChainSignerIdentity."""

    def test_initial_state(self):
        identity = ChainSignerIdentity()
        assert identity.current_network() is None
        assert identity.current_signer() is None
        assert not identity.is_connected
        assert identity.connectivity is None
        assert identity.is_same_network(None)
        assert identity.is_same_signer(None)

    def test_is_same_network_compares_ids(self):
        identity = ChainSignerIdentity(CHAIN)
        captured = identity.current_network()

        identity.set_network(OTHER_CHAIN)
        assert not identity.is_same_network(captured)

        identity.set_network(CHAIN)
        assert identity.is_same_network(captured)
        assert identity.current_network().captured_at > captured.captured_at

    def test_is_same_signer(self):
        identity = ChainSignerIdentity(CHAIN)
        provider = FakeProvider()
        captured = identity.connect(ALICE, provider)

        assert identity.is_same_signer(captured)
        assert not identity.is_same_signer(None)

        identity.connect(ALICE, FakeProvider())
        assert not identity.is_same_signer(captured)

    def test_connectivity_is_signer_provider(self):
        identity = ChainSignerIdentity(CHAIN)
        provider = FakeProvider()
        identity.connect(ALICE, provider)
        assert identity.connectivity is provider

    def test_connect_requires_address(self):
        identity = ChainSignerIdentity(CHAIN)
        with pytest.raises(ValueError):
            identity.connect("", FakeProvider())

    def test_notifications(self):
        identity = ChainSignerIdentity(CHAIN)
        provider = FakeProvider()
        changes = []
        identity.subscribe(changes.append)

        identity.connect(ALICE, provider)
        identity.connect(ALICE.lower(), provider)
        identity.set_network(CHAIN)
        identity.set_network(OTHER_CHAIN)
        identity.disconnect()
        identity.disconnect()

        assert [change.kind for change in changes] == ["signer", "network", "signer"]
        assert changes[1].previous.network_id == CHAIN
        assert changes[1].current.network_id == OTHER_CHAIN
        assert changes[2].current is None

    def test_unsubscribe(self):
        identity = ChainSignerIdentity(CHAIN)
        changes = []
        unsubscribe = identity.subscribe(changes.append)
        unsubscribe()

        identity.set_network(OTHER_CHAIN)

        assert changes == []

    def test_network_cleared(self):
        identity = ChainSignerIdentity(CHAIN)
        identity.set_network(None)
        assert identity.network_id is None
        assert identity.set_network(None) is None
