#!/usr/bin/env python3
"""
Example: Encrypted Counter Session on the Mock Chain

Demonstrates:
1. Wiring identity, runtime bootstrapper, signature cache and controller
2. Incrementing, decrementing and decrypting the counter
3. Automatic retry of transient failures
4. Refused requests (out-of-range delta, busy controller)
5. Discarding results after a signer switch
"""
import asyncio
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from veil_client import (
    ActivityLog,
    BusyError,
    ChainSignerIdentity,
    DecryptionSignatureCache,
    EncryptedCounterController,
    FHERuntimeBootstrapper,
    PreconditionError,
    Settings,
    StalenessError,
)
from veil_client.config import HARDHAT_CHAIN_ID, RetryConfig
from veil_client.mock import MockLedger

DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ALICE = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BOB = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


class Wallet:
    """Stand-in for an injected browser wallet."""


async def main():
    print("=" * 60)
    print("ENCRYPTED COUNTER EXAMPLE")
    print("=" * 60)

    ledger = MockLedger(latency=0.05)
    address = ledger.deploy(HARDHAT_CHAIN_ID, DEPLOYER)

    settings = Settings()
    settings.deployments.contracts[HARDHAT_CHAIN_ID] = address
    settings.retry = RetryConfig(max_attempts=3, backoff=0.1, confirmation_timeout=5.0)

    wallet = Wallet()
    identity = ChainSignerIdentity(HARDHAT_CHAIN_ID)
    identity.connect(ALICE, wallet)

    bootstrapper = FHERuntimeBootstrapper(ledger.runtime_factory_for(settings.network))
    cache = DecryptionSignatureCache(clock=ledger.clock)
    cache.attach(identity)

    controller = EncryptedCounterController.from_settings(
        settings,
        identity,
        bootstrapper,
        ledger.contract_factory,
        cache=cache,
    )
    controller.subscribe(lambda state: print(f"  state: {state.phase.value:9} {state.step.value if state.step else ''}"))

    bootstrapper.attach(identity)
    print(f"\n{controller.status_message}")
    await bootstrapper.wait_settled()
    print(controller.status_message)

    # === Example 1: Increment and decrypt ===
    print("\n" + "=" * 40)
    print("Example 1: Increment and decrypt")
    print("=" * 40)

    await controller.refresh_handle()
    await controller.increment(3)
    await controller.apply_delta(-1)
    clear = await controller.decrypt()
    print(f"\nDecrypted counter: {clear.value}")

    # === Example 2: Transient failures ===
    print("\n" + "=" * 40)
    print("Example 2: Transient failures are retried")
    print("=" * 40)

    ledger.fail_next("submit", 2)
    await controller.increment(5)
    print(f"\nDecrypted counter: {(await controller.decrypt()).value}")

    # === Example 3: Refused requests ===
    print("\n" + "=" * 40)
    print("Example 3: Refused requests")
    print("=" * 40)

    try:
        await controller.increment(25)
    except PreconditionError as e:
        print(f"\nRefused: {e.message}")

    running = asyncio.create_task(controller.increment(1))
    await asyncio.sleep(0.01)
    try:
        await controller.decrement(1)
    except BusyError as e:
        print(f"Refused: {e.message}")
    await running

    # === Example 4: Signer switch mid-operation ===
    print("\n" + "=" * 40)
    print("Example 4: Signer switch mid-operation")
    print("=" * 40)

    decrypting = asyncio.create_task(controller.decrypt())
    await asyncio.sleep(0.01)
    identity.connect(BOB, wallet)
    try:
        await decrypting
    except StalenessError as e:
        print(f"\nDiscarded: {e.message}")

    # === Activity ===
    print("\n" + "=" * 40)
    print("Activity (newest first)")
    print("=" * 40)
    activity = controller.activity
    if isinstance(activity, ActivityLog):
        for entry in activity.entries:
            details = f" ({entry.details})" if entry.details else ""
            print(f"  [{entry.kind.value:8}] {entry.title}{details}")

    controller.close()
    bootstrapper.detach()
    cache.detach()


if __name__ == "__main__":
    asyncio.run(main())
