"""
Client-side controller for encrypted counter workflows on an FHE-enabled ledger.

Environment variables are loaded from the nearest `.env` so that RPC URLs and
contract addresses configured there are visible to Settings.from_env().
"""
from dotenv import find_dotenv, load_dotenv

_ = load_dotenv(find_dotenv(usecwd=True), override=False)

from .activity import ActivityEntry, ActivityKind, ActivityLog, ActivitySink
from .config import Settings, configure, get_settings
from .contract import ContractDeployments, CounterContract, EncryptedHandle, EncryptedInput
from .controller import (
    ClearValue,
    EncryptedCounterController,
    OperationKind,
    OperationState,
    OperationStep,
    Phase,
)
from .errors import (
    BusyError,
    ContractRejection,
    PreconditionError,
    RetriesExhaustedError,
    StalenessError,
    TransientNetworkError,
    VeilClientError,
)
from .identity import ChainSignerIdentity, NetworkSnapshot, SignerSnapshot
from .runtime import FHERuntime, FHERuntimeBootstrapper, RuntimeStatus
from .signatures import DecryptionAuthorization, DecryptionSignatureCache

__all__ = [
    "ActivityEntry",
    "ActivityKind",
    "ActivityLog",
    "ActivitySink",
    "Settings",
    "configure",
    "get_settings",
    "ContractDeployments",
    "CounterContract",
    "EncryptedHandle",
    "EncryptedInput",
    "ClearValue",
    "EncryptedCounterController",
    "OperationKind",
    "OperationState",
    "OperationStep",
    "Phase",
    "BusyError",
    "ContractRejection",
    "PreconditionError",
    "RetriesExhaustedError",
    "StalenessError",
    "TransientNetworkError",
    "VeilClientError",
    "ChainSignerIdentity",
    "NetworkSnapshot",
    "SignerSnapshot",
    "FHERuntime",
    "FHERuntimeBootstrapper",
    "RuntimeStatus",
    "DecryptionAuthorization",
    "DecryptionSignatureCache",
]
