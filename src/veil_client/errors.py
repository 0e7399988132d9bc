"""
Error taxonomy for veil-client.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured context for debugging
- Contract revert mapping
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the controller."""

    # Precondition errors (1xxx)
    PRECONDITION_FAILED = "ERR_1000"
    NOT_CONNECTED = "ERR_1001"
    CONTRACT_NOT_DEPLOYED = "ERR_1002"
    RUNTIME_NOT_READY = "ERR_1003"
    DELTA_TOO_LARGE = "ERR_1004"
    DELTA_TOO_SMALL = "ERR_1005"
    INVALID_DELTA = "ERR_1006"
    BUSY = "ERR_1007"
    NOTHING_TO_DECRYPT = "ERR_1008"

    # Transient network errors (2xxx)
    NETWORK_ERROR = "ERR_2000"
    NETWORK_TIMEOUT = "ERR_2001"
    CONNECTION_DROPPED = "ERR_2002"
    RETRIES_EXHAUSTED = "ERR_2003"

    # Contract rejections (3xxx)
    CONTRACT_REJECTED = "ERR_3000"
    CONTRACT_PAUSED = "ERR_3001"
    UNAUTHORIZED_CALLER = "ERR_3002"
    CONTRACT_REVERTED = "ERR_3003"

    # Staleness (4xxx)
    STALE = "ERR_4000"

    # Runtime errors (5xxx)
    RUNTIME_BOOTSTRAP = "ERR_5000"
    AUTHORIZATION = "ERR_5001"

    # Configuration errors (6xxx)
    CONFIG_ERROR = "ERR_6000"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    operation: str | None = None
    operation_id: str | None = None
    chain_id: int | None = None
    signer: str | None = None
    contract: str | None = None
    attempt: int = 1
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "operation_id": self.operation_id,
            "chain_id": self.chain_id,
            "signer": self.signer,
            "contract": self.contract,
            "attempt": self.attempt,
            **self.extra,
        }


class VeilClientError(Exception):
    """
    Base exception for all veil-client errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    @property
    def reason(self) -> str:
        """Short reason surfaced to observers of a failed operation."""
        return self.message

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.operation_id:
            parts.append(f"(operation_id={self.context.operation_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Precondition Errors
# =============================================================================


class PreconditionError(VeilClientError):
    """An operation was refused before any network interaction."""

    code = ErrorCode.PRECONDITION_FAILED
    retryable = False


class NotConnectedError(PreconditionError):
    """No signer is connected."""

    code = ErrorCode.NOT_CONNECTED

    def __init__(self, message: str = "Wallet not connected", **kwargs):
        super().__init__(message, **kwargs)


class ContractNotDeployedError(PreconditionError):
    """The counter contract has no deployment on the current network."""

    code = ErrorCode.CONTRACT_NOT_DEPLOYED

    def __init__(
        self,
        message: str = "Contract not deployed on the current network",
        *,
        chain_id: int | None = None,
        **kwargs,
    ):
        if chain_id is not None:
            message = f"Contract not deployed on chain {chain_id}"
        super().__init__(message, **kwargs)
        self.chain_id = chain_id


class RuntimeNotReadyError(PreconditionError):
    """The FHE runtime is still bootstrapping or failed to bootstrap."""

    code = ErrorCode.RUNTIME_NOT_READY

    def __init__(self, message: str = "FHE runtime not ready", *, status: str | None = None, **kwargs):
        if status is not None:
            message = f"FHE runtime not ready (status={status})"
        super().__init__(message, **kwargs)
        self.status = status


class InvalidDeltaError(PreconditionError):
    """The requested delta is not an integer."""

    code = ErrorCode.INVALID_DELTA


class DeltaTooLargeError(PreconditionError):
    """The requested delta exceeds the allowed maximum."""

    code = ErrorCode.DELTA_TOO_LARGE

    def __init__(self, delta: int, maximum: int, **kwargs):
        super().__init__(f"delta too large: {delta} > {maximum}", **kwargs)
        self.delta = delta
        self.maximum = maximum


class DeltaTooSmallError(PreconditionError):
    """The requested delta is below the allowed minimum."""

    code = ErrorCode.DELTA_TOO_SMALL

    def __init__(self, delta: int, minimum: int, **kwargs):
        super().__init__(f"delta too small: {delta} < {minimum}", **kwargs)
        self.delta = delta
        self.minimum = minimum


class BusyError(PreconditionError):
    """Another operation is in flight."""

    code = ErrorCode.BUSY

    def __init__(self, message: str = "busy", *, operation: str | None = None, **kwargs):
        if operation is not None:
            message = f"busy: {operation} in progress"
        super().__init__(message, **kwargs)
        self.operation = operation


class NothingToDecryptError(PreconditionError):
    """There is no current handle, or it is the uninitialized all-zero handle."""

    code = ErrorCode.NOTHING_TO_DECRYPT

    def __init__(self, message: str = "Nothing to decrypt", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# Transient Network Errors
# =============================================================================


class TransientNetworkError(VeilClientError):
    """A network round trip failed in a way that may succeed on retry."""

    code = ErrorCode.NETWORK_ERROR
    retryable = True


class NetworkTimeoutError(TransientNetworkError):
    """A network call or confirmation wait timed out."""

    code = ErrorCode.NETWORK_TIMEOUT

    def __init__(self, message: str = "Network request timed out", *, timeout: float | None = None, **kwargs):
        if timeout is not None:
            message = f"Network request timed out after {timeout}s"
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ConnectionDroppedError(TransientNetworkError):
    """The connection to the node was lost."""

    code = ErrorCode.CONNECTION_DROPPED

    def __init__(self, message: str = "Connection dropped", **kwargs):
        super().__init__(message, **kwargs)


class RetriesExhaustedError(VeilClientError):
    """Every attempt failed with a transient error."""

    code = ErrorCode.RETRIES_EXHAUSTED
    retryable = False

    def __init__(self, attempts: int, **kwargs):
        super().__init__("retries exhausted", **kwargs)
        self.attempts = attempts


# =============================================================================
# Contract Rejections
# =============================================================================


class ContractRejection(VeilClientError):
    """The contract rejected the call. Never retried."""

    code = ErrorCode.CONTRACT_REJECTED
    retryable = False

    def __init__(self, message: str, *, revert_name: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.revert_name = revert_name


class ContractPausedError(ContractRejection):
    """The contract is paused by its owner."""

    code = ErrorCode.CONTRACT_PAUSED

    def __init__(self, message: str = "Contract is paused", **kwargs):
        kwargs.setdefault("revert_name", "ContractPaused")
        super().__init__(message, **kwargs)


class UnauthorizedCallerError(ContractRejection):
    """The caller is not allowed to invoke this entry point."""

    code = ErrorCode.UNAUTHORIZED_CALLER

    def __init__(self, message: str = "Caller is not authorized", **kwargs):
        kwargs.setdefault("revert_name", "NotOwner")
        super().__init__(message, **kwargs)


class ContractRevertedError(ContractRejection):
    """Generic revert not covered by a more specific rejection."""

    code = ErrorCode.CONTRACT_REVERTED


# =============================================================================
# Staleness
# =============================================================================


class StalenessError(VeilClientError):
    """The network or signer changed while the operation was in flight."""

    code = ErrorCode.STALE
    retryable = False

    def __init__(self, message: str = "stale", *, changed: str | None = None, **kwargs):
        if changed is not None:
            message = f"stale: {changed} changed during operation"
        super().__init__(message, **kwargs)
        self.changed = changed

    @property
    def reason(self) -> str:
        return "stale"


# =============================================================================
# Runtime Errors
# =============================================================================


class RuntimeBootstrapError(VeilClientError):
    """The FHE runtime could not be created for the current network."""

    code = ErrorCode.RUNTIME_BOOTSTRAP
    retryable = False


class AuthorizationError(VeilClientError):
    """A decryption authorization could not be obtained or was refused."""

    code = ErrorCode.AUTHORIZATION
    retryable = False


# =============================================================================
# Configuration / Internal
# =============================================================================


class ConfigError(VeilClientError):
    """Invalid configuration."""

    code = ErrorCode.CONFIG_ERROR


class InternalError(VeilClientError):
    """Unexpected failure from a collaborator."""

    code = ErrorCode.INTERNAL_ERROR


# =============================================================================
# Utilities
# =============================================================================

_REVERTS: dict[str, type[ContractRejection]] = {
    "ContractPaused": ContractPausedError,
    "Paused": ContractPausedError,
    "EnforcedPause": ContractPausedError,
    "NotOwner": UnauthorizedCallerError,
    "Unauthorized": UnauthorizedCallerError,
    "OwnableUnauthorizedAccount": UnauthorizedCallerError,
}


def error_from_revert(
    revert_name: str,
    message: str | None = None,
    **kwargs,
) -> ContractRejection:
    """
    Create a contract rejection from a custom-error revert name.

    Args:
        revert_name: Solidity custom error name (e.g. "ContractPaused")
        message: Optional human-readable message override

    Returns:
        The most specific ContractRejection for the revert
    """
    error_class = _REVERTS.get(revert_name)
    if error_class is None:
        return ContractRevertedError(
            message or f"Contract reverted: {revert_name}",
            revert_name=revert_name,
            **kwargs,
        )
    if message is None:
        return error_class(revert_name=revert_name, **kwargs)
    return error_class(message, revert_name=revert_name, **kwargs)


def classify_exception(exc: BaseException, context: ErrorContext | None = None) -> VeilClientError:
    """
    Map an arbitrary exception raised by a collaborator onto the taxonomy.

    VeilClientError instances pass through unchanged.
    """
    if isinstance(exc, VeilClientError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return NetworkTimeoutError(context=context, cause=exc)
    if isinstance(exc, ConnectionError):
        return ConnectionDroppedError(str(exc) or "Connection dropped", context=context, cause=exc)
    return InternalError(f"{type(exc).__name__}: {exc}", context=context, cause=exc)


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, VeilClientError):
        return error.retryable
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError))


__all__ = [
    # Base
    "ErrorCode",
    "ErrorContext",
    "VeilClientError",
    # Precondition
    "PreconditionError",
    "NotConnectedError",
    "ContractNotDeployedError",
    "RuntimeNotReadyError",
    "InvalidDeltaError",
    "DeltaTooLargeError",
    "DeltaTooSmallError",
    "BusyError",
    "NothingToDecryptError",
    # Transient
    "TransientNetworkError",
    "NetworkTimeoutError",
    "ConnectionDroppedError",
    "RetriesExhaustedError",
    # Contract
    "ContractRejection",
    "ContractPausedError",
    "UnauthorizedCallerError",
    "ContractRevertedError",
    # Staleness
    "StalenessError",
    # Runtime
    "RuntimeBootstrapError",
    "AuthorizationError",
    # Config / internal
    "ConfigError",
    "InternalError",
    # Utilities
    "error_from_revert",
    "classify_exception",
    "is_retryable",
]
