"""
Encrypted counter workflow controller.

EncryptedCounterController coordinates encrypt -> submit -> confirm ->
re-read for counter updates, read-only handle refreshes, and local decryption
of the current handle. It owns the only copies of the encrypted handle, the
decrypted clear value and the operation state; UI code observes them and
requests operations but never mutates them.

Rules enforced here:
- At most one operation is Busy. A request made while Busy is refused with
  BusyError, never queued.
- Preconditions are checked before any network interaction and refused
  without a state transition.
- Encrypt/submit/confirm is retried on transient network failures up to
  RetryConfig.max_attempts with a fixed backoff, then fails with
  RetriesExhaustedError. Contract rejections are not retried.
- Before a result is committed, the network and signer captured at the
  start of the operation are compared with the current identity. On a
  mismatch the result is dropped and StalenessError is raised.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, TypeVar

from .activity import ActivityKind, ActivityLog, ActivitySink, NullActivitySink
from .config import DecryptionConfig, DeltaLimits, RetryConfig, Settings
from .contract import ContractDeployments, ContractFactory, CounterContract, EncryptedHandle, Transaction
from .errors import (
    AuthorizationError,
    BusyError,
    ContractNotDeployedError,
    DeltaTooLargeError,
    DeltaTooSmallError,
    ErrorContext,
    InternalError,
    InvalidDeltaError,
    NetworkTimeoutError,
    NotConnectedError,
    NothingToDecryptError,
    PreconditionError,
    RetriesExhaustedError,
    RuntimeNotReadyError,
    StalenessError,
    VeilClientError,
    classify_exception,
)
from .identity import ChainSignerIdentity, IdentityChange, NetworkSnapshot, SignerSnapshot
from .logging import AttemptLog, StructuredLogger, TransitionLog, get_logger, timed, truncate_for_log
from .runtime import FHERuntime, FHERuntimeBootstrapper, RuntimeStatus
from .signatures import DecryptionSignatureCache

T = TypeVar("T")


class OperationKind(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"
    REFRESH_HANDLE = "refresh_handle"
    DECRYPT = "decrypt"


class Phase(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OperationStep(str, Enum):
    ENCRYPTING = "encrypting"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    REFRESHING_HANDLE = "refreshing_handle"
    AUTHORIZING = "authorizing"
    DECRYPTING = "decrypting"


@dataclass(frozen=True)
class OperationState:
    """
    Single source of truth for what the controller is doing.

    Succeeded and Failed are reported to subscribers and then immediately
    replaced by Idle.
    """

    phase: Phase = Phase.IDLE
    operation: OperationKind | None = None
    step: OperationStep | None = None
    started_at: float | None = None
    attempt: int | None = None
    reason: str | None = None

    @property
    def is_busy(self) -> bool:
        return self.phase is Phase.BUSY

    @property
    def is_idle(self) -> bool:
        return self.phase is Phase.IDLE


IDLE = OperationState()


@dataclass(frozen=True)
class ClearValue:
    """A decrypted counter value and the handle it was decrypted from."""

    value: int
    decrypted_from_handle: str
    network_id: int
    signer: str


@dataclass
class _Scope:
    """Identity and collaborators captured when an operation starts."""

    kind: OperationKind
    network: NetworkSnapshot
    signer: SignerSnapshot | None
    contract_address: str
    runtime: FHERuntime | None = None
    handle: EncryptedHandle | None = None
    operation_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def error_context(self, attempt: int = 1) -> ErrorContext:
        return ErrorContext(
            operation=self.kind.value,
            operation_id=self.operation_id,
            chain_id=self.network.network_id,
            signer=self.signer.address if self.signer else None,
            contract=self.contract_address,
            attempt=attempt,
        )


StateListener = Callable[[OperationState], Any]


class EncryptedCounterController:
    """
    State machine for the encrypted counter workflow.

    Example:
        ```python
        controller = EncryptedCounterController(
            identity=identity,
            bootstrapper=bootstrapper,
            cache=DecryptionSignatureCache(),
            deployments=ContractDeployments({31337: address}),
            contract_factory=ledger.contract_factory,
        )
        await controller.refresh_handle()
        await controller.increment(3)
        clear = await controller.decrypt()
        ```
    """

    def __init__(
        self,
        identity: ChainSignerIdentity,
        bootstrapper: FHERuntimeBootstrapper,
        cache: DecryptionSignatureCache,
        deployments: ContractDeployments,
        contract_factory: ContractFactory,
        *,
        activity: ActivitySink | None = None,
        retry: RetryConfig | None = None,
        delta_limits: DeltaLimits | None = None,
        decryption: DecryptionConfig | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._identity = identity
        self._bootstrapper = bootstrapper
        self._cache = cache
        self._deployments = deployments
        self._contract_factory = contract_factory
        self._activity: ActivitySink = activity if activity is not None else NullActivitySink()
        self._retry = retry or RetryConfig()
        self._limits = delta_limits or DeltaLimits()
        self._decryption = decryption or DecryptionConfig()
        self._logger = logger or get_logger()
        self._clock = clock
        self._sleep = sleep

        self._state: OperationState = IDLE
        self._handle: EncryptedHandle | None = None
        self._clear: ClearValue | None = None
        self._error: VeilClientError | None = None
        self._listeners: list[StateListener] = []
        self._unsubscribe = identity.subscribe(self._on_identity_change)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identity: ChainSignerIdentity,
        bootstrapper: FHERuntimeBootstrapper,
        contract_factory: ContractFactory,
        *,
        cache: DecryptionSignatureCache | None = None,
        activity: ActivitySink | None = None,
        **kwargs: Any,
    ) -> EncryptedCounterController:
        """Build a controller from a Settings object."""
        if kwargs.get("logger") is None:
            kwargs["logger"] = StructuredLogger(
                level=settings.logging.level,
                json_output=settings.logging.format == "json",
            )
        return cls(
            identity=identity,
            bootstrapper=bootstrapper,
            cache=cache if cache is not None else DecryptionSignatureCache(),
            deployments=ContractDeployments.from_config(settings.deployments),
            contract_factory=contract_factory,
            activity=activity if activity is not None else ActivityLog(settings.activity.max_entries),
            retry=settings.retry,
            delta_limits=settings.delta,
            decryption=settings.decryption,
            **kwargs,
        )

    # =========================================================================
    # Observables
    # =========================================================================

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def handle(self) -> EncryptedHandle | None:
        """Current encrypted handle, or None if absent or from another network."""
        handle = self._handle
        if handle is None or not handle.is_valid_on(self._identity.network_id):
            return None
        if handle.produced_for_contract != self.contract_address:
            return None
        return handle

    @property
    def clear_value(self) -> ClearValue | None:
        """Decrypted value of the current handle for the current signer, if known."""
        clear = self._clear
        handle = self.handle
        signer = self._identity.current_signer()
        if clear is None or handle is None or signer is None:
            return None
        if clear.decrypted_from_handle != handle.value:
            return None
        if clear.signer.lower() != signer.address.lower():
            return None
        return clear

    @property
    def error(self) -> VeilClientError | None:
        """Error of the last failed operation; cleared when a new one starts."""
        return self._error

    @property
    def error_reason(self) -> str | None:
        return self._error.reason if self._error else None

    @property
    def activity(self) -> ActivitySink:
        return self._activity

    @property
    def contract_address(self) -> str | None:
        return self._deployments.address_for(self._identity.network_id)

    @property
    def is_deployed(self) -> bool:
        return self.contract_address is not None

    @property
    def is_busy(self) -> bool:
        return self._state.is_busy

    @property
    def is_decrypted(self) -> bool:
        return self.clear_value is not None

    @property
    def can_apply_delta(self) -> bool:
        return (
            self._identity.is_connected
            and self.is_deployed
            and self._bootstrapper.is_ready
            and not self.is_busy
        )

    @property
    def can_refresh(self) -> bool:
        return self.is_deployed and not self.is_busy

    @property
    def can_decrypt(self) -> bool:
        handle = self.handle
        return self.can_apply_delta and handle is not None and not handle.is_zero

    @property
    def status_message(self) -> str:
        state = self._state
        if state.is_busy and state.operation is not None:
            step = f" ({state.step.value})" if state.step else ""
            return f"{state.operation.value} in progress{step}"
        if self._error is not None:
            return f"Last operation failed: {self._error.reason}"
        if not self._identity.is_connected:
            return "Connect a wallet to start running encrypted computations."
        if not self.is_deployed:
            return "Counter contract is not deployed on the current network."
        status = self._bootstrapper.status
        if status is RuntimeStatus.BOOTSTRAPPING:
            return "Preparing FHE runtime..."
        if status is RuntimeStatus.ERROR:
            cause = self._bootstrapper.error
            return f"FHE runtime error: {cause.message if cause else 'unknown error'}"
        if status is RuntimeStatus.IDLE:
            return "FHE runtime not started."
        return "Ready to receive encrypted workloads."

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Receive every state transition. Returns a function that unsubscribes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Stop tracking identity changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # =========================================================================
    # Operations
    # =========================================================================

    async def increment(self, delta: int = 1) -> EncryptedHandle:
        """Add `delta` to the encrypted counter."""
        return await self._mutate(delta, 1)

    async def decrement(self, delta: int = 1) -> EncryptedHandle:
        """Subtract `delta` from the encrypted counter."""
        return await self._mutate(delta, -1)

    async def apply_delta(self, delta: int) -> EncryptedHandle:
        """Apply a signed delta: increment for delta >= 0, decrement otherwise."""
        return await self._mutate(delta, 1)

    async def refresh_handle(self) -> EncryptedHandle:
        """Re-read the on-chain handle."""
        kind = OperationKind.REFRESH_HANDLE
        network, contract_address = self._require_deployed(kind)
        self._require_idle(kind)
        scope = _Scope(
            kind=kind,
            network=network,
            signer=self._identity.current_signer(),
            contract_address=contract_address,
        )
        self._report(ActivityKind.REFRESH, "Refreshing encrypted handle")
        return await self._execute(scope, self._refresh_steps)

    async def decrypt(self) -> ClearValue:
        """Decrypt the current handle locally."""
        kind = OperationKind.DECRYPT
        scope = self._gated_scope(kind)
        handle = self.handle
        if handle is None or handle.is_zero:
            self._reject(kind, NothingToDecryptError())
        already = self.clear_value
        if already is not None:
            self._report(ActivityKind.INFO, "Handle already decrypted")
            return already
        scope.handle = handle
        self._report(ActivityKind.DECRYPT, "Decrypting latest handle")
        return await self._execute(scope, self._decrypt_steps)

    async def has_permission(self) -> bool | None:
        """Display-only read of the signer's decrypt permission on the counter."""
        signer = self._identity.current_signer()
        network = self._identity.current_network()
        address = self.contract_address
        if signer is None or network is None or address is None:
            return None
        contract = self._contract_factory(address, network, signer)
        try:
            return bool(await contract.has_permission(signer.address))
        except Exception as e:
            raise classify_exception(e) from e

    # =========================================================================
    # Preconditions
    # =========================================================================

    def _reject(self, kind: OperationKind, error: PreconditionError) -> None:
        error.context.operation = kind.value
        self._logger.warning("Operation refused", operation=kind.value, reason=error.message)
        self._report(ActivityKind.ERROR, error.message)
        raise error

    def _require_deployed(self, kind: OperationKind) -> tuple[NetworkSnapshot, str]:
        network = self._identity.current_network()
        address = self.contract_address
        if network is None or address is None:
            self._reject(kind, ContractNotDeployedError(chain_id=self._identity.network_id))
        return network, address

    def _require_idle(self, kind: OperationKind) -> None:
        if self._state.is_busy:
            operation = self._state.operation.value if self._state.operation else None
            self._reject(kind, BusyError(operation=operation))

    def _gated_scope(self, kind: OperationKind) -> _Scope:
        """Connected, deployed, runtime ready, idle: in that order."""
        signer = self._identity.current_signer()
        if signer is None:
            self._reject(kind, NotConnectedError())
        network, address = self._require_deployed(kind)
        runtime = self._bootstrapper.instance_for(network)
        if runtime is None:
            self._reject(kind, RuntimeNotReadyError(status=self._bootstrapper.status.value))
        self._require_idle(kind)
        return _Scope(kind=kind, network=network, signer=signer, contract_address=address, runtime=runtime)

    def _check_delta(self, kind: OperationKind, delta: Any, sign: int) -> int:
        if isinstance(delta, bool) or not isinstance(delta, int):
            self._reject(kind, InvalidDeltaError(f"delta must be an integer, got {delta!r}"))
        signed = sign * delta
        if signed > self._limits.maximum:
            self._reject(kind, DeltaTooLargeError(signed, self._limits.maximum))
        if signed < self._limits.minimum:
            self._reject(kind, DeltaTooSmallError(signed, self._limits.minimum))
        return signed

    # =========================================================================
    # Execution
    # =========================================================================

    async def _mutate(self, delta: Any, sign: int) -> EncryptedHandle:
        requested = OperationKind.DECREMENT if sign < 0 else OperationKind.INCREMENT
        scope = self._gated_scope(requested)
        signed = self._check_delta(requested, delta, sign)
        scope.kind = OperationKind.INCREMENT if signed >= 0 else OperationKind.DECREMENT
        scope.extra["delta"] = signed

        if signed > 0:
            self._report(ActivityKind.JOB, "Submitted encrypted job", f"Δ = {signed}")
        else:
            self._report(ActivityKind.ROLLBACK, "Rolled back encrypted job", f"Δ = {signed}")
        return await self._execute(scope, self._mutation_steps)

    async def _execute(self, scope: _Scope, steps: Callable[[_Scope], Awaitable[T]]) -> T:
        signer = scope.signer.address if scope.signer else None
        with self._logger.operation_context(
            scope.kind.value,
            chain_id=scope.network.network_id,
            signer=signer,
            contract=scope.contract_address,
        ) as operation_id:
            scope.operation_id = operation_id
            self._error = None
            started_at = self._clock()
            self._transition(OperationState(Phase.BUSY, scope.kind, started_at=started_at))
            try:
                with timed() as timer:
                    result = await steps(scope)
            except asyncio.CancelledError:
                self._fail(scope, InternalError("operation cancelled", context=scope.error_context()))
                raise
            except Exception as e:
                error = classify_exception(e, scope.error_context())
                self._fail(scope, error)
                if error is e:
                    raise
                raise error from e
            self._logger.info("Operation succeeded", duration_ms=round(timer.elapsed_ms, 2))
            self._succeed(scope)
            return result

    async def _mutation_steps(self, scope: _Scope) -> EncryptedHandle:
        contract = self._bind(scope)
        delta = scope.extra["delta"]
        entry_point = contract.increment if delta >= 0 else contract.decrement
        plaintext = abs(delta)
        max_attempts = self._retry.max_attempts
        last_error: VeilClientError | None = None

        for attempt in range(1, max_attempts + 1):
            self._ensure_current(scope)
            with timed() as timer:
                try:
                    await self._submit_once(scope, entry_point, plaintext, attempt)
                except Exception as e:
                    error = classify_exception(e, scope.error_context(attempt))
                    self._logger.log_attempt(
                        AttemptLog(
                            attempt=attempt,
                            max_attempts=max_attempts,
                            success=False,
                            error=error.message,
                            retryable=error.retryable,
                            duration_ms=round(timer.elapsed_ms, 2),
                        )
                    )
                    if not error.retryable:
                        if error is e:
                            raise
                        raise error from e
                    last_error = error
                else:
                    self._logger.log_attempt(
                        AttemptLog(attempt=attempt, max_attempts=max_attempts, duration_ms=round(timer.elapsed_ms, 2))
                    )
                    break
            if attempt < max_attempts:
                self._report(ActivityKind.INFO, f"Retrying operation ({attempt + 1}/{max_attempts})", last_error.message)
                await self._sleep(self._retry.backoff)
        else:
            raise RetriesExhaustedError(
                max_attempts,
                context=scope.error_context(max_attempts),
                cause=last_error,
            )

        self._step(OperationStep.REFRESHING_HANDLE)
        value = await contract.get_count()
        return self._commit_handle(scope, value)

    async def _submit_once(
        self,
        scope: _Scope,
        entry_point: Callable[[str, bytes], Awaitable[Transaction]],
        plaintext: int,
        attempt: int,
    ) -> Any:
        self._step(OperationStep.ENCRYPTING, attempt)
        encrypted = await scope.runtime.encrypt(plaintext, scope.contract_address, scope.signer.address)

        self._ensure_current(scope)
        self._step(OperationStep.SUBMITTING, attempt)
        tx = await entry_point(encrypted.handle, encrypted.proof)

        self._step(OperationStep.CONFIRMING, attempt)
        timeout = self._retry.confirmation_timeout
        if timeout is None:
            return await tx.wait(1)
        try:
            return await asyncio.wait_for(tx.wait(1), timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(timeout=timeout, context=scope.error_context(attempt)) from e

    async def _refresh_steps(self, scope: _Scope) -> EncryptedHandle:
        contract = self._bind(scope)
        self._step(OperationStep.REFRESHING_HANDLE)
        value = await contract.get_count()
        return self._commit_handle(scope, value)

    async def _decrypt_steps(self, scope: _Scope) -> ClearValue:
        runtime = scope.runtime
        signer = scope.signer
        handle = scope.handle
        network_id = scope.network.network_id

        self._step(OperationStep.AUTHORIZING)
        authorization, created = await self._cache.get_or_create(
            scope.contract_address,
            network_id,
            signer.address,
            lambda: runtime.create_authorization(
                scope.contract_address, signer, self._decryption.authorization_ttl
            ),
        )
        if created:
            self._logger.info("Created decryption authorization", expires_at=authorization.expires_at)
        try:
            self._ensure_current(scope)
        except StalenessError:
            self._cache.invalidate(scope.contract_address, network_id, signer.address)
            raise

        self._step(OperationStep.DECRYPTING)
        try:
            value = await runtime.request_decryption(handle.value, scope.contract_address, authorization)
        except AuthorizationError:
            self._cache.invalidate(scope.contract_address, network_id, signer.address)
            raise

        self._ensure_current(scope)
        current = self._handle
        if current is None or current.value != handle.value:
            self._logger.log_stale("handle")
            raise StalenessError(changed="handle", context=scope.error_context())

        self._clear = ClearValue(
            value=int(value),
            decrypted_from_handle=handle.value,
            network_id=network_id,
            signer=signer.address,
        )
        return self._clear

    # =========================================================================
    # Commit helpers
    # =========================================================================

    def _bind(self, scope: _Scope) -> CounterContract:
        return self._contract_factory(scope.contract_address, scope.network, scope.signer)

    def _ensure_current(self, scope: _Scope) -> None:
        if not self._identity.is_same_network(scope.network):
            changed = "network"
        elif not self._identity.is_same_signer(scope.signer):
            changed = "signer"
        else:
            return
        self._logger.log_stale(changed)
        raise StalenessError(changed=changed, context=scope.error_context())

    def _commit_handle(self, scope: _Scope, value: str) -> EncryptedHandle:
        self._ensure_current(scope)
        handle = EncryptedHandle(
            value=value,
            produced_on_network=scope.network.network_id,
            produced_for_contract=scope.contract_address,
        )
        self._handle = handle
        if self._clear is not None and self._clear.decrypted_from_handle != handle.value:
            self._clear = None
        self._logger.debug("Handle replaced", handle=truncate_for_log(value, 18))
        return handle

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(self, state: OperationState) -> None:
        self._state = state
        self._logger.log_transition(
            TransitionLog(
                phase=state.phase.value,
                operation=state.operation.value if state.operation else None,
                step=state.step.value if state.step else None,
                reason=state.reason,
            )
        )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                self._logger.log_error(e, "State listener failed")

    def _step(self, step: OperationStep, attempt: int | None = None) -> None:
        self._transition(replace(self._state, step=step, attempt=attempt))

    def _succeed(self, scope: _Scope) -> None:
        self._transition(OperationState(Phase.SUCCEEDED, scope.kind, started_at=self._state.started_at))
        if scope.kind is OperationKind.REFRESH_HANDLE:
            self._report(ActivityKind.REFRESH, "Handle refreshed successfully")
        elif scope.kind is OperationKind.DECRYPT:
            self._report(ActivityKind.DECRYPT, "Decryption completed successfully")
        else:
            self._report(ActivityKind.INFO, "Encrypted job confirmed", f"Δ = {scope.extra['delta']}")
        self._transition(IDLE)

    def _fail(self, scope: _Scope, error: VeilClientError) -> None:
        self._error = error
        self._logger.log_error(error, f"{scope.kind.value} failed")
        self._transition(
            OperationState(Phase.FAILED, scope.kind, started_at=self._state.started_at, reason=error.reason)
        )
        self._report(ActivityKind.ERROR, f"{scope.kind.value} failed", error.message)
        self._transition(IDLE)

    def _report(self, kind: ActivityKind, title: str, details: str | None = None) -> None:
        try:
            self._activity.emit(kind, title, details)
        except Exception as e:
            self._logger.log_error(e, "Activity sink rejected entry")

    def _on_identity_change(self, change: IdentityChange) -> None:
        signer = self._identity.current_signer()
        self._cache.retain_matching(self._identity.network_id, signer.address if signer else None)
        if change.kind == "network":
            if self._handle is not None or self._clear is not None:
                self._logger.info("Network changed; discarding handle and clear value")
            self._handle = None
            self._clear = None
        elif self._clear is not None:
            self._logger.info("Signer changed; discarding clear value")
            self._clear = None


__all__ = [
    "OperationKind",
    "Phase",
    "OperationStep",
    "OperationState",
    "ClearValue",
    "StateListener",
    "EncryptedCounterController",
]
