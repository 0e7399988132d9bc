"""
Decryption authorization cache.

A decryption authorization is a signed artifact that lets the FHE runtime
decrypt a contract's handles on behalf of a signer on one network. Creating
one prompts the user for a signature, so authorizations are cached by
(contract, network, signer) and reused until they expire or the active
identity stops matching their key.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .hashing import content_hash
from .identity import ChainSignerIdentity, IdentityChange
from .logging import get_logger, redact_address


@dataclass(frozen=True)
class AuthorizationKey:
    """Normalized cache key. Addresses compare case-insensitively."""

    contract: str
    network_id: int
    signer: str

    @classmethod
    def of(cls, contract: str, network_id: int, signer: str) -> AuthorizationKey:
        return cls(contract.lower(), int(network_id), signer.lower())


@dataclass(frozen=True)
class DecryptionAuthorization:
    """Signed permission to decrypt `contract` handles as `signer` on `network_id`."""

    contract: str
    network_id: int
    signer: str
    signature: str
    expires_at: float
    created_at: float = field(default_factory=time.time)
    public_key: str | None = None
    private_key: str | None = field(default=None, repr=False)
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> AuthorizationKey:
        return AuthorizationKey.of(self.contract, self.network_id, self.signer)

    @property
    def fingerprint(self) -> str:
        return content_hash(
            {
                "contract": self.contract.lower(),
                "network_id": self.network_id,
                "signer": self.signer.lower(),
                "signature": self.signature,
            }
        )

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at


AuthorizationFactory = Callable[[], Awaitable[DecryptionAuthorization]]


class DecryptionSignatureCache:
    """
    In-memory authorization store keyed by (contract, network, signer).

    Never serves an authorization whose key differs from the requested one,
    and never serves an expired authorization.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[AuthorizationKey, DecryptionAuthorization] = {}
        self._unsubscribe: Callable[[], None] | None = None
        self._logger = get_logger()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, contract: str, network_id: int, signer: str) -> DecryptionAuthorization | None:
        key = AuthorizationKey.of(contract, network_id, signer)
        authorization = self._entries.get(key)
        if authorization is None:
            return None
        if authorization.is_expired(self._clock()):
            del self._entries[key]
            self._logger.debug("Decryption authorization expired", contract=contract, chain_id=network_id)
            return None
        return authorization

    def put(
        self,
        contract: str,
        network_id: int,
        signer: str,
        authorization: DecryptionAuthorization,
    ) -> None:
        key = AuthorizationKey.of(contract, network_id, signer)
        if authorization.key != key:
            raise ValueError("authorization does not match its cache key")
        if authorization.is_expired(self._clock()):
            raise ValueError("authorization is already expired")
        self._entries[key] = authorization

    async def get_or_create(
        self,
        contract: str,
        network_id: int,
        signer: str,
        factory: AuthorizationFactory,
    ) -> tuple[DecryptionAuthorization, bool]:
        """
        Return a cached authorization or create one with `factory`.

        Returns:
            (authorization, created) where created is False on a cache hit
        """
        cached = self.get(contract, network_id, signer)
        if cached is not None:
            self._logger.debug("Decryption authorization cache hit", signer=redact_address(signer))
            return cached, False
        self._logger.debug("Decryption authorization cache miss", signer=redact_address(signer))
        authorization = await factory()
        self.put(contract, network_id, signer, authorization)
        return authorization, True

    def invalidate(self, contract: str, network_id: int, signer: str) -> None:
        self._entries.pop(AuthorizationKey.of(contract, network_id, signer), None)

    def invalidate_all(self) -> None:
        if self._entries:
            self._logger.debug("Invalidating decryption authorizations", count=len(self._entries))
        self._entries.clear()

    def retain_matching(self, network_id: int | None, signer: str | None) -> None:
        """Evict every entry whose network or signer differs from the given identity."""
        if network_id is None or signer is None:
            self.invalidate_all()
            return
        signer = signer.lower()
        for key in list(self._entries):
            if key.network_id != network_id or key.signer != signer:
                del self._entries[key]

    def attach(self, identity: ChainSignerIdentity) -> None:
        """Evict mismatched entries whenever the network or signer changes."""
        self.detach()

        def on_change(change: IdentityChange) -> None:
            signer = identity.current_signer()
            self.retain_matching(identity.network_id, signer.address if signer else None)

        self._unsubscribe = identity.subscribe(on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


__all__ = [
    "AuthorizationKey",
    "DecryptionAuthorization",
    "AuthorizationFactory",
    "DecryptionSignatureCache",
]
