"""
F3 Sidecar: Capability Contract

The fixed set of operations the host node must supply before the engine
can start. The engine observes the chain and acts on it only through
these twelve calls:

  get_raw_network_name()            → network identifier
  get_tipset_by_epoch(epoch)        → TipSet
  get_tipset(tipset_key)            → TipSet
  get_head()                        → TipSet
  get_parent(tipset_key)            → TipSet
  get_power_table(tipset_key)       → PowerEntries
  protect_peer(peer_id)             → bool
  get_participating_miner_ids()     → list of actor IDs
  sign_message(signer, message)     → Signature
  finalize(tipset_key)              → None
  version()                         → VersionInfo      (host node)
  net_addrs_listen()                → AddrInfo         (host node)

Each operation reports failure by raising. A host implements the
contract either by subclassing HostCapabilities or by binding plain
callables through CallableCapabilities.

Validation runs once, before the engine is constructed. A missing
binding raises ContractIncomplete, which is a configuration defect:
startup aborts and nothing retries it.

Usage:
    from sidecar.capabilities import CallableCapabilities, validate_capabilities

    caps = CallableCapabilities(get_head=node.head, ...)  # all twelve
    validate_capabilities(caps)
"""

from __future__ import annotations

import abc
from typing import Any, Callable

from sidecar.errors import ContractIncomplete
from sidecar.types import AddrInfo, PowerEntries, Signature, TipSet, VersionInfo

CAPABILITY_NAMES: tuple[str, ...] = (
    "get_raw_network_name",
    "get_tipset_by_epoch",
    "get_tipset",
    "get_head",
    "get_parent",
    "get_power_table",
    "protect_peer",
    "get_participating_miner_ids",
    "sign_message",
    "finalize",
    "version",
    "net_addrs_listen",
)


class HostCapabilities(abc.ABC):
    """Operations the host node provides to the engine."""

    @abc.abstractmethod
    def get_raw_network_name(self) -> str: ...

    @abc.abstractmethod
    def get_tipset_by_epoch(self, epoch: int) -> TipSet: ...

    @abc.abstractmethod
    def get_tipset(self, tipset_key: bytes) -> TipSet: ...

    @abc.abstractmethod
    def get_head(self) -> TipSet: ...

    @abc.abstractmethod
    def get_parent(self, tipset_key: bytes) -> TipSet: ...

    @abc.abstractmethod
    def get_power_table(self, tipset_key: bytes) -> PowerEntries: ...

    @abc.abstractmethod
    def protect_peer(self, peer_id: str) -> bool: ...

    @abc.abstractmethod
    def get_participating_miner_ids(self) -> list[int]: ...

    @abc.abstractmethod
    def sign_message(self, signer: bytes, message: bytes) -> Signature: ...

    @abc.abstractmethod
    def finalize(self, tipset_key: bytes) -> None: ...

    @abc.abstractmethod
    def version(self) -> VersionInfo: ...

    @abc.abstractmethod
    def net_addrs_listen(self) -> AddrInfo: ...


def missing_capabilities(obj: Any) -> list[str]:
    """Names of capabilities that `obj` does not bind to a concrete callable."""
    missing = []
    for name in CAPABILITY_NAMES:
        fn = getattr(obj, name, None)
        if fn is None or not callable(fn) or getattr(fn, "__isabstractmethod__", False):
            missing.append(name)
    return missing


def validate_capabilities(obj: Any) -> Any:
    """
    Check that every capability is bound. Returns `obj` unchanged.

    Raises ContractIncomplete listing every unbound name.
    """
    if obj is None:
        raise ContractIncomplete(list(CAPABILITY_NAMES), "no capabilities supplied")
    missing = missing_capabilities(obj)
    if missing:
        raise ContractIncomplete(missing)
    return obj


class CallableCapabilities(HostCapabilities):
    """
    Capability contract assembled from plain callables.

    Every name in CAPABILITY_NAMES must be given as a keyword argument.
    The check happens in the constructor, so a partially bound contract
    can never exist.
    """

    def __init__(self, **bindings: Callable[..., Any] | None):
        unknown = sorted(set(bindings) - set(CAPABILITY_NAMES))
        if unknown:
            raise ContractIncomplete([], "unknown capabilities: " + ", ".join(unknown))
        missing = [
            name for name in CAPABILITY_NAMES
            if bindings.get(name) is None or not callable(bindings[name])
        ]
        if missing:
            raise ContractIncomplete(missing)
        self._bindings: dict[str, Callable[..., Any]] = dict(bindings)

    @classmethod
    def from_mapping(cls, bindings: dict[str, Callable[..., Any] | None]) -> CallableCapabilities:
        return cls(**bindings)

    def get_raw_network_name(self) -> str:
        return self._bindings["get_raw_network_name"]()

    def get_tipset_by_epoch(self, epoch: int) -> TipSet:
        return self._bindings["get_tipset_by_epoch"](epoch)

    def get_tipset(self, tipset_key: bytes) -> TipSet:
        return self._bindings["get_tipset"](tipset_key)

    def get_head(self) -> TipSet:
        return self._bindings["get_head"]()

    def get_parent(self, tipset_key: bytes) -> TipSet:
        return self._bindings["get_parent"](tipset_key)

    def get_power_table(self, tipset_key: bytes) -> PowerEntries:
        return self._bindings["get_power_table"](tipset_key)

    def protect_peer(self, peer_id: str) -> bool:
        return self._bindings["protect_peer"](peer_id)

    def get_participating_miner_ids(self) -> list[int]:
        return self._bindings["get_participating_miner_ids"]()

    def sign_message(self, signer: bytes, message: bytes) -> Signature:
        return self._bindings["sign_message"](signer, message)

    def finalize(self, tipset_key: bytes) -> None:
        self._bindings["finalize"](tipset_key)

    def version(self) -> VersionInfo:
        return self._bindings["version"]()

    def net_addrs_listen(self) -> AddrInfo:
        return self._bindings["net_addrs_listen"]()
